# ================================================================
# services/store.py: Atomic storage primitives for billing state
# ================================================================
"""
Every write here is a single statement that is safe to repeat and safe to
race: insert-or-update by a unique key, insert-if-absent, or an in-database
counter update. Nothing does read-modify-write in Python.

Methods do not commit on their own; callers group writes with
``store.transaction()``.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Iterator, List, Optional

from sqlalchemy import and_, case, delete, desc, or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from core.errors import PersistenceFailed
from models.models import (
    BillingRecord,
    CreditBalance,
    ProcessedCheckoutSession,
    Subscription,
    SubscriptionStatus,
    SubscriptionTier,
    UsageKind,
    WebhookEvent,
    utcnow,
)
from schemas.event_schema import InvoiceData, SubscriptionState
from services.catalog import TierLimits

logger = logging.getLogger(__name__)

subscriptions = Subscription.__table__
billing_records = BillingRecord.__table__
credit_balances = CreditBalance.__table__
processed_sessions = ProcessedCheckoutSession.__table__
webhook_events = WebhookEvent.__table__

USAGE_COLUMNS = {
    UsageKind.CLIENTS.value: subscriptions.c.clients_used,
    UsageKind.POSTS.value: subscriptions.c.posts_used_this_month,
    UsageKind.AI_CREDITS.value: subscriptions.c.ai_credits_used_this_month,
}

TRIAL_CUSTOMER_PREFIX = "trial_"


def guarded_read(func):
    """Map driver errors on reads to PersistenceFailed."""

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SQLAlchemyError as e:
            raise PersistenceFailed(f"Database read failed in {func.__name__}: {e}") from e

    return wrapper


class SubscriptionStore:
    def __init__(self, session: Session):
        self.session = session

    # ------------------------
    # Plumbing
    # ------------------------
    @contextmanager
    def transaction(self) -> Iterator["SubscriptionStore"]:
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailed(f"Database write failed: {e}") from e
        except Exception:
            self.session.rollback()
            raise

    def _insert(self, table):
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise PersistenceFailed(f"Atomic upsert is not supported on dialect '{dialect}'")

    def _execute(self, statement):
        return self.session.connection().execute(statement)

    # ------------------------
    # Subscription reads
    # ------------------------
    @guarded_read
    def get_by_user(self, user_id: str) -> Optional[Subscription]:
        return self.session.exec(select(Subscription).where(Subscription.user_id == user_id)).first()

    @guarded_read
    def get_by_customer(self, customer_id: str) -> Optional[Subscription]:
        return self.session.exec(select(Subscription).where(Subscription.customer_id == customer_id)).first()

    # ------------------------
    # Subscription writes
    # ------------------------
    def rebind_customer(self, user_id: str, customer_id: str) -> bool:
        """Move a user's existing row (e.g. a no-card trial) onto a new customer id."""
        result = self._execute(
            update(subscriptions)
            .where(subscriptions.c.user_id == user_id, subscriptions.c.customer_id != customer_id)
            .values(customer_id=customer_id, updated_at=utcnow())
        )
        return result.rowcount > 0

    def upsert_authoritative(
        self,
        user_id: str,
        state: SubscriptionState,
        tier: str,
        limits: TierLimits,
        customer_email: Optional[str] = None,
    ) -> bool:
        """
        Full-state upsert keyed by customer id from an authoritative Stripe
        subscription. Usage counters are only ever set on first insert.

        Returns False when the write was skipped because it would revive a
        subscription that is already canceled.
        """
        now = utcnow()
        reconciled = {
            "subscription_id": state.subscription_id,
            "price_id": state.price_id,
            "tier": tier,
            "status": state.status.value,
            "period_start": state.period_start,
            "period_end": state.period_end,
            "cancel_at_period_end": state.cancel_at_period_end,
            "trial_start": state.trial_start,
            "trial_end": state.trial_end,
            "max_clients": limits.max_clients,
            "max_posts_per_month": limits.max_posts_per_month,
            "max_ai_credits_per_month": limits.max_ai_credits_per_month,
        }
        stmt = self._insert(subscriptions).values(
            user_id=user_id,
            customer_id=state.customer_id,
            customer_email=customer_email,
            clients_used=0,
            posts_used_this_month=0,
            ai_credits_used_this_month=0,
            usage_reset_at=now,
            created_at=now,
            updated_at=now,
            **reconciled,
        )

        guard = None
        if state.status != SubscriptionStatus.CANCELED:
            # A late event for a canceled subscription must not resurrect it
            guard = or_(
                subscriptions.c.status != SubscriptionStatus.CANCELED.value,
                subscriptions.c.subscription_id.is_(None),
                subscriptions.c.subscription_id != state.subscription_id,
            )

        stmt = stmt.on_conflict_do_update(
            index_elements=[subscriptions.c.customer_id],
            set_={
                **reconciled,
                "customer_email": case(
                    (stmt.excluded.customer_email.is_(None), subscriptions.c.customer_email),
                    else_=stmt.excluded.customer_email,
                ),
                "updated_at": now,
            },
            where=guard,
        )
        return self._execute(stmt).rowcount > 0

    def upsert_checkout_fallback(
        self,
        user_id: str,
        customer_id: str,
        subscription_id: Optional[str],
        tier: str,
        limits: TierLimits,
        customer_email: Optional[str] = None,
    ) -> None:
        """
        Record a checkout without authoritative subscription detail.

        Inserts a default-tier row with ``price_id`` NULL if none exists. An
        existing row keeps its tier and price unless the subscription id is
        new, in which case the price is cleared so the row gets repaired.
        """
        now = utcnow()
        inserted = self._execute(
            self._insert(subscriptions)
            .values(
                user_id=user_id,
                customer_id=customer_id,
                customer_email=customer_email,
                subscription_id=subscription_id,
                price_id=None,
                tier=tier,
                status=SubscriptionStatus.ACTIVE.value,
                cancel_at_period_end=False,
                max_clients=limits.max_clients,
                max_posts_per_month=limits.max_posts_per_month,
                max_ai_credits_per_month=limits.max_ai_credits_per_month,
                clients_used=0,
                posts_used_this_month=0,
                ai_credits_used_this_month=0,
                usage_reset_at=now,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=[subscriptions.c.customer_id])
        ).rowcount
        if inserted:
            return

        if subscription_id:
            self._execute(
                update(subscriptions)
                .where(
                    subscriptions.c.customer_id == customer_id,
                    or_(
                        subscriptions.c.subscription_id.is_(None),
                        subscriptions.c.subscription_id != subscription_id,
                    ),
                )
                .values(
                    subscription_id=subscription_id,
                    price_id=None,
                    status=SubscriptionStatus.ACTIVE.value,
                    cancel_at_period_end=False,
                    updated_at=now,
                )
            )
        if customer_email:
            self._execute(
                update(subscriptions)
                .where(subscriptions.c.customer_id == customer_id)
                .values(customer_email=customer_email)
            )

    def mark_canceled(self, customer_id: str, subscription_id: Optional[str] = None) -> bool:
        """A deletion for an older subscription id leaves a reactivated row alone."""
        clauses = [subscriptions.c.customer_id == customer_id]
        if subscription_id:
            clauses.append(
                or_(
                    subscriptions.c.subscription_id.is_(None),
                    subscriptions.c.subscription_id == subscription_id,
                )
            )
        result = self._execute(
            update(subscriptions)
            .where(*clauses)
            .values(
                status=SubscriptionStatus.CANCELED.value,
                cancel_at_period_end=False,
                updated_at=utcnow(),
            )
        )
        return result.rowcount > 0

    def mark_past_due(self, customer_id: str) -> bool:
        """past_due never overrides a canceled row."""
        result = self._execute(
            update(subscriptions)
            .where(
                subscriptions.c.customer_id == customer_id,
                subscriptions.c.status != SubscriptionStatus.CANCELED.value,
            )
            .values(status=SubscriptionStatus.PAST_DUE.value, updated_at=utcnow())
        )
        return result.rowcount > 0

    def reactivate_past_due(self, customer_id: str) -> bool:
        result = self._execute(
            update(subscriptions)
            .where(
                subscriptions.c.customer_id == customer_id,
                subscriptions.c.status == SubscriptionStatus.PAST_DUE.value,
            )
            .values(status=SubscriptionStatus.ACTIVE.value, updated_at=utcnow())
        )
        return result.rowcount > 0

    # ------------------------
    # Usage counters
    # ------------------------
    def increment_usage(self, user_id: str, kind: str, amount: int = 1) -> bool:
        column = USAGE_COLUMNS[UsageKind(kind).value]
        result = self._execute(
            update(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .values({column.name: column + amount, "updated_at": utcnow()})
        )
        return result.rowcount > 0

    def decrement_usage(self, user_id: str, kind: str, amount: int = 1) -> bool:
        column = USAGE_COLUMNS[UsageKind(kind).value]
        result = self._execute(
            update(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .values({column.name: case((column < amount, 0), else_=column - amount), "updated_at": utcnow()})
        )
        return result.rowcount > 0

    def reset_monthly_usage(self, cutoff: datetime, now: datetime) -> int:
        result = self._execute(
            update(subscriptions)
            .where(subscriptions.c.usage_reset_at < cutoff)
            .values(posts_used_this_month=0, ai_credits_used_this_month=0, usage_reset_at=now, updated_at=now)
        )
        return result.rowcount

    # ------------------------
    # Purchased credits
    # ------------------------
    def claim_checkout_session(self, session_id: str, user_id: str, credits: int) -> bool:
        """True the first time a session id is seen, False on every redelivery."""
        result = self._execute(
            self._insert(processed_sessions)
            .values(session_id=session_id, user_id=user_id, credits=credits, processed_at=utcnow())
            .on_conflict_do_nothing(index_elements=[processed_sessions.c.session_id])
        )
        return result.rowcount > 0

    def add_purchased_credits(self, user_id: str, amount: int) -> None:
        stmt = self._insert(credit_balances).values(user_id=user_id, purchased_credits=amount, updated_at=utcnow())
        stmt = stmt.on_conflict_do_update(
            index_elements=[credit_balances.c.user_id],
            set_={
                "purchased_credits": credit_balances.c.purchased_credits + stmt.excluded.purchased_credits,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self._execute(stmt)

    @guarded_read
    def get_purchased_credits(self, user_id: str) -> int:
        balance = self.session.get(CreditBalance, user_id)
        return balance.purchased_credits if balance else 0

    # ------------------------
    # Billing history
    # ------------------------
    def insert_billing_record(self, user_id: str, invoice: InvoiceData) -> bool:
        result = self._execute(
            self._insert(billing_records)
            .values(
                invoice_id=invoice.invoice_id,
                user_id=user_id,
                customer_id=invoice.customer_id,
                amount_paid=invoice.amount_paid,
                currency=invoice.currency,
                status=invoice.status,
                billing_reason=invoice.billing_reason,
                invoice_pdf=invoice.invoice_pdf,
                invoice_url=invoice.invoice_url,
                period_start=invoice.period_start,
                period_end=invoice.period_end,
                paid_at=invoice.paid_at,
                created_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=[billing_records.c.invoice_id])
        )
        return result.rowcount > 0

    @guarded_read
    def list_billing_records(self, user_id: str, limit: int = 10) -> List[BillingRecord]:
        statement = (
            select(BillingRecord)
            .where(BillingRecord.user_id == user_id)
            .order_by(desc(BillingRecord.created_at), desc(BillingRecord.id))
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    # ------------------------
    # Trials
    # ------------------------
    def insert_trial(
        self,
        user_id: str,
        customer_email: Optional[str],
        start: datetime,
        end: datetime,
        limits: TierLimits,
    ) -> bool:
        """Insert a no-card trial row; False if the user already has a subscription."""
        result = self._execute(
            self._insert(subscriptions)
            .values(
                user_id=user_id,
                customer_id=f"{TRIAL_CUSTOMER_PREFIX}{user_id}",
                customer_email=customer_email,
                subscription_id=None,
                price_id=None,
                tier=SubscriptionTier.TRIAL.value,
                status=SubscriptionStatus.TRIALING.value,
                period_start=start,
                period_end=end,
                cancel_at_period_end=False,
                trial_start=start,
                trial_end=end,
                max_clients=limits.max_clients,
                max_posts_per_month=limits.max_posts_per_month,
                max_ai_credits_per_month=limits.max_ai_credits_per_month,
                clients_used=0,
                posts_used_this_month=0,
                ai_credits_used_this_month=0,
                usage_reset_at=start,
                created_at=start,
                updated_at=start,
            )
            .on_conflict_do_nothing(index_elements=[subscriptions.c.user_id])
        )
        return result.rowcount > 0

    def _expired_trial_clause(self, now: datetime):
        return and_(
            subscriptions.c.tier == SubscriptionTier.TRIAL.value,
            subscriptions.c.status == SubscriptionStatus.TRIALING.value,
            subscriptions.c.period_end < now,
            subscriptions.c.customer_id.like(f"{TRIAL_CUSTOMER_PREFIX}%"),
        )

    @guarded_read
    def list_expired_trials(self, now: datetime) -> List[Subscription]:
        statement = select(Subscription).where(self._expired_trial_clause(now))
        return list(self.session.exec(statement).all())

    def downgrade_trial(self, subscription_id: int, now: datetime, limits: TierLimits) -> bool:
        result = self._execute(
            update(subscriptions)
            .where(subscriptions.c.id == subscription_id, self._expired_trial_clause(now))
            .values(
                tier=SubscriptionTier.FREEMIUM.value,
                status=SubscriptionStatus.ACTIVE.value,
                max_clients=limits.max_clients,
                max_posts_per_month=limits.max_posts_per_month,
                max_ai_credits_per_month=limits.max_ai_credits_per_month,
                updated_at=now,
            )
        )
        return result.rowcount > 0

    # ------------------------
    # Webhook delivery log
    # ------------------------
    @guarded_read
    def is_event_processed(self, event_id: str) -> bool:
        event = self.session.exec(select(WebhookEvent).where(WebhookEvent.event_id == event_id)).first()
        return bool(event and event.processed)

    def record_event(self, event_id: str, event_type: str, error: Optional[str] = None) -> None:
        now = utcnow()
        processed = error is None
        stmt = self._insert(webhook_events).values(
            event_id=event_id,
            event_type=event_type,
            processed=processed,
            processing_error=error,
            received_at=now,
            processed_at=now if processed else None,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[webhook_events.c.event_id],
            set_={
                "processed": stmt.excluded.processed,
                "processing_error": stmt.excluded.processing_error,
                "processed_at": stmt.excluded.processed_at,
            },
        )
        self._execute(stmt)

    def purge_webhook_events(self, cutoff: datetime) -> int:
        """Drop processed delivery records received before ``cutoff``. Failed ones are kept."""
        result = self._execute(
            delete(webhook_events).where(
                webhook_events.c.processed.is_(True),
                webhook_events.c.received_at < cutoff,
            )
        )
        return result.rowcount
