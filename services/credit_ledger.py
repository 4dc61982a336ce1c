# ================================================================
# services/credit_ledger.py: Purchased AI credit balance
# ================================================================
import logging
from typing import Optional

from core.errors import MalformedPayload
from schemas.event_schema import CheckoutSessionData, HandlerOutcome
from services.catalog import TierCatalog
from services.store import SubscriptionStore

logger = logging.getLogger(__name__)


class CreditLedger:
    """
    Additive purchased-credit counter, separate from the monthly allotment.
    A checkout session is credited at most once.
    """

    def __init__(self, store: SubscriptionStore, catalog: TierCatalog):
        self.store = store
        self.catalog = catalog

    def add_purchased_credits(self, user_id: str, amount: int, session_id: Optional[str] = None) -> bool:
        """
        Atomically add ``amount`` to the user's balance.
        Returns False when ``session_id`` was already credited.
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise MalformedPayload(f"Credit amount must be a positive integer, got {amount!r}", user_id=user_id)

        with self.store.transaction() as store:
            if session_id and not store.claim_checkout_session(session_id, user_id, amount):
                logger.info(f"ℹ️ Checkout session {session_id} already credited, skipping")
                return False
            store.add_purchased_credits(user_id, amount)

        logger.info(f"✅ Added {amount} credits to user {user_id}")
        return True

    def get_purchased_credits(self, user_id: str) -> int:
        return self.store.get_purchased_credits(user_id)

    def apply_checkout(self, session: CheckoutSessionData) -> HandlerOutcome:
        """Credit a completed credit-purchase checkout from its trusted metadata."""
        amount = self._credits_for(session)
        if amount is None:
            logger.error(f"❌ Credits not found in session metadata for credit purchase {session.session_id}")
            return HandlerOutcome.IGNORED

        if self.add_purchased_credits(session.user_id, amount, session_id=session.session_id):
            return HandlerOutcome.PROCESSED
        return HandlerOutcome.DUPLICATE

    def _credits_for(self, session: CheckoutSessionData) -> Optional[int]:
        raw = session.metadata.get("credits")
        if raw is not None:
            try:
                return int(raw)
            except ValueError as e:
                raise MalformedPayload(f"Non-integer credits metadata {raw!r}", session_id=session.session_id) from e

        package = self.catalog.credit_package(session.metadata.get("creditPackageId"))
        return package.credits if package else None
