# scripts/seed.py

import os
import sys
import argparse
from datetime import timedelta

from dotenv import load_dotenv
from sqlmodel import Session

# Ensure root path for relative imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# ✅ Load environment variables before settings are read
load_dotenv()

from core.database import engine, create_db_and_tables
from models.models import SubscriptionStatus, SubscriptionTier, utcnow
from schemas.event_schema import SubscriptionState
from services.catalog import TIER_LIMITS
from services.store import SubscriptionStore
from services.trial_service import start_trial


def seed_dev_data():
    """Seed development database with one paying user, one trial and some credits."""
    print("🌱 Seeding development data...")
    create_db_and_tables()

    with Session(engine) as session:
        store = SubscriptionStore(session)
        now = utcnow()

        # -----------------------------
        # 💳 Professional subscriber
        # -----------------------------
        if store.get_by_user("demo-pro") is None:
            state = SubscriptionState(
                subscription_id="sub_demo_pro",
                customer_id="cus_demo_pro",
                price_id=os.getenv("STRIPE_PROFESSIONAL_PRICE_ID") or "price_demo_professional",
                status=SubscriptionStatus.ACTIVE,
                period_start=now,
                period_end=now + timedelta(days=30),
            )
            tier = SubscriptionTier.PROFESSIONAL.value
            with store.transaction():
                store.upsert_authoritative("demo-pro", state, tier, TIER_LIMITS[tier], "pro@demo.com")
                store.add_purchased_credits("demo-pro", 150)
            print("✅ Added professional subscriber demo-pro with 150 purchased credits")

        # -----------------------------
        # 🎁 Trial user
        # -----------------------------
        if store.get_by_user("demo-trial") is None:
            start_trial(store, "demo-trial", email="trial@demo.com")
            print("✅ Added trial user demo-trial")

    print("🌱 Development data seeding complete.")


def seed_expired_trial():
    """Seed a trial that is already past its end, for exercising the expiry cron."""
    print("🌱 Seeding expired trial...")
    create_db_and_tables()

    with Session(engine) as session:
        store = SubscriptionStore(session)
        if store.get_by_user("demo-expired") is None:
            start_trial(store, "demo-expired", email="expired@demo.com", now=utcnow() - timedelta(days=20))
            print("✅ Added expired trial user demo-expired")

    print("🌱 Expired trial seeding complete.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed the billing database.")
    parser.add_argument(
        "--scenario",
        choices=["dev", "expired-trial"],
        default="dev",
        help="Select what to seed (dev or expired-trial)",
    )
    args = parser.parse_args()

    if args.scenario == "dev":
        seed_dev_data()
    elif args.scenario == "expired-trial":
        seed_expired_trial()
