import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

load_dotenv()

from core.config import settings
from core.database import create_db_and_tables
from routes.webhook import router as webhook_router
from routes.subscription import router as subscription_router
from routes.cron import router as cron_router
from services.catalog import TierCatalog
from services.email_service import EmailService
from services.processor_client import StripeProcessor

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (DB + shared clients)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    app.state.processor = StripeProcessor.from_settings(settings)
    app.state.catalog = TierCatalog.from_settings(settings)
    app.state.email_service = EmailService.from_settings(settings)
    logger.info("✅ Billing service started.")
    yield
    logger.info("✅ Application shutting down.")

# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="Billing Reconciliation Service")

allowed_origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# 📦 Routers
# =========================================
app.include_router(webhook_router)  # ✅ Stripe webhooks
app.include_router(subscription_router)
app.include_router(cron_router)


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Billing service is running"}
