import logging
from datetime import datetime
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.errors import EmailDeliveryFailed

logger = logging.getLogger(__name__)


class EmailService:
    """
    Transactional billing emails via SendGrid.
    Without SENDGRID_API_KEY and MAIL_FROM, messages are logged instead of sent.
    """

    def __init__(self, api_key: Optional[str] = None, sender_email: Optional[str] = None, frontend_url: str = ""):
        self.sendgrid_api_key = api_key
        self.sender_email = sender_email
        self.frontend_url = frontend_url.rstrip("/")

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    @classmethod
    def from_settings(cls, settings) -> "EmailService":
        return cls(
            api_key=settings.SENDGRID_API_KEY,
            sender_email=str(settings.MAIL_FROM) if settings.MAIL_FROM else None,
            frontend_url=settings.FRONTEND_URL,
        )

    # ============================================================
    # ✅ Trial ending reminder
    # ============================================================
    def send_trial_ending_email(self, to_email: str, tier: str, trial_end: Optional[datetime]) -> bool:
        """
        Returns True once the message is accepted (or mock-logged).
        Raises EmailDeliveryFailed when SendGrid rejects it.
        """
        ends = trial_end.strftime("%B %d, %Y") if trial_end else "soon"
        billing_link = f"{self.frontend_url}/settings/billing"

        if not self.enabled:
            # Development fallback (no SendGrid setup)
            logger.info(f"📨 [Mock Email] To: {to_email}")
            logger.info(f"Trial ({tier}) ends: {ends} | Link: {billing_link}")
            return True

        subject = f"⏳ Your {tier.title()} trial ends {ends}"

        html_content = f"""
        <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>👋 Hello!</h2>
            <p>Your <strong>{tier.title()}</strong> trial ends on <strong>{ends}</strong>.</p>
            <p>Add a payment method to keep your clients, scheduled posts and AI credits.</p>

            <p style="text-align: center; margin: 20px 0;">
                <a href="{billing_link}" style="
                    background-color: #4F46E5;
                    color: white;
                    padding: 12px 28px;
                    text-decoration: none;
                    border-radius: 6px;
                    font-weight: bold;
                    display: inline-block;
                ">Manage billing</a>
            </p>

            <p style="word-break: break-all; color: #555;">{billing_link}</p>
        </div>
        """

        try:
            message = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
            )
            sg = SendGridAPIClient(self.sendgrid_api_key)
            response = sg.send(message)
        except Exception as e:
            raise EmailDeliveryFailed(f"Failed to send trial reminder to {to_email}: {e}") from e

        if response.status_code >= 400:
            raise EmailDeliveryFailed(f"SendGrid rejected trial reminder to {to_email}: {response.status_code}")

        logger.info(f"✅ Trial reminder sent to {to_email}. Status: {response.status_code}")
        return True
