import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from html import escape

from heartf.core.config import settings

logger = logging.getLogger(__name__)


class EmailNotConfiguredError(RuntimeError):
    status_code = 500


def assert_email_configured() -> None:
    required = {
        "SMTP_HOST": settings.SMTP_HOST,
        "SMTP_PORT": settings.SMTP_PORT,
        "SMTP_USER": settings.SMTP_USER,
        "SMTP_PASS": settings.SMTP_PASS,
        "SMTP_FROM": settings.SMTP_FROM,
    }
    for name, value in required.items():
        if not value:
            raise EmailNotConfiguredError(f"Missing {name}")


def send_email(*, to_email: str, subject: str, html: str, text_body: str | None = None) -> None:
    assert_email_configured()

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.SMTP_FROM
    message["To"] = to_email
    message.set_content(text_body or "This message requires an HTML capable mail client.")
    message.add_alternative(html, subtype="html")

    host = settings.SMTP_HOST
    port = int(settings.SMTP_PORT)
    if settings.SMTP_SECURE:
        with smtplib.SMTP_SSL(host, port, timeout=20) as client:
            client.login(settings.SMTP_USER, settings.SMTP_PASS)
            client.send_message(message, from_addr=settings.SMTP_FROM, to_addrs=[to_email])
        return

    with smtplib.SMTP(host, port, timeout=20) as client:
        client.ehlo()
        if client.has_extn("starttls"):
            client.starttls()
            client.ehlo()
        client.login(settings.SMTP_USER, settings.SMTP_PASS)
        client.send_message(message, from_addr=settings.SMTP_FROM, to_addrs=[to_email])


def send_invite_email(to_email: str, invite_link: str, expires_at: datetime) -> None:
    company = escape(settings.COMPANY_NAME)
    link = escape(invite_link, quote=True)
    expires_text = expires_at.isoformat()

    html = f"""
        <div style="font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto;">
          <h2>You've been invited</h2>
          <p>You've been invited to join <b>{company}</b>.</p>
          <p>
            <a href="{link}" style="display:inline-block;padding:10px 14px;border-radius:10px;background:#111827;color:#fff;text-decoration:none;">
              Accept invite
            </a>
          </p>
          <p style="color:#6b7280;font-size:12px;">This link expires on {expires_text}.</p>
        </div>
    """
    text_body = (
        f"You've been invited to join {settings.COMPANY_NAME}.\n\n"
        f"Accept the invite here:\n{invite_link}\n\n"
        f"This link expires on {expires_text}."
    )

    send_email(
        to_email=to_email,
        subject=f"Your invite to {settings.COMPANY_NAME}",
        html=html,
        text_body=text_body,
    )
    logger.info("invite email sent to %s", to_email)
