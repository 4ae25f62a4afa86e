import smtplib
import uuid
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.mime.base import MIMEBase
from email import encoders
from typing import Optional
from jinja2 import Environment, FileSystemLoader, select_autoescape
import os

from core.config import SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, MAIL_FROM, APP_NAME, FRONTEND_URL, SUPPORT_EMAIL, logger

# Jinja env
_templates_dir = os.path.join(os.path.dirname(__file__), "..", "templates")
_jinja_env = Environment(
    loader=FileSystemLoader(_templates_dir),
    autoescape=select_autoescape(["html", "xml"]),
)

EMAIL_BRAND_BUTTON_BG = os.getenv("EMAIL_BRAND_BUTTON_BG", "#2563EB")
EMAIL_BRAND_BUTTON_TEXT = os.getenv("EMAIL_BRAND_BUTTON_TEXT", "#FFFFFF")
EMAIL_BRAND_BG = os.getenv("EMAIL_BRAND_BG", "#F8FAFC")
EMAIL_LOGO_URL = os.getenv("EMAIL_LOGO_URL", f"{FRONTEND_URL}/logo.png")


class EmailDeliveryError(Exception):
    """SMTP transport refused or could not deliver a message."""


def render_email(template_name: str, **context) -> str:
    base = {
        "app_name": APP_NAME,
        "brand_bg": EMAIL_BRAND_BG,
        "button_bg": EMAIL_BRAND_BUTTON_BG,
        "button_text": EMAIL_BRAND_BUTTON_TEXT,
        "logo_url": EMAIL_LOGO_URL,
        "support_email": SUPPORT_EMAIL,
        "frontend_url": FRONTEND_URL,
    }
    base.update(context or {})
    return _jinja_env.get_template(template_name).render(**base)


def send_email_smtp(
    to_addr: str,
    subject: str,
    html: str,
    text: Optional[str] = None,
    from_addr: Optional[str] = None,
    reply_to: Optional[str] = None,
    attachments: Optional[list[dict]] = None,
) -> bool:
    try:
        if not SMTP_HOST or not MAIL_FROM:
            logger.error("SMTP not configured; cannot send email")
            return False
        sender = (from_addr or MAIL_FROM).strip()
        display_from = f"{APP_NAME} <{sender}>" if "<" not in sender else sender
        envelope_from = sender.split("<")[-1].rstrip(">").strip() if "<" in sender else sender

        domain = envelope_from.split("@")[-1] if "@" in envelope_from else "staka.fr"
        msg = MIMEMultipart("mixed" if attachments else "alternative")
        msg["Subject"] = subject
        msg["From"] = display_from
        msg["To"] = to_addr
        msg["Message-ID"] = f"<{uuid.uuid4()}@{domain}>"
        msg["Date"] = datetime.utcnow().strftime("%a, %d %b %Y %H:%M:%S +0000")
        if reply_to:
            msg["Reply-To"] = reply_to

        if not text:
            text = "Ouvrez ce message dans un client compatible HTML."
        if attachments:
            alt = MIMEMultipart("alternative")
            alt.attach(MIMEText(text, "plain", _charset="utf-8"))
            alt.attach(MIMEText(html or "", "html", _charset="utf-8"))
            msg.attach(alt)
            for att in attachments:
                fname = str(att.get("filename") or "attachment")
                mime = str(att.get("mime_type") or "application/octet-stream").lower()
                main, sub = mime.split("/", 1) if "/" in mime else ("application", "octet-stream")
                part = MIMEBase(main, sub)
                part.set_payload(att.get("content") or b"")
                encoders.encode_base64(part)
                part.add_header("Content-Disposition", f'attachment; filename="{fname}"')
                msg.attach(part)
        else:
            msg.attach(MIMEText(text, "plain", _charset="utf-8"))
            msg.attach(MIMEText(html or "", "html", _charset="utf-8"))

        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
            server.starttls()
            if SMTP_USER or SMTP_PASS:
                server.login(SMTP_USER, SMTP_PASS)
            server.sendmail(envelope_from, [to_addr], msg.as_string())
        return True
    except Exception as ex:
        logger.exception(f"SMTP send failed: {ex}")
        return False


class SmtpMailer:
    """Mailer used by the payment side effects; raises instead of returning False."""

    def send(
        self,
        to_addr: str,
        subject: str,
        html: str,
        text: Optional[str] = None,
        attachments: Optional[list[dict]] = None,
    ) -> None:
        ok = send_email_smtp(to_addr, subject, html, text=text, reply_to=SUPPORT_EMAIL, attachments=attachments)
        if not ok:
            raise EmailDeliveryError(f"could not deliver '{subject}' to {to_addr}")


def get_mailer() -> SmtpMailer:
    return SmtpMailer()
