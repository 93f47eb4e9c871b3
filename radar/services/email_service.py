"""
Transactional email: SMTP delivery and Jinja2-rendered alert notifications.

Setup (Gmail):
1. Go to https://myaccount.google.com/apppasswords
2. Generate an App Password for "Mail"
3. Set SMTP_EMAIL and SMTP_APP_PASSWORD in .env
"""

import asyncio
import logging
import re
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from radar.config import settings
from radar.services.metrics import METRIC_LABELS, format_metric_value

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent.parent / "templates" / "email"


def _get_jinja_env() -> Environment:
    """Create a Jinja2 environment with the email templates directory."""
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _deliver(sender: str, password: str, to: str, msg: MIMEMultipart) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
        server.ehlo()
        server.starttls()
        server.ehlo()
        server.login(sender, password)
        server.sendmail(sender, [to], msg.as_string())


async def send_email(
    to: str,
    subject: str,
    body_html: str,
    reply_to: str | None = None,
) -> dict:
    """
    Send an email via SMTP.
    Returns {"success": True/False, "message": "..."}
    """
    sender = settings.smtp_email
    password = settings.smtp_app_password

    if not sender or not password:
        logger.warning("SMTP not configured: skipping email send")
        return {"success": False, "message": "SMTP credentials not configured."}

    msg = MIMEMultipart("alternative")
    msg["From"] = f"{settings.alert_from_name} <{sender}>"
    msg["To"] = to
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to

    plain_text = body_html.replace("<br>", "\n").replace("<br/>", "\n")
    plain_text = re.sub(r"<[^>]+>", "", plain_text)
    plain_text = re.sub(r"\n\s*\n+", "\n\n", plain_text).strip()

    msg.attach(MIMEText(plain_text, "plain"))
    msg.attach(MIMEText(body_html, "html"))

    try:
        await asyncio.to_thread(_deliver, sender, password, to, msg)
        logger.info("Email sent to %s: %s", to, subject)
        return {"success": True, "message": f"Email sent to {to}"}

    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP auth failed: %s", e)
        return {"success": False, "message": "SMTP authentication failed."}
    except Exception as e:
        logger.error("Email send failed: %s", e)
        return {"success": False, "message": f"Email failed: {e}"}


def build_alert_email(
    project_name: str,
    project_url: str,
    project_page_url: str,
    breaches: list[dict],
    triggered_by: str,
) -> tuple[str, str]:
    """Build the consolidated alert email for one audit cycle. Returns (subject, html_body)."""
    count = len(breaches)
    subject = (
        f"Performance alert: {project_name}: "
        f"{count} metric{'s' if count > 1 else ''} exceeded threshold"
    )
    rows = [
        {
            "label": METRIC_LABELS.get(b["metric"], b["metric"].upper()),
            "value": format_metric_value(b["metric"], b["value"]),
            "threshold": format_metric_value(b["metric"], b["threshold"]),
        }
        for b in breaches
    ]
    html = _get_jinja_env().get_template("alert.html").render(
        project_name=project_name,
        project_url=project_url,
        project_page_url=project_page_url,
        breaches=rows,
        scheduled=triggered_by == "cron",
    )
    return subject, html
