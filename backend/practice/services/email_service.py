from __future__ import annotations
import asyncio
import html
import logging
import re
import smtplib
import ssl
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from practice import config as settings
from practice.config import ReminderConfig
from practice.utils import as_utc

logger = logging.getLogger(__name__)

DEFAULT_APPOINTMENT_TYPE = "Therapy Session"


class EmailConfigError(RuntimeError):
    pass


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


def _zone(tz_name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("[email] unknown timezone %r, falling back to UTC", tz_name)
        return ZoneInfo("UTC")


def format_appointment_datetime(value: datetime, tz_name: Optional[str] = None) -> str:
    """e.g. 'Tuesday, March 4, 2025 at 02:00 PM' in the practice time zone."""
    local = as_utc(value).astimezone(_zone(tz_name))
    return f"{local:%A, %B} {local.day}, {local:%Y} at {local:%I:%M %p}"


def _duration_text(duration: Optional[int]) -> str:
    return f"{duration} minutes" if duration else "1 hour"


def html_to_text(body: str) -> str:
    text = re.sub(r"<br\s*/?>", "\n", body, flags=re.I)
    text = re.sub(r"</(p|div|li)>", "\n", text, flags=re.I)
    text = re.sub(r"<li[^>]*>", "• ", text, flags=re.I)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _apply_template(
    template: Dict[str, str],
    values: Dict[str, str],
    company_logo: Optional[str],
) -> RenderedEmail:
    def fill(source: str, icon: str) -> str:
        out = source
        for key, val in values.items():
            out = out.replace("{{" + key + "}}", val)
        return out.replace("{{userIcon}}", icon)

    icon_html = (
        f'<img src="{html.escape(company_logo, quote=True)}" alt="" style="max-height: 60px;">'
        if company_logo else ""
    )
    subject = fill(template.get("subject") or "Appointment Reminder", "")
    body = fill(template.get("body") or "", icon_html)
    return RenderedEmail(subject=subject, html=body, text=html_to_text(body))


def render_reminder_email(
    client_name: str,
    appointment_date: datetime,
    appointment_type: Optional[str],
    duration: Optional[int],
    timezone: Optional[str] = None,
    template: Optional[Dict[str, str]] = None,
    company_logo: Optional[str] = None,
) -> RenderedEmail:
    when = format_appointment_datetime(appointment_date, timezone)
    kind = appointment_type or DEFAULT_APPOINTMENT_TYPE
    duration_text = _duration_text(duration)

    if template and (template.get("body") or template.get("subject")):
        values = {
            "clientName": client_name,
            "firstName": (client_name or "").split(" ")[0],
            "appointmentDate": when,
            "appointmentType": kind,
            "duration": duration_text,
        }
        return _apply_template(template, values, company_logo)

    weekday = when.split(",")[0]
    subject = f"Reminder: Your appointment tomorrow - {weekday}"
    name = html.escape(client_name)
    logo = (
        f'<p><img src="{html.escape(company_logo, quote=True)}" alt="" style="max-height: 60px;"></p>'
        if company_logo else ""
    )
    body_html = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Appointment Reminder</title></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="color: #0069ff;">Appointment Reminder</h1>
    <p>Dear {name},</p>
    <p>This is a friendly reminder that you have an appointment scheduled for:</p>
    <div style="background-color: #e7f3ff; padding: 15px; border-left: 4px solid #0069ff; margin: 20px 0;">
        <p style="margin: 0; font-size: 18px; font-weight: bold;">{html.escape(when)}</p>
        <p style="margin: 5px 0 0 0; color: #666;">{html.escape(kind)} &bull; {duration_text}</p>
    </div>
    <p>If you need to reschedule or cancel, please contact me as soon as possible.</p>
    <p>Best regards,<br><strong>{html.escape(settings.SMTP_FROM_NAME)}</strong></p>
    {logo}
    <p style="font-size: 12px; color: #999;">This is an automated reminder. Please do not reply to this email.</p>
</body>
</html>"""
    body_text = (
        "Appointment Reminder\n\n"
        f"Dear {client_name},\n\n"
        "This is a friendly reminder that you have an appointment scheduled for:\n\n"
        f"{when}\n{kind} • {duration_text}\n\n"
        "If you need to reschedule or cancel, please contact me as soon as possible.\n\n"
        f"Best regards,\n{settings.SMTP_FROM_NAME}\n\n"
        "---\nThis is an automated reminder. Please do not reply to this email."
    )
    return RenderedEmail(subject=subject, html=body_html, text=body_text)


def _send_smtp(to: str, email: RenderedEmail) -> None:
    if not settings.SMTP_USER or not settings.SMTP_PASS:
        raise EmailConfigError("SMTP credentials not configured")
    if not settings.SMTP_FROM:
        raise EmailConfigError("SMTP_FROM not configured")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = email.subject
    msg["From"] = formataddr((settings.SMTP_FROM_NAME, settings.SMTP_FROM))
    msg["To"] = to
    msg.attach(MIMEText(email.text, "plain", "utf-8"))
    msg.attach(MIMEText(email.html, "html", "utf-8"))

    context = ssl.create_default_context()
    if settings.SMTP_PORT == 465:
        with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, context=context) as server:
            server.login(settings.SMTP_USER, settings.SMTP_PASS)
            server.sendmail(settings.SMTP_FROM, [to], msg.as_string())
    else:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
            server.starttls(context=context)
            server.login(settings.SMTP_USER, settings.SMTP_PASS)
            server.sendmail(settings.SMTP_FROM, [to], msg.as_string())


async def send_email(to: str, email: RenderedEmail) -> None:
    await asyncio.to_thread(_send_smtp, to, email)
    logger.info("[email] sent %r to %s", email.subject, to)


async def send_reminder_email(
    to: str,
    client_name: str,
    appointment_date: datetime,
    appointment_type: Optional[str],
    duration: Optional[int],
    config: ReminderConfig,
) -> RenderedEmail:
    email = render_reminder_email(
        client_name,
        appointment_date,
        appointment_type,
        duration,
        timezone=config.timezone,
        template=config.email_template,
        company_logo=config.company_logo,
    )
    await send_email(to, email)
    return email
