# app/core/confirmation/messages.py
"""
Customer-facing confirmation text for each channel.

Plain string building only; provider specifics (TwiML wrapping, MIME
assembly) live in the channel adapters.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from html import escape

from app.core.confirmation.domain import Job


JOB_TYPE_LABELS: dict[str, str] = {
    "PICKUP": "Pickup",
    "DROP_OFF": "Drop-Off",
    "DUMP_OUT": "Dump-Out",
    "SWAP": "Swap",
    "HAUL": "Haul",
}


@dataclass(frozen=True)
class Branding:
    """Company details printed in every confirmation."""
    company_name: str
    callback_number: str


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    text: str
    html: str


def job_type_label(job_type: str) -> str:
    """``DROP_OFF`` → ``Drop-Off``; unknown types are title-cased."""
    if job_type in JOB_TYPE_LABELS:
        return JOB_TYPE_LABELS[job_type]
    return job_type.replace("_", "-").title() if job_type else "Service"


def format_job_date(value: date | None) -> str:
    """``Sun, Oct 19`` (no leading zero on the day)."""
    if value is None:
        return "date to be confirmed"
    return f"{value:%a}, {value:%b} {value.day}"


def format_job_time(value: str | None) -> str:
    """``14:30`` → ``2:30 PM``; anything unparseable is passed through."""
    if not value:
        return "time to be confirmed"
    try:
        hours, minutes = (int(part) for part in value.split(":", 1))
    except ValueError:
        return value
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        return value
    suffix = "AM" if hours < 12 else "PM"
    return f"{hours % 12 or 12}:{minutes:02d} {suffix}"


def render_sms(job: Job, branding: Branding) -> str:
    lines = [
        f"{branding.company_name} — Confirmed",
        f"{job_type_label(job.job_type)} @ {job.address}",
        f"{format_job_date(job.date)} at {job.time or 'TBD'}",
    ]
    if job.container_size:
        lines.append(f"Size: {job.container_size}")
    lines.append(f"Questions? Call {branding.callback_number}")
    return "\n".join(lines)


def render_voice_script(job: Job, branding: Branding) -> str:
    """Text-to-speech script read to the customer when they pick up."""
    greeting = f"Hello {job.customer}." if job.customer else "Hello."
    parts = [
        greeting,
        f"This is {branding.company_name} confirming your "
        f"{job_type_label(job.job_type).lower()} at {job.address}",
        f"on {format_job_date(job.date)} at {format_job_time(job.time)}.",
    ]
    if job.container_size:
        parts.append(f"Container size: {job.container_size}.")
    # Spell the callback number digit by digit so TTS doesn't read it as a quantity
    digits = " ".join(ch for ch in branding.callback_number if ch.isdigit())
    parts.append(f"If you have any questions, please call us at {digits}. Thank you.")
    return " ".join(parts)


def render_email(job: Job, branding: Branding) -> EmailMessage:
    label = job_type_label(job.job_type)
    when = f"{format_job_date(job.date)} at {format_job_time(job.time)}"
    subject = f"{branding.company_name} — {label} confirmed for {format_job_date(job.date)}"

    rows = [
        ("Service", label),
        ("Address", job.address),
        ("When", when),
    ]
    if job.container_size:
        rows.append(("Container", job.container_size))

    text_lines = [
        f"Hi {job.customer}," if job.customer else "Hello,",
        "",
        f"Your {label.lower()} with {branding.company_name} is confirmed.",
        "",
    ]
    text_lines += [f"{name}: {value}" for name, value in rows]
    text_lines += [
        "",
        f"Questions? Call {branding.callback_number}.",
        f"Reference: {job.id}",
    ]

    html_rows = "".join(
        f"<tr><td><strong>{escape(name)}</strong></td><td>{escape(value)}</td></tr>"
        for name, value in rows
    )
    salutation = f"Hi {escape(job.customer)}," if job.customer else "Hello,"
    html = (
        f"<p>{salutation}</p>"
        f"<p>Your {escape(label.lower())} with {escape(branding.company_name)} is confirmed.</p>"
        f"<table>{html_rows}</table>"
        f"<p>Questions? Call {escape(branding.callback_number)}.</p>"
        f"<p style=\"color:#888\">Reference: {escape(job.id)}</p>"
    )

    return EmailMessage(subject=subject, text="\n".join(text_lines), html=html)
