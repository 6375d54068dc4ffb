# app/infra/confirmation_channels.py
"""
Provider adapters for customer confirmations.

- Voice: Twilio outbound call reading a TwiML <Say> script
- SMS:   Twilio programmable messaging
- Email: SMTP (STARTTLS) or Microsoft Graph ``sendMail``

Each adapter makes exactly one provider call per attempt. Provider
failures are raised as ``ChannelProviderError`` (with a ``retryable``
hint); the orchestrator turns them into failed outcomes and applies
the per-channel timeout.

Usage:
    adapters = build_channel_adapters(settings)
    outcome = await adapters[ConfirmationChannel.SMS].attempt(job, "+17185550123")
"""
from __future__ import annotations

import abc
import asyncio
import smtplib
import time
from email.message import EmailMessage as MimeMessage
from email.utils import make_msgid
from functools import partial
from typing import Any, Callable

import aiohttp
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client
from twilio.twiml.voice_response import VoiceResponse

from app.config import Settings
from app.core.confirmation.domain import ChannelOutcome, ConfirmationChannel, ErrorKind, Job
from app.core.confirmation.errors import ChannelConfigurationError, ChannelProviderError
from app.core.confirmation.messages import (
    Branding,
    EmailMessage,
    render_email,
    render_sms,
    render_voice_script,
)
from app.infra.http_client import get_default_session
from app.infra.logging_config import get_logger, mask_email, mask_phone

logger = get_logger(__name__)

# Twilio error codes that will never succeed on retry (bad/unreachable number)
_TWILIO_PERMANENT_CODES = {21211, 21214, 21408, 21610, 21612, 21614}


def _is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def branding_from_settings(settings: Settings) -> Branding:
    return Branding(
        company_name=settings.company_name,
        callback_number=settings.company_callback_number,
    )


class ChannelAdapterBase(abc.ABC):
    """Shared plumbing: blocking SDK calls go through the default executor."""

    channel: ConfirmationChannel

    @abc.abstractmethod
    async def attempt(self, job: Job, target: str) -> ChannelOutcome:
        pass

    async def _run_blocking(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _provider_error(self, exc: TwilioRestException) -> ChannelProviderError:
        status = exc.status or 0
        retryable = _is_retryable_status(status) and exc.code not in _TWILIO_PERMANENT_CODES
        return ChannelProviderError(
            self.channel.value,
            f"Twilio error {exc.code or status}: {exc.msg}",
            status=status,
            code=exc.code,
            retryable=retryable,
        )


# =============================================================================
# TWILIO (voice + SMS)
# =============================================================================

def _twilio_client(settings: Settings, channel: ConfirmationChannel) -> Client:
    if not settings.twilio_enabled:
        raise ChannelConfigurationError(
            channel.value,
            "Twilio credentials are not configured (TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER)",
        )
    return Client(settings.twilio_account_sid, settings.twilio_auth_token)


class VoiceChannel(ChannelAdapterBase):
    """Outbound confirmation call; the reference is the Twilio call SID."""

    channel = ConfirmationChannel.VOICE

    def __init__(self, settings: Settings, branding: Branding | None = None, client: Client | None = None):
        self._client = client or _twilio_client(settings, self.channel)
        self._from_number = settings.twilio_phone_number
        self._tts_voice = settings.twilio_tts_voice
        self._branding = branding or branding_from_settings(settings)

    def build_twiml(self, job: Job) -> str:
        response = VoiceResponse()
        response.say(render_voice_script(job, self._branding), voice=self._tts_voice)
        return str(response)

    async def attempt(self, job: Job, target: str) -> ChannelOutcome:
        logger.debug(
            "Placing confirmation call to %s", mask_phone(target),
            extra={"job_id": job.id, "channel": "voice", "provider": "twilio"},
        )
        try:
            call = await self._run_blocking(
                self._client.calls.create,
                to=target,
                from_=self._from_number,
                twiml=self.build_twiml(job),
            )
        except TwilioRestException as exc:
            raise self._provider_error(exc) from exc

        return ChannelOutcome.sent(self.channel, call.sid)


class SmsChannel(ChannelAdapterBase):
    """Confirmation text message; the reference is the Twilio message SID."""

    channel = ConfirmationChannel.SMS

    def __init__(self, settings: Settings, branding: Branding | None = None, client: Client | None = None):
        self._client = client or _twilio_client(settings, self.channel)
        self._from_number = settings.twilio_phone_number
        self._branding = branding or branding_from_settings(settings)

    async def attempt(self, job: Job, target: str) -> ChannelOutcome:
        logger.debug(
            "Sending confirmation SMS to %s", mask_phone(target),
            extra={"job_id": job.id, "channel": "sms", "provider": "twilio"},
        )
        try:
            message = await self._run_blocking(
                self._client.messages.create,
                to=target,
                from_=self._from_number,
                body=render_sms(job, self._branding),
            )
        except TwilioRestException as exc:
            raise self._provider_error(exc) from exc

        # Twilio can accept the request and reject the message in one response
        error_code = getattr(message, "error_code", None)
        if error_code:
            return ChannelOutcome.failed(
                self.channel,
                ErrorKind.PROVIDER_ERROR,
                f"Twilio error {error_code}: {getattr(message, 'error_message', None) or 'message rejected'}",
            )
        return ChannelOutcome.sent(self.channel, message.sid)


# =============================================================================
# EMAIL
# =============================================================================

class EmailTransport(abc.ABC):
    name: str

    @abc.abstractmethod
    async def send(self, to: str, message: EmailMessage) -> str | None:
        """Deliver one message; returns the provider message id if any."""


class SmtpTransport(EmailTransport):
    name = "smtp"

    def __init__(self, settings: Settings, timeout: float | None = None):
        if not settings.smtp_enabled:
            raise ChannelConfigurationError(
                "email", "SMTP credentials are not configured (SMTP_HOST, SMTP_USER, SMTP_PASSWORD)",
            )
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._user = settings.smtp_user
        self._password = settings.smtp_password
        self._sender = settings.smtp_from or settings.smtp_user
        # Socket timeout bounded by the email channel timeout
        self._timeout = timeout if timeout is not None else settings.email_timeout_seconds

    def build_mime(self, to: str, message: EmailMessage) -> MimeMessage:
        msg = MimeMessage()
        msg["From"] = self._sender
        msg["To"] = to
        msg["Subject"] = message.subject
        msg["Message-ID"] = make_msgid(domain=self._sender.rpartition("@")[2] or None)
        msg.set_content(message.text)
        msg.add_alternative(message.html, subtype="html")
        return msg

    def _send_smtp(self, msg: MimeMessage) -> None:
        """Send email via SMTP (blocking)"""
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            server.starttls()
            server.login(self._user, self._password)
            server.send_message(msg)

    async def send(self, to: str, message: EmailMessage) -> str | None:
        msg = self.build_mime(to, message)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_smtp, msg)
        except smtplib.SMTPResponseException as exc:
            raise ChannelProviderError(
                "email",
                f"SMTP error {exc.smtp_code}: {exc.smtp_error!r}",
                status=exc.smtp_code,
                code=exc.smtp_code,
                retryable=400 <= exc.smtp_code < 500,
            ) from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise ChannelProviderError("email", "SMTP recipient refused", status=550) from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise ChannelProviderError(
                "email", f"SMTP connection failed: {exc.__class__.__name__}", retryable=True,
            ) from exc
        return msg["Message-ID"]


class GraphTransport(EmailTransport):
    """Microsoft Graph ``sendMail`` with the client-credentials flow."""

    name = "graph"

    TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
    SEND_URL = "https://graph.microsoft.com/v1.0/users/{sender}/sendMail"
    SCOPE = "https://graph.microsoft.com/.default"

    def __init__(self, settings: Settings, session_factory: Callable[[], aiohttp.ClientSession] = get_default_session):
        if not settings.graph_enabled:
            raise ChannelConfigurationError(
                "email",
                "Graph credentials are not configured (GRAPH_TENANT_ID, GRAPH_CLIENT_ID, GRAPH_CLIENT_SECRET)",
            )
        self._tenant_id = settings.graph_tenant_id
        self._client_id = settings.graph_client_id
        self._client_secret = settings.graph_client_secret
        self._sender = settings.graph_sender
        self._session_factory = session_factory
        self._token: str | None = None
        self._token_expires_at = 0.0

    async def _access_token(self) -> str:
        # Refresh a minute early so a token never expires mid-request
        if self._token and time.monotonic() < self._token_expires_at - 60:
            return self._token

        session = self._session_factory()
        async with session.post(
            self.TOKEN_URL.format(tenant=self._tenant_id),
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "scope": self.SCOPE,
            },
        ) as resp:
            if resp.status != 200:
                raise ChannelProviderError(
                    "email",
                    f"Graph token request failed: status={resp.status}",
                    status=resp.status,
                    retryable=_is_retryable_status(resp.status),
                )
            data = await resp.json()

        self._token = data["access_token"]
        self._token_expires_at = time.monotonic() + float(data.get("expires_in", 3600))
        return self._token

    @staticmethod
    def build_payload(to: str, message: EmailMessage) -> dict:
        return {
            "message": {
                "subject": message.subject,
                "body": {"contentType": "HTML", "content": message.html},
                "toRecipients": [{"emailAddress": {"address": to}}],
            },
            "saveToSentItems": True,
        }

    async def send(self, to: str, message: EmailMessage) -> str | None:
        try:
            token = await self._access_token()
            session = self._session_factory()
            async with session.post(
                self.SEND_URL.format(sender=self._sender),
                json=self.build_payload(to, message),
                headers={"Authorization": f"Bearer {token}"},
            ) as resp:
                if resp.status == 401:
                    self._token = None
                if resp.status != 202:
                    body = (await resp.text())[:300]
                    raise ChannelProviderError(
                        "email",
                        f"Graph sendMail failed: status={resp.status} body={body}",
                        status=resp.status,
                        retryable=_is_retryable_status(resp.status),
                    )
                return resp.headers.get("request-id")
        except aiohttp.ClientError as exc:
            raise ChannelProviderError(
                "email", f"Graph request failed: {exc.__class__.__name__}", retryable=True,
            ) from exc


def build_email_transport(settings: Settings) -> EmailTransport:
    if settings.email_provider == "graph":
        return GraphTransport(settings)
    return SmtpTransport(settings, timeout=settings.channel_timeout("email"))


class EmailChannel(ChannelAdapterBase):
    """Confirmation email; the reference is the provider message id."""

    channel = ConfirmationChannel.EMAIL

    def __init__(
        self,
        settings: Settings,
        branding: Branding | None = None,
        transport: EmailTransport | None = None,
    ):
        self._transport = transport or build_email_transport(settings)
        self._branding = branding or branding_from_settings(settings)

    async def attempt(self, job: Job, target: str) -> ChannelOutcome:
        logger.debug(
            "Sending confirmation email to %s", mask_email(target),
            extra={"job_id": job.id, "channel": "email", "provider": self._transport.name},
        )
        reference = await self._transport.send(target, render_email(job, self._branding))
        return ChannelOutcome.sent(self.channel, reference)


# =============================================================================
# REGISTRY
# =============================================================================

_ADAPTERS: dict[ConfirmationChannel, type[ChannelAdapterBase]] = {
    ConfirmationChannel.VOICE: VoiceChannel,
    ConfirmationChannel.EMAIL: EmailChannel,
    ConfirmationChannel.SMS: SmsChannel,
}


def parse_enabled_channels(raw: str) -> list[ConfirmationChannel]:
    """``"voice, sms"`` → [VOICE, SMS]; unknown names are logged and ignored."""
    enabled: list[ConfirmationChannel] = []
    for name in (part.strip().lower() for part in raw.split(",")):
        if not name:
            continue
        try:
            channel = ConfirmationChannel(name)
        except ValueError:
            logger.error(f"Unknown confirmation channel: {name}")
            continue
        if channel not in enabled:
            enabled.append(channel)
    return enabled


def build_channel_adapters(
    settings: Settings,
    branding: Branding | None = None,
) -> dict[ConfirmationChannel, ChannelAdapterBase]:
    """
    Resolve adapters once at startup.

    A channel whose adapter cannot be configured is left out (disabled for
    the process) with a warning, rather than failing every dispatch.
    """
    branding = branding or branding_from_settings(settings)
    adapters: dict[ConfirmationChannel, ChannelAdapterBase] = {}

    for channel in parse_enabled_channels(settings.confirmation_channels):
        try:
            adapters[channel] = _ADAPTERS[channel](settings, branding)
        except ChannelConfigurationError as exc:
            logger.warning(
                f"Confirmation channel '{channel.value}' disabled: {exc}",
                extra={"channel": channel.value},
            )

    logger.info(
        "Confirmation channels enabled: %s",
        ",".join(c.value for c in adapters) or "none",
    )
    return adapters
