from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    app_env: Literal["dev", "staging", "prod"] = "dev"
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    pghost: str = "localhost"
    pgport: int = 5432
    pguser: str = "postgres"
    pgpassword: str = ""
    pgdatabase: str = "postgres"
    pg_pool_min: int = 1
    pg_pool_max: int = 10
    pg_connect_timeout: int = 5
    pg_statement_timeout_ms: int = 30000
    pg_idle_in_tx_timeout_ms: int = 30000

    # Security
    allowed_origins: list[str] = ["*"]
    metrics_token: str | None = None  # If set, /metrics and /health/detailed require Bearer token
    # Used for /metrics and /health/detailed when metrics_token is not set
    internal_networks: str = "10.0.0.0/8,172.16.0.0/12,192.168.0.0/16,127.0.0.0/8,::1/128"
    trust_proxy_headers: bool = False

    # Confirmation channels
    # Comma-separated subset of "voice,email,sms". Channels left out here, or
    # whose provider credentials are missing, are disabled for the process lifetime.
    confirmation_channels: str = "voice,email,sms"
    # "any" - job is confirmed if at least one channel got through
    # "all" - every attempted channel must succeed
    confirmation_success_policy: Literal["any", "all"] = "any"
    voice_timeout_seconds: float = 20.0
    email_timeout_seconds: float = 15.0
    sms_timeout_seconds: float = 10.0

    # Message content
    company_name: str = "EDCC Services"
    company_callback_number: str = "(718) 555-0100"

    # Twilio (voice + SMS)
    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_phone_number: str | None = None  # Caller ID for calls and SMS sender (E.164)
    twilio_tts_voice: str = "alice"

    # Email
    # "smtp"  - send via SMTP relay (STARTTLS)
    # "graph" - send via Microsoft Graph sendMail (Outlook mailbox)
    email_provider: Literal["smtp", "graph"] = "smtp"
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None  # Defaults to smtp_user
    graph_tenant_id: str | None = None
    graph_client_id: str | None = None
    graph_client_secret: str | None = None
    graph_sender: str = "dispatch@company.com"

    # Activity log
    activity_actor_id: str = "system"
    activity_actor_name: str = "System"

    # Monitoring
    enable_metrics: bool = True
    enable_request_logging: bool = True

    @property
    def is_production(self) -> bool:
        return self.app_env == "prod"

    @property
    def is_staging(self) -> bool:
        return self.app_env == "staging"

    @property
    def pg_connect_options(self) -> dict:
        """asyncpg connect arguments used when DATABASE_URL is not set."""
        if self.database_url:
            return {}
        return {
            "host": self.pghost,
            "port": self.pgport,
            "user": self.pguser,
            "password": self.pgpassword or None,
            "database": self.pgdatabase,
            "timeout": self.pg_connect_timeout,
        }

    @property
    def pg_server_settings(self) -> dict[str, str]:
        return {
            "statement_timeout": str(self.pg_statement_timeout_ms),
            "idle_in_transaction_session_timeout": str(self.pg_idle_in_tx_timeout_ms),
        }

    @property
    def twilio_enabled(self) -> bool:
        """Check if Twilio credentials are configured"""
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_phone_number
        )

    @property
    def smtp_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    @property
    def graph_enabled(self) -> bool:
        return bool(
            self.graph_tenant_id
            and self.graph_client_id
            and self.graph_client_secret
        )

    def channel_timeout(self, channel: str) -> float:
        """Per-channel provider timeout in seconds."""
        return {
            "voice": self.voice_timeout_seconds,
            "email": self.email_timeout_seconds,
            "sms": self.sms_timeout_seconds,
        }[channel]

    def validate_required_for_production(self) -> list[str]:
        """Validate that required settings exist for production"""
        if not self.is_production:
            return []

        missing = []

        required_fields = [
            ("database_url", self.database_url),
        ]

        enabled = {c.strip() for c in self.confirmation_channels.split(",") if c.strip()}
        if enabled & {"voice", "sms"}:
            required_fields.extend([
                ("twilio_account_sid", self.twilio_account_sid),
                ("twilio_auth_token", self.twilio_auth_token),
                ("twilio_phone_number", self.twilio_phone_number),
            ])
        if "email" in enabled:
            if self.email_provider == "smtp":
                required_fields.extend([
                    ("smtp_host", self.smtp_host),
                    ("smtp_user", self.smtp_user),
                    ("smtp_password", self.smtp_password),
                ])
            else:
                required_fields.extend([
                    ("graph_tenant_id", self.graph_tenant_id),
                    ("graph_client_id", self.graph_client_id),
                    ("graph_client_secret", self.graph_client_secret),
                ])

        for field_name, value in required_fields:
            if not value:
                missing.append(field_name)

        return missing


def warn_on_risky_config(s: "Settings") -> list[str]:
    warnings: list[str] = []

    if s.is_production and s.allowed_origins == ["*"]:
        warnings.append("prod: allowed_origins=['*'] (CORS is wide open).")

    if s.enable_metrics and not s.metrics_token:
        warnings.append(
            "enable_metrics=True but metrics_token is not set: /metrics and /health/detailed fall back to internal_networks."
        )

    # --- Channel configuration ---
    enabled = {c.strip() for c in s.confirmation_channels.split(",") if c.strip()}
    unknown = enabled - {"voice", "email", "sms"}
    if unknown:
        warnings.append(f"confirmation_channels contains unknown channels: {sorted(unknown)}")

    if enabled & {"voice", "sms"} and not s.twilio_enabled:
        warnings.append("voice/sms enabled but Twilio credentials are incomplete (channels will be disabled).")

    if "email" in enabled:
        if s.email_provider == "smtp" and not s.smtp_enabled:
            warnings.append("email_provider=smtp but SMTP credentials are incomplete (email will be disabled).")
        if s.email_provider == "graph" and not s.graph_enabled:
            warnings.append("email_provider=graph but Graph credentials are incomplete (email will be disabled).")

    for name in ("voice", "email", "sms"):
        if s.channel_timeout(name) <= 0:
            warnings.append(f"{name}_timeout_seconds must be positive.")

    return warnings


def validate_or_warn(s: "Settings") -> None:
    """
    In prod: enforce required settings (hard fail).
    In non-prod: warn only.
    """
    missing = s.validate_required_for_production()

    if missing:
        raise RuntimeError(f"Missing required settings for production: {', '.join(missing)}")

    for msg in warn_on_risky_config(s):
        print(f"[WARN][config] {msg}")

settings = Settings()
validate_or_warn(settings)
