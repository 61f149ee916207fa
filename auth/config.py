"""Authentication configuration."""

from pydantic import BaseModel, Field, model_validator


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    All durations are in their natural units (minutes for short-lived
    credentials, days for remember-me) to make configuration intuitive.
    """

    # Magic link settings
    magic_link_ttl_minutes: int = Field(
        default=5,
        description="How long magic links remain valid",
        ge=1,
        le=60,
    )
    min_response_ms: int = Field(
        default=800,
        description="Floor on magic link request latency so registered and "
        "unregistered emails take the same time (typical SMTP send time)",
        ge=0,
        le=5000,
    )

    # Remember me settings
    remember_me_ttl_days: int = Field(
        default=30,
        description="Lifetime of a remember-me credential",
        ge=1,
        le=365,
    )

    # Session settings
    session_expiry_hours: int = Field(
        default=8,
        description="Session lifetime in hours (sliding)",
        ge=1,
        le=720,
    )
    anonymous_session_minutes: int = Field(
        default=30,
        description="Lifetime of the pre-login session carrying the CSRF token",
        ge=5,
        le=240,
    )

    # Rate limiting
    rate_limit_max_attempts_per_email: int = Field(
        default=5,
        description="Max magic link requests per email per window",
        ge=1,
        le=100,
    )
    rate_limit_max_attempts_per_ip: int = Field(
        default=20,
        description="Max magic link requests per client IP per window",
        ge=1,
        le=1000,
    )
    rate_limit_window_minutes: int = Field(
        default=15,
        description="Rate limit window duration (fixed windows)",
        ge=1,
        le=60,
    )
    rate_limit_hourly_max_per_email: int = Field(
        default=8,
        description="Ceiling per email across any rolling hour; bounds bursts "
        "straddling a window boundary",
        ge=1,
        le=1000,
    )
    rate_limit_hourly_max_per_ip: int = Field(
        default=40,
        description="Ceiling per client IP across any rolling hour",
        ge=1,
        le=10000,
    )

    # Cookies
    session_cookie_name: str = Field(default="admin_session")
    remember_me_cookie_name: str = Field(default="admin_remember_token")
    secure_cookies: bool = Field(
        default=True,
        description="Set the Secure flag on auth cookies (disable only for local HTTP)",
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for magic link generation",
    )
    app_name: str = Field(
        default="Admin Portal",
        description="Application name for emails",
    )
    display_timezone: str = Field(
        default="UTC",
        description="IANA timezone used when showing times in emails",
    )
    notification_workers: int = Field(
        default=2,
        description="Background threads for login notification emails",
        ge=1,
        le=16,
    )

    @model_validator(mode="after")
    def _hourly_ceiling_not_below_window(self) -> "AuthConfig":
        if self.rate_limit_hourly_max_per_email < self.rate_limit_max_attempts_per_email:
            raise ValueError(
                "rate_limit_hourly_max_per_email must be >= rate_limit_max_attempts_per_email"
            )
        if self.rate_limit_hourly_max_per_ip < self.rate_limit_max_attempts_per_ip:
            raise ValueError(
                "rate_limit_hourly_max_per_ip must be >= rate_limit_max_attempts_per_ip"
            )
        return self

    @property
    def magic_link_ttl_seconds(self) -> int:
        return self.magic_link_ttl_minutes * 60

    @property
    def remember_me_ttl_seconds(self) -> int:
        return self.remember_me_ttl_days * 86400
