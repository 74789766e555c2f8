"""Runtime configuration for the dispatch service."""

from datetime import timedelta
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchSettings(BaseSettings):
    """Dispatch configuration, read from ``DISPATCH_<FIELD>`` environment variables.

    Keyword arguments win over the environment, which is how the runner's
    command line flags are applied.

    Attributes:
        vat_rate: VAT added on top of the final price.
        courier_share: Fraction of the final price paid to the courier.
        night_surcharge: Flat fee added to night deliveries.
        night_start_hour: First hour of the night window, on the ``timezone`` clock.
        night_end_hour: Hour the night window ends (exclusive).
        timezone: IANA zone the night window is evaluated in.
        free_km: Kilometers not charged.
        distance_timeout_s: Bound on a routing distance lookup.
        expiry_ttl_minutes: How long a delivery may stay published unclaimed.
        sweep_interval_minutes: Minimum time between two expiry sweeps.
        reminder_after_minutes: Published this long, the courier pool gets a reminder.
        reminder_until_minutes: Published this long, reminders stop.
        stuck_after_minutes: Claimed this long without pickup, the courier gets a reminder.
        reminder_interval_minutes: Minimum time between two reminder passes.
        claim_max_attempts: Conditional-update attempts per claim.
        order_number_prefix: Prefix of generated order numbers.
        notification_log_size: Outcomes kept in memory; unbounded when unset.
        zones_file: JSON zone table; built-in zones when unset.
        database_url: SQLAlchemy URL; in-memory registry when unset.
    """

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_", env_ignore_empty=True, extra="ignore", frozen=True
    )

    vat_rate: Decimal = Field(default=Decimal("0.18"), ge=0, le=1, description="VAT rate")
    courier_share: Decimal = Field(
        default=Decimal("0.70"), ge=0, le=1, description="Courier share of the final price"
    )
    night_surcharge: Decimal = Field(default=Decimal("25.00"), ge=0, description="Flat night fee")
    night_start_hour: int = Field(default=22, ge=0, le=23)
    night_end_hour: int = Field(default=6, ge=0, le=23)
    timezone: str = Field(default="Asia/Jerusalem", description="Zone of the night window")
    free_km: Decimal = Field(default=Decimal("0"), ge=0, description="Free kilometers")
    distance_timeout_s: float = Field(default=3.0, gt=0.0, le=60.0)
    expiry_ttl_minutes: int = Field(default=30, ge=1, description="Unclaimed delivery lifetime")
    sweep_interval_minutes: int = Field(default=5, ge=1, description="Expiry sweep cadence")
    reminder_after_minutes: int = Field(default=10, ge=1)
    reminder_until_minutes: int = Field(default=25, ge=1)
    stuck_after_minutes: int = Field(default=120, ge=1)
    reminder_interval_minutes: int = Field(default=5, ge=1)
    claim_max_attempts: int = Field(default=2, ge=1, le=10)
    order_number_prefix: str = Field(default="DLV", min_length=1, max_length=8)
    notification_log_size: int | None = Field(default=10_000, ge=1)
    zones_file: str | None = None
    database_url: str | None = None
    host: str = "localhost"
    port: int = Field(default=8000, ge=1, le=65535)
    log_level: str = "INFO"

    @field_validator("vat_rate", "courier_share", "night_surcharge", "free_km", mode="before")
    @classmethod
    def decimal_from_text(cls, v: Any) -> Any:
        """Parse floats through their shortest repr so 0.1 stays 0.1."""
        if isinstance(v, float):
            return Decimal(str(v))
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def check_windows(self) -> "DispatchSettings":
        if self.night_start_hour == self.night_end_hour:
            raise ValueError("night_start_hour and night_end_hour must differ")
        if self.reminder_after_minutes >= self.reminder_until_minutes:
            raise ValueError("reminder_after_minutes must be below reminder_until_minutes")
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def expiry_ttl(self) -> timedelta:
        return timedelta(minutes=self.expiry_ttl_minutes)

    @property
    def sweep_interval(self) -> timedelta:
        return timedelta(minutes=self.sweep_interval_minutes)

    @property
    def reminder_window(self) -> tuple[timedelta, timedelta]:
        return (
            timedelta(minutes=self.reminder_after_minutes),
            timedelta(minutes=self.reminder_until_minutes),
        )

    @property
    def stuck_after(self) -> timedelta:
        return timedelta(minutes=self.stuck_after_minutes)

    @property
    def reminder_interval(self) -> timedelta:
        return timedelta(minutes=self.reminder_interval_minutes)
