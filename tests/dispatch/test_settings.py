"""Tests for dispatch configuration."""

from datetime import timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from dispatch.settings import DispatchSettings


class TestDispatchSettings:
    """Test settings defaults, validation and environment loading."""

    def test_defaults(self) -> None:
        settings = DispatchSettings()
        assert settings.vat_rate == Decimal("0.18")
        assert settings.courier_share == Decimal("0.70")
        assert settings.night_surcharge == Decimal("25.00")
        assert settings.expiry_ttl == timedelta(minutes=30)
        assert settings.sweep_interval == timedelta(minutes=5)
        assert settings.database_url is None

    def test_float_input_stays_exact(self) -> None:
        settings = DispatchSettings(vat_rate=0.17)
        assert settings.vat_rate == Decimal("0.17")

    def test_log_level_is_normalized(self) -> None:
        assert DispatchSettings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            DispatchSettings(log_level="chatty")

    def test_invalid_values_rejected(self) -> None:
        with pytest.raises(ValidationError):
            DispatchSettings(courier_share=Decimal("1.5"))
        with pytest.raises(ValidationError):
            DispatchSettings(night_start_hour=5, night_end_hour=5)
        with pytest.raises(ValidationError):
            DispatchSettings(expiry_ttl_minutes=0)

    def test_reads_prefixed_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DISPATCH_VAT_RATE", "0.17")
        monkeypatch.setenv("DISPATCH_EXPIRY_TTL_MINUTES", "45")
        monkeypatch.setenv("DISPATCH_DATABASE_URL", "sqlite:///dispatch.db")
        monkeypatch.setenv("DISPATCH_PORT", "")
        monkeypatch.setenv("VAT_RATE", "0.5")

        settings = DispatchSettings()

        assert settings.vat_rate == Decimal("0.17")
        assert settings.expiry_ttl == timedelta(minutes=45)
        assert settings.database_url == "sqlite:///dispatch.db"
        assert settings.port == 8000

    def test_keyword_arguments_win_over_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DISPATCH_PORT", "9000")
        monkeypatch.setenv("DISPATCH_HOST", "0.0.0.0")

        settings = DispatchSettings(port=9100)

        assert settings.port == 9100
        assert settings.host == "0.0.0.0"

    def test_invalid_environment_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DISPATCH_COURIER_SHARE", "2")
        with pytest.raises(ValidationError):
            DispatchSettings()

    def test_timezone(self) -> None:
        assert DispatchSettings().tzinfo == ZoneInfo("Asia/Jerusalem")
        assert DispatchSettings(timezone="UTC").tzinfo == ZoneInfo("UTC")
        with pytest.raises(ValidationError):
            DispatchSettings(timezone="Mars/Olympus_Mons")

    def test_reminder_thresholds(self) -> None:
        settings = DispatchSettings()
        assert settings.reminder_window == (timedelta(minutes=10), timedelta(minutes=25))
        assert settings.stuck_after == timedelta(hours=2)
        assert settings.reminder_interval == timedelta(minutes=5)
        with pytest.raises(ValidationError):
            DispatchSettings(reminder_after_minutes=25, reminder_until_minutes=25)

    def test_settings_are_frozen(self) -> None:
        settings = DispatchSettings()
        with pytest.raises(ValidationError):
            settings.port = 1234  # type: ignore[misc]
