from __future__ import annotations

from pathlib import Path

import allure
import pytest

from bulk_sender.config import Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment settings"),
]


def test_settings_defaults_match_surface_pacing() -> None:
    settings = Settings.from_env()

    assert settings.limits.max_targets == 100
    assert settings.limits.max_payload_chars == 4000
    assert settings.limits.min_delay_ms == 5000
    assert settings.limits.max_delay_ms == 300_000
    assert settings.delivery.max_attempts == 3
    assert settings.delivery.attempt_timeout_seconds == 30.0
    assert settings.readiness.max_checks == 30
    assert settings.injection.input_lookup_checks == 15
    assert settings.surface.base_url == "https://web.whatsapp.com"
    assert settings.surface.headless is False
    settings.validate()


def test_settings_read_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("BULK_SENDER_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("BULK_SENDER_ATTEMPT_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("BULK_SENDER_HEADLESS", "yes")
    monkeypatch.setenv("BULK_SENDER_BROWSER_CHANNEL", "chrome")
    monkeypatch.setenv("BULK_SENDER_SEND_CONTROL_CHECKS", "8")
    monkeypatch.setenv("BULK_SENDER_SEND_CONTROL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("BULK_SENDER_STRATEGY_PAUSE_SECONDS", "0.25")

    settings = Settings.from_env(user_data_dir=tmp_path / "profile")

    assert settings.delivery.max_attempts == 5
    assert settings.delivery.attempt_timeout_seconds == 12.5
    assert settings.surface.headless is True
    assert settings.surface.browser_channel == "chrome"
    assert settings.surface.user_data_dir == tmp_path / "profile"
    assert settings.delivery.send_control_checks == 8
    assert settings.delivery.send_control_interval_seconds == 0.5
    assert settings.injection.strategy_pause_seconds == 0.25


def test_settings_reject_invalid_boolean(monkeypatch) -> None:
    monkeypatch.setenv("BULK_SENDER_HEADLESS", "maybe")

    with pytest.raises(ValueError, match="BULK_SENDER_HEADLESS"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("BULK_SENDER_MAX_ATTEMPTS", "0"),
        ("BULK_SENDER_ATTEMPT_TIMEOUT_SECONDS", "0"),
        ("BULK_SENDER_READY_MAX_CHECKS", "0"),
        ("BULK_SENDER_SEND_CONTROL_CHECKS", "0"),
        ("BULK_SENDER_BASE_URL", "web.whatsapp.com"),
    ],
)
def test_settings_validate_names_offending_variable(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        Settings.from_env().validate()


def test_settings_validate_rejects_inverted_delay_bounds(monkeypatch) -> None:
    monkeypatch.setenv("BULK_SENDER_MIN_DELAY_MS", "10000")
    monkeypatch.setenv("BULK_SENDER_MAX_DELAY_MS", "5000")

    with pytest.raises(ValueError, match="BULK_SENDER_MAX_DELAY_MS"):
        Settings.from_env().validate()
