"""Runtime configuration for bulk delivery jobs."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class JobLimits:
    """Bounds applied to every submitted job."""

    max_targets: int = 100
    max_payload_chars: int = 4_000
    min_delay_ms: int = 5_000
    max_delay_ms: int = 300_000
    large_batch_threshold: int = 10


@dataclass(slots=True)
class DeliverySettings:
    """Per-target attempt and retry policy."""

    max_attempts: int = 3
    attempt_timeout_seconds: float = 30.0
    retry_base_seconds: float = 2.0
    retry_max_seconds: float = 10.0
    pre_submit_settle_seconds: float = 0.5
    verify_settle_seconds: float = 2.0
    verify_checks: int = 3
    verify_interval_seconds: float = 1.0
    send_control_checks: int = 5
    send_control_interval_seconds: float = 0.2
    close_grace_seconds: float = 2.0


@dataclass(slots=True)
class ReadinessSettings:
    """Polling schedule used while a fresh context becomes interactive."""

    initial_delay_seconds: float = 2.0
    interval_seconds: float = 1.0
    max_checks: int = 30


@dataclass(slots=True)
class InjectionSettings:
    """Content injection tunables."""

    input_lookup_checks: int = 15
    input_lookup_interval_seconds: float = 2.0
    strategy_pause_seconds: float = 0.1
    typing_delay_seconds: float = 0.01


@dataclass(slots=True)
class SurfaceSettings:
    """Browser surface settings."""

    base_url: str = "https://web.whatsapp.com"
    user_data_dir: Path = Path(".bulk_sender_profile")
    headless: bool = False
    browser_channel: str | None = None
    navigation_timeout_seconds: float = 45.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    limits: JobLimits = field(default_factory=JobLimits)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    readiness: ReadinessSettings = field(default_factory=ReadinessSettings)
    injection: InjectionSettings = field(default_factory=InjectionSettings)
    surface: SurfaceSettings = field(default_factory=SurfaceSettings)

    @classmethod
    def from_env(cls, user_data_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching the surface's pacing."""

        return cls(
            limits=JobLimits(
                max_targets=int(os.getenv("BULK_SENDER_MAX_TARGETS", "100")),
                max_payload_chars=int(os.getenv("BULK_SENDER_MAX_PAYLOAD_CHARS", "4000")),
                min_delay_ms=int(os.getenv("BULK_SENDER_MIN_DELAY_MS", "5000")),
                max_delay_ms=int(os.getenv("BULK_SENDER_MAX_DELAY_MS", "300000")),
                large_batch_threshold=int(
                    os.getenv("BULK_SENDER_LARGE_BATCH_THRESHOLD", "10"),
                ),
            ),
            delivery=DeliverySettings(
                max_attempts=int(os.getenv("BULK_SENDER_MAX_ATTEMPTS", "3")),
                attempt_timeout_seconds=float(
                    os.getenv("BULK_SENDER_ATTEMPT_TIMEOUT_SECONDS", "30.0"),
                ),
                retry_base_seconds=float(os.getenv("BULK_SENDER_RETRY_BASE_SECONDS", "2.0")),
                retry_max_seconds=float(os.getenv("BULK_SENDER_RETRY_MAX_SECONDS", "10.0")),
                pre_submit_settle_seconds=float(
                    os.getenv("BULK_SENDER_PRE_SUBMIT_SETTLE_SECONDS", "0.5"),
                ),
                verify_settle_seconds=float(
                    os.getenv("BULK_SENDER_VERIFY_SETTLE_SECONDS", "2.0"),
                ),
                verify_checks=int(os.getenv("BULK_SENDER_VERIFY_CHECKS", "3")),
                verify_interval_seconds=float(
                    os.getenv("BULK_SENDER_VERIFY_INTERVAL_SECONDS", "1.0"),
                ),
                send_control_checks=int(os.getenv("BULK_SENDER_SEND_CONTROL_CHECKS", "5")),
                send_control_interval_seconds=float(
                    os.getenv("BULK_SENDER_SEND_CONTROL_INTERVAL_SECONDS", "0.2"),
                ),
                close_grace_seconds=float(os.getenv("BULK_SENDER_CLOSE_GRACE_SECONDS", "2.0")),
            ),
            readiness=ReadinessSettings(
                initial_delay_seconds=float(
                    os.getenv("BULK_SENDER_READY_INITIAL_DELAY_SECONDS", "2.0"),
                ),
                interval_seconds=float(os.getenv("BULK_SENDER_READY_INTERVAL_SECONDS", "1.0")),
                max_checks=int(os.getenv("BULK_SENDER_READY_MAX_CHECKS", "30")),
            ),
            injection=InjectionSettings(
                input_lookup_checks=int(os.getenv("BULK_SENDER_INPUT_LOOKUP_CHECKS", "15")),
                input_lookup_interval_seconds=float(
                    os.getenv("BULK_SENDER_INPUT_LOOKUP_INTERVAL_SECONDS", "2.0"),
                ),
                strategy_pause_seconds=float(
                    os.getenv("BULK_SENDER_STRATEGY_PAUSE_SECONDS", "0.1"),
                ),
                typing_delay_seconds=float(
                    os.getenv("BULK_SENDER_TYPING_DELAY_SECONDS", "0.01"),
                ),
            ),
            surface=SurfaceSettings(
                base_url=os.getenv("BULK_SENDER_BASE_URL", "https://web.whatsapp.com"),
                user_data_dir=user_data_dir
                or Path(os.getenv("BULK_SENDER_USER_DATA_DIR", ".bulk_sender_profile")),
                headless=_env_bool("BULK_SENDER_HEADLESS", default=False),
                browser_channel=os.getenv("BULK_SENDER_BROWSER_CHANNEL") or None,
                navigation_timeout_seconds=float(
                    os.getenv("BULK_SENDER_NAVIGATION_TIMEOUT_SECONDS", "45.0"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the delivery loop cannot honour."""

        if self.limits.max_targets <= 0:
            raise ValueError("BULK_SENDER_MAX_TARGETS must be a positive integer.")
        if self.limits.max_payload_chars <= 0:
            raise ValueError("BULK_SENDER_MAX_PAYLOAD_CHARS must be a positive integer.")
        if self.limits.min_delay_ms < 0:
            raise ValueError("BULK_SENDER_MIN_DELAY_MS must be >= 0.")
        if self.limits.max_delay_ms < self.limits.min_delay_ms:
            raise ValueError(
                "BULK_SENDER_MAX_DELAY_MS must be >= BULK_SENDER_MIN_DELAY_MS.",
            )
        if self.delivery.max_attempts <= 0:
            raise ValueError("BULK_SENDER_MAX_ATTEMPTS must be a positive integer.")
        if self.delivery.attempt_timeout_seconds <= 0:
            raise ValueError("BULK_SENDER_ATTEMPT_TIMEOUT_SECONDS must be > 0.")
        if self.delivery.retry_max_seconds < self.delivery.retry_base_seconds:
            raise ValueError(
                "BULK_SENDER_RETRY_MAX_SECONDS must be >= BULK_SENDER_RETRY_BASE_SECONDS.",
            )
        if self.delivery.verify_checks <= 0:
            raise ValueError("BULK_SENDER_VERIFY_CHECKS must be a positive integer.")
        if self.delivery.send_control_checks <= 0:
            raise ValueError("BULK_SENDER_SEND_CONTROL_CHECKS must be a positive integer.")
        if self.readiness.max_checks <= 0:
            raise ValueError("BULK_SENDER_READY_MAX_CHECKS must be a positive integer.")
        if self.injection.input_lookup_checks <= 0:
            raise ValueError("BULK_SENDER_INPUT_LOOKUP_CHECKS must be a positive integer.")
        _validate_base_url(self.surface.base_url)


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid BULK_SENDER_BASE_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
