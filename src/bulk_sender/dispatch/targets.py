"""Recipient address normalization."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

MIN_DIGITS = 7
MAX_DIGITS = 15

_SEPARATORS_RE = re.compile(r"[\n,]")
_NON_DIGIT_RE = re.compile(r"\D")


@dataclass(slots=True)
class NormalizationReport:
    """Canonical targets plus the raw entries that were dropped."""

    targets: tuple[str, ...]
    rejected: tuple[str, ...] = ()
    duplicates: tuple[str, ...] = ()


def normalize_target(value: str) -> str | None:
    """Return the canonical ``+<digits>`` form, or None when the digit count is invalid."""

    digits = _NON_DIGIT_RE.sub("", value)
    if not MIN_DIGITS <= len(digits) <= MAX_DIGITS:
        return None
    return f"+{digits}"


def split_raw_targets(raw: str) -> list[str]:
    """Split operator input on newlines and commas, dropping blank entries."""

    return [part.strip() for part in _SEPARATORS_RE.split(raw) if part.strip()]


def normalize_targets(values: Iterable[str]) -> NormalizationReport:
    """Normalize, validate and deduplicate targets preserving first occurrence."""

    targets: list[str] = []
    rejected: list[str] = []
    duplicates: list[str] = []
    seen: set[str] = set()
    for value in values:
        token = value.strip()
        if not token:
            continue
        canonical = normalize_target(token)
        if canonical is None:
            rejected.append(token)
            continue
        if canonical in seen:
            duplicates.append(token)
            continue
        seen.add(canonical)
        targets.append(canonical)
    return NormalizationReport(
        targets=tuple(targets),
        rejected=tuple(rejected),
        duplicates=tuple(duplicates),
    )


def parse_targets(raw: str) -> NormalizationReport:
    """Normalize a newline/comma separated block of recipient addresses."""

    return normalize_targets(split_raw_targets(raw))
