"""Injectable time source for every "now"-based computation."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
	return datetime.now(UTC)
