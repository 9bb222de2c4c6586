"""Translate user retrieval intent into a log request."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from ..config import TAIL_UNSPECIFIED
from ..errors import ConfigurationError

# Seconds per unit, same unit set as Go's time.ParseDuration.
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,  # U+00B5 micro sign
    "μs": 1e-6,  # U+03BC greek mu
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


@dataclass(frozen=True)
class RetrievalRequest:
    """Normalized log retrieval request shared by every stream task."""

    since_seconds: int | None = None
    tail_lines: int | None = None
    follow: bool = False

    def to_api_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``read_namespaced_pod_log``; unset filters are omitted."""
        kwargs: dict[str, Any] = {"follow": self.follow}
        if self.since_seconds is not None:
            kwargs["since_seconds"] = self.since_seconds
        if self.tail_lines is not None:
            kwargs["tail_lines"] = self.tail_lines
        return kwargs


def parse_duration(text: str) -> float:
    """Parse a duration like ``300ms``, ``1h30m`` or ``2.5h`` into seconds.

    Raises:
        ConfigurationError: if ``text`` is not a valid duration.
    """
    raw = text.strip()
    if not raw:
        raise ConfigurationError("invalid duration: empty string")

    sign = 1.0
    if raw[0] in "+-":
        sign = -1.0 if raw[0] == "-" else 1.0
        raw = raw[1:]

    if raw == "0":
        return 0.0
    if not raw:
        raise ConfigurationError(f"invalid duration {text!r}")

    total = 0.0
    pos = 0
    while pos < len(raw):
        match = _DURATION_PART.match(raw, pos)
        if match is None:
            raise ConfigurationError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    return sign * total


def resolve_request(since: str, tail: int, follow: bool) -> RetrievalRequest:
    """Build a :class:`RetrievalRequest` from raw option values.

    Args:
        since: Relative duration text, empty for no time window.
        tail: Number of most recent lines, ``TAIL_UNSPECIFIED`` (-1) for all.
        follow: Keep the streams open until interrupted.

    Raises:
        ConfigurationError: on an unparseable or negative duration, or a
            tail count below -1.
    """
    since_seconds = None
    if since:
        seconds = parse_duration(since)
        if seconds < 0:
            raise ConfigurationError(f"since duration must not be negative: {since!r}")
        since_seconds = int(seconds)

    tail_lines = None
    if tail != TAIL_UNSPECIFIED:
        if tail < 0:
            raise ConfigurationError(f"tail must be -1 (all lines) or a non-negative count, got {tail}")
        tail_lines = tail

    return RetrievalRequest(since_seconds=since_seconds, tail_lines=tail_lines, follow=follow)
