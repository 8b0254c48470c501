"""Timestamp normalization.

Records written by different clients over the years carry their creation
time in several encodings: plain epoch milliseconds, ``{seconds, nanoseconds}``
maps, the ``{_seconds, _nanoseconds}`` shape produced by JSON-serialized
server timestamps, SDK objects with a ``toMillis()`` method, datetimes and
RFC 3339 strings from the REST API.

``classify`` maps a raw value onto one closed set of encodings and
``to_epoch_ms`` converts each of them. ``normalize`` combines the two and
never raises: anything it cannot read becomes ``UNKNOWN``, which sorts after
every known time.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Mapping, Union

from nippo_feed.errors import MalformedTimestampError

logger = logging.getLogger(__name__)

UNKNOWN = None

_NANOS_PER_MS = 1_000_000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class EpochMillis:
    value: int


@dataclass(frozen=True)
class SecondsField:
    seconds: int
    nanos: int = 0


@dataclass(frozen=True)
class UnderscoreSeconds:
    seconds: int
    nanos: int = 0


@dataclass(frozen=True)
class MillisMethod:
    method: Callable[[], Any]


@dataclass(frozen=True)
class AwareDatetime:
    value: datetime


@dataclass(frozen=True)
class IsoString:
    text: str


@dataclass(frozen=True)
class Unrecognized:
    raw: Any


TimestampEncoding = Union[
    EpochMillis, SecondsField, UnderscoreSeconds, MillisMethod,
    AwareDatetime, IsoString, Unrecognized,
]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _field(raw: Any, name: str) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name)
    return getattr(raw, name, None)


def classify(raw: Any) -> TimestampEncoding:
    """Identify which encoding a raw timestamp value uses."""
    if _is_int(raw):
        return EpochMillis(raw)
    if isinstance(raw, float):
        if math.isfinite(raw):
            return EpochMillis(int(raw))
        return Unrecognized(raw)
    if raw is None or isinstance(raw, (bool, bytes)):
        return Unrecognized(raw)

    if isinstance(raw, datetime):
        return AwareDatetime(raw)
    if isinstance(raw, str):
        return IsoString(raw)

    seconds = _field(raw, "seconds")
    if _is_int(seconds):
        nanos = _field(raw, "nanoseconds")
        if nanos is None:
            nanos = _field(raw, "nanos")
        return SecondsField(seconds, nanos if _is_int(nanos) else 0)

    seconds = _field(raw, "_seconds")
    if _is_int(seconds):
        nanos = _field(raw, "_nanoseconds")
        return UnderscoreSeconds(seconds, nanos if _is_int(nanos) else 0)

    for name in ("to_millis", "toMillis"):
        method = getattr(raw, name, None)
        if callable(method):
            return MillisMethod(method)

    return Unrecognized(raw)


def to_epoch_ms(encoding: TimestampEncoding) -> int:
    """Convert one classified encoding. Raises MalformedTimestampError."""
    if isinstance(encoding, EpochMillis):
        return encoding.value
    if isinstance(encoding, (SecondsField, UnderscoreSeconds)):
        return encoding.seconds * 1000 + encoding.nanos // _NANOS_PER_MS
    if isinstance(encoding, MillisMethod):
        try:
            value = encoding.method()
        except Exception as exc:
            raise MalformedTimestampError(encoding.method, f"toMillis() failed ({exc})") from exc
        if _is_int(value) or (isinstance(value, float) and math.isfinite(value)):
            return int(value)
        raise MalformedTimestampError(value, "toMillis() returned a non-number")
    if isinstance(encoding, AwareDatetime):
        dt = encoding.value
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return (dt - _EPOCH) // timedelta(milliseconds=1)
    if isinstance(encoding, IsoString):
        return _parse_iso(encoding.text)
    raise MalformedTimestampError(encoding.raw)


def _parse_iso(text: str) -> int:
    cleaned = text.strip()
    if cleaned.endswith(("Z", "z")):
        cleaned = cleaned[:-1] + "+00:00"
    # fromisoformat only accepts up to microseconds; REST timestamps carry nanos
    if "." in cleaned:
        head, _, tail = cleaned.partition(".")
        digits = ""
        rest = tail
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        cleaned = f"{head}.{digits[:6].ljust(6, '0')}{rest}" if digits else f"{head}{rest}"
    try:
        dt = datetime.fromisoformat(cleaned)
    except ValueError as exc:
        raise MalformedTimestampError(text, "unparseable date string") from exc
    return to_epoch_ms(AwareDatetime(dt))


def normalize(raw: Any) -> int | None:
    """Return epoch milliseconds for any supported encoding, or UNKNOWN."""
    if raw is None:
        return UNKNOWN
    try:
        return to_epoch_ms(classify(raw))
    except MalformedTimestampError as exc:
        logger.warning("Unreadable timestamp treated as unknown: %s", exc)
    except (TypeError, ValueError, OverflowError) as exc:
        logger.warning("Unreadable timestamp %r treated as unknown: %s", raw, exc)
    return UNKNOWN


def sort_key(timestamp_ms: int | None) -> tuple[int, int]:
    """Ascending key that puts newer times first and UNKNOWN last."""
    if timestamp_ms is UNKNOWN:
        return (1, 0)
    return (0, -timestamp_ms)


def day_of(timestamp_ms: int | None, tz: tzinfo = timezone.utc) -> date | None:
    if timestamp_ms is UNKNOWN:
        return None
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tz).date()
