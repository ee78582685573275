"""Availability window resolution.

Turns the raw schedule preferences stored on a user's profile into a
canonical, versioned :class:`SchedulePreferences`. Stored preferences come in
two shapes:

* versioned: ``{"version": 1, "timezone": ..., "windows": {...}, "dnd": [...]}``
* legacy: a grab-bag dict with ``morning``/``midday``/``evening`` keys plus an
  optional ``dnd``/``dndWindows`` list, or a bare list of DND ranges.

Anything malformed is recovered here with defaults and a warning; callers
never see a parse failure. A window key present with an explicit ``null``
disables that slot, while an absent key falls back to the default window.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Literal, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from habitstory.core.errors import PreferencesValidationError

logger = logging.getLogger(__name__)

WindowName = Literal["morning", "midday", "evening"]
WINDOW_NAMES: Tuple[WindowName, ...] = ("morning", "midday", "evening")

DEFAULT_TIMEZONE = "UTC"
PREFERENCES_VERSION = 1

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def normalize_time_of_day(value: Any) -> str:
    """Return ``value`` as zero-padded ``HH:mm`` or raise ValueError."""
    if not isinstance(value, str):
        raise ValueError(f"time of day must be a string, got {type(value).__name__}")
    match = _TIME_RE.match(value.strip())
    if not match:
        raise ValueError(f"invalid time of day {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"time of day out of range {value!r}")
    return f"{hours:02d}:{minutes:02d}"


class TimeRange(BaseModel):
    """Local time-of-day interval; ``start > end`` wraps past midnight."""

    model_config = ConfigDict(frozen=True)

    start: str
    end: str

    @field_validator("start", "end", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> str:
        return normalize_time_of_day(value)

    @property
    def wraps_midnight(self) -> bool:
        return self.start > self.end

    def contains(self, local_time: str) -> bool:
        if self.wraps_midnight:
            return local_time >= self.start or local_time <= self.end
        return self.start <= local_time <= self.end


DEFAULT_WINDOWS: Dict[str, TimeRange] = {
    "morning": TimeRange(start="07:00", end="09:00"),
    "evening": TimeRange(start="18:00", end="20:00"),
}


class SchedulePreferences(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int = PREFERENCES_VERSION
    timezone: str = DEFAULT_TIMEZONE
    windows: Dict[str, TimeRange] = Field(default_factory=dict)
    dnd_ranges: List[TimeRange] = Field(default_factory=list)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def window(self, name: str) -> Optional[TimeRange]:
        return self.windows.get(name)


def resolve_schedule_preferences(raw: Any, timezone: Optional[str] = None) -> SchedulePreferences:
    """Normalize raw stored preferences into a defaulted SchedulePreferences.

    ``timezone`` is the profile's own timezone column; it wins over a
    timezone embedded in a versioned payload.
    """
    try:
        payload = _decode(raw)
    except PreferencesValidationError as exc:
        logger.warning("Unreadable schedule preferences, using defaults: %s", exc)
        payload = {}

    windows: Dict[str, Optional[TimeRange]]
    if isinstance(payload, list):
        windows, dnd_raw, embedded_tz = {}, payload, None
    elif "version" in payload:
        windows, dnd_raw, embedded_tz = _read_versioned(payload)
    else:
        windows, dnd_raw, embedded_tz = _read_legacy(payload)

    resolved_windows: Dict[str, TimeRange] = {}
    for name in WINDOW_NAMES:
        if name in windows:
            if windows[name] is not None:
                resolved_windows[name] = windows[name]  # type: ignore[assignment]
        elif name in DEFAULT_WINDOWS:
            resolved_windows[name] = DEFAULT_WINDOWS[name]

    return SchedulePreferences(
        timezone=_resolve_timezone(timezone or embedded_tz),
        windows=resolved_windows,
        dnd_ranges=_parse_ranges(dnd_raw),
    )


def is_in_dnd(local_time: str, ranges: List[TimeRange]) -> bool:
    """True if the ``HH:mm`` local time falls inside any DND range."""
    return any(rng.contains(local_time) for rng in ranges)


def _decode(raw: Any) -> Dict[str, Any] | List[Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PreferencesValidationError(f"invalid JSON: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, (dict, list)):
        raise PreferencesValidationError(f"unexpected preferences type {type(raw).__name__}")
    return raw


def _read_versioned(payload: Dict[str, Any]) -> Tuple[Dict[str, Optional[TimeRange]], Any, Optional[str]]:
    version = payload.get("version")
    if version != PREFERENCES_VERSION:
        logger.warning("Unknown schedule preferences version %r; reading as version %s", version, PREFERENCES_VERSION)
    raw_windows = payload.get("windows") or {}
    if not isinstance(raw_windows, dict):
        logger.warning("Ignoring non-object windows in schedule preferences")
        raw_windows = {}
    windows = _parse_windows(raw_windows)
    tz = payload.get("timezone")
    return windows, payload.get("dnd", payload.get("dnd_ranges")), tz if isinstance(tz, str) else None


def _read_legacy(payload: Dict[str, Any]) -> Tuple[Dict[str, Optional[TimeRange]], Any, Optional[str]]:
    windows = _parse_windows({name: payload[name] for name in WINDOW_NAMES if name in payload})
    dnd_raw = payload.get("dnd", payload.get("dndWindows"))
    return windows, dnd_raw, None


def _parse_windows(raw_windows: Dict[str, Any]) -> Dict[str, Optional[TimeRange]]:
    windows: Dict[str, Optional[TimeRange]] = {}
    for name, value in raw_windows.items():
        if name not in WINDOW_NAMES:
            logger.warning("Ignoring unknown window %r in schedule preferences", name)
            continue
        if value is None:
            windows[name] = None
            continue
        try:
            windows[name] = TimeRange.model_validate(value)
        except ValidationError as exc:
            # Dropping the key lets the default window apply.
            logger.warning("Invalid %s window %r, falling back to default: %s", name, value, exc.errors()[0]["msg"])
    return windows


def _parse_ranges(raw: Any) -> List[TimeRange]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Ignoring non-list DND ranges in schedule preferences")
        return []
    ranges: List[TimeRange] = []
    for item in raw:
        try:
            ranges.append(TimeRange.model_validate(item))
        except ValidationError:
            logger.warning("Dropping invalid DND range %r", item)
    return ranges


def _resolve_timezone(name: Optional[str]) -> str:
    if not name:
        return DEFAULT_TIMEZONE
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        logger.warning("Unknown timezone %r, using %s", name, DEFAULT_TIMEZONE)
        return DEFAULT_TIMEZONE
    return name
