"""Per-user expert overrides for the SRS and FSRS schedulers.

Overrides are merged over the defaults field by field. Nested dictionaries
merge with the default value of the same key, so an override of one speed
threshold keeps the other.
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from . import db, events
from .config import (
    EXPERT_MODE_DEFAULT_ENABLED,
    EXPERT_MODE_FSRS,
    EXPERT_MODE_SRS,
    FSRS,
    SRS_ADVANCED,
    SRS_INTERVALS,
)

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]

_cache: dict[str, "ExpertModeSettings"] = {}
_listeners: list[Listener] = []


@dataclass(slots=True)
class ExpertModeSettings:
    enabled: bool = EXPERT_MODE_DEFAULT_ENABLED
    last_updated_at: str | None = None
    srs: dict[str, Any] = field(default_factory=dict)
    fsrs: dict[str, Any] = field(default_factory=dict)
    custom_intervals: list[float] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "lastUpdatedAt": self.last_updated_at,
            "overrides": {
                "srs": copy.deepcopy(self.srs),
                "fsrs": copy.deepcopy(self.fsrs),
                "customIntervals": list(self.custom_intervals) if self.custom_intervals else None,
            },
        }


def _finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _coerce_like(default: Any, value: Any) -> Any:
    """Convert ``value`` to the type of ``default``; ``None`` when it cannot be."""
    if isinstance(default, bool):
        return value if isinstance(value, bool) else None
    if isinstance(default, (int, float)):
        number = _finite_number(value)
        if number is None:
            return None
        if isinstance(default, int) and number.is_integer():
            return int(number)
        return number
    if isinstance(default, Mapping):
        if not isinstance(value, Mapping):
            return None
        return sanitize_overrides(value, default)
    if isinstance(default, (list, tuple)):
        if not isinstance(value, (list, tuple)):
            return None
        numbers = [_finite_number(item) for item in value]
        if len(numbers) != len(default) or any(number is None for number in numbers):
            return None
        return numbers
    return value


def sanitize_overrides(overrides: Any, defaults: Mapping[Any, Any] | None = None) -> dict[str, Any]:
    """Keep numbers, strings, booleans, lists and dicts; drop ``None`` and anything else.

    Keys present in ``defaults`` must convert to the default's type (numbers
    to finite numbers, nested tables recursively, weight vectors to lists of
    the same length). Values that do not are dropped so the default applies.
    """
    if not isinstance(overrides, Mapping):
        return {}
    known = {str(key): value for key, value in (defaults or {}).items()}
    result: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if str(key) in known:
            coerced = _coerce_like(known[str(key)], value)
            if coerced is None:
                logger.warning("Dropping invalid expert override %s=%r", key, value)
            else:
                result[key] = coerced
            continue
        if isinstance(value, (list, tuple)):
            result[key] = list(value)
        elif isinstance(value, Mapping):
            result[key] = dict(value)
        elif isinstance(value, bool) or isinstance(value, str):
            result[key] = value
        elif isinstance(value, (int, float)) and math.isfinite(value):
            result[key] = value
    return result


def sanitize_intervals(intervals: Any) -> list[float] | None:
    """Positive finite numbers, sorted and deduplicated; ``None`` when nothing survives."""
    if not isinstance(intervals, (list, tuple)):
        return None
    cleaned: set[float] = set()
    for value in intervals:
        if isinstance(value, bool):
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(number) and number > 0:
            cleaned.add(int(number) if number.is_integer() else number)
    return sorted(cleaned) or None


def normalize_expert_mode(raw: Mapping[str, Any] | None = None) -> ExpertModeSettings:
    raw = raw or {}
    overrides = raw.get("overrides")
    if not isinstance(overrides, Mapping):
        overrides = raw
    enabled = raw.get("enabled")
    return ExpertModeSettings(
        enabled=bool(EXPERT_MODE_DEFAULT_ENABLED if enabled is None else enabled),
        last_updated_at=raw.get("lastUpdatedAt") or None,
        srs={**EXPERT_MODE_SRS, **sanitize_overrides(overrides.get("srs"), SRS_ADVANCED)},
        fsrs={**EXPERT_MODE_FSRS, **sanitize_overrides(overrides.get("fsrs"), FSRS)},
        custom_intervals=sanitize_intervals(overrides.get("customIntervals")),
    )


def _clone(settings: ExpertModeSettings) -> ExpertModeSettings:
    return normalize_expert_mode(settings.to_dict())


def _notify(user_id: str | None, settings: ExpertModeSettings) -> None:
    payload = {"userId": user_id, "settings": settings.to_dict()}
    events.emit(events.EXPERT_MODE_CHANGED, payload)
    for listener in list(_listeners):
        try:
            listener(payload)
        except Exception:
            logger.warning("Expert mode listener failed", exc_info=True)


def get_expert_mode_settings(user_id: str | None = None) -> ExpertModeSettings:
    if not user_id:
        return normalize_expert_mode()
    cached = _cache.get(user_id)
    if cached is None:
        cached = normalize_expert_mode(db.fetch_expert_settings(user_id))
        _cache[user_id] = cached
    return _clone(cached)


def set_expert_mode_settings(user_id: str | None, updates: Mapping[str, Any] | None) -> ExpertModeSettings:
    """Merge ``updates`` into the stored settings, persist them and notify listeners."""
    if not user_id:
        logger.warning("Cannot apply expert mode without a user id")
        return normalize_expert_mode()

    updates = updates or {}
    current = get_expert_mode_settings(user_id)
    incoming = updates.get("overrides") or {}
    enabled = updates.get("enabled")
    merged = ExpertModeSettings(
        enabled=current.enabled if enabled is None else bool(enabled),
        last_updated_at=db.now_iso(),
        srs={**current.srs, **sanitize_overrides(incoming.get("srs"), SRS_ADVANCED)},
        fsrs={**current.fsrs, **sanitize_overrides(incoming.get("fsrs"), FSRS)},
        custom_intervals=sanitize_intervals(incoming.get("customIntervals")) or current.custom_intervals,
    )
    db.save_expert_settings(user_id, merged.to_dict())
    _cache[user_id] = merged
    _notify(user_id, merged)
    return _clone(merged)


def toggle_expert_mode(user_id: str | None, enabled: bool) -> ExpertModeSettings:
    return set_expert_mode_settings(user_id, {"enabled": enabled})


def reset_expert_mode(user_id: str | None = None) -> ExpertModeSettings:
    """Restore defaults. Custom intervals are cleared as well."""
    if not user_id:
        return normalize_expert_mode()
    defaults = normalize_expert_mode()
    defaults.last_updated_at = db.now_iso()
    db.save_expert_settings(user_id, defaults.to_dict())
    _cache[user_id] = defaults
    _notify(user_id, defaults)
    return _clone(defaults)


def merge_configs(base: Mapping[str, Any], overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    merged = copy.deepcopy(dict(base))
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            merged[key] = list(value)
        elif isinstance(value, Mapping):
            nested = base.get(key)
            merged[key] = {**(nested if isinstance(nested, Mapping) else {}), **value}
        else:
            merged[key] = value
    if "SPEED" in base and not merged.get("SPEED"):
        merged["SPEED"] = dict(base["SPEED"])
    return merged


def get_active_srs_config(user_id: str | None = None) -> dict[str, Any]:
    settings = get_expert_mode_settings(user_id)
    if not settings.enabled:
        return copy.deepcopy(SRS_ADVANCED)
    return merge_configs(SRS_ADVANCED, settings.srs)


def get_active_srs_intervals(user_id: str | None = None) -> list[float]:
    settings = get_expert_mode_settings(user_id)
    if settings.enabled and settings.custom_intervals:
        return list(settings.custom_intervals)
    return list(SRS_INTERVALS)


def get_active_fsrs_config(user_id: str | None = None) -> dict[str, Any]:
    settings = get_expert_mode_settings(user_id)
    if not settings.enabled:
        return copy.deepcopy(FSRS)
    return merge_configs(FSRS, settings.fsrs)


def on_expert_mode_change(
    listener: Listener,
    *,
    immediate: bool = False,
    user_id: str | None = None,
) -> Callable[[], None]:
    """Register ``listener``; returns a callable that removes it."""
    if not callable(listener):
        raise TypeError("Expert mode listener must be callable")
    _listeners.append(listener)
    if immediate:
        try:
            listener({"userId": user_id, "settings": get_expert_mode_settings(user_id).to_dict()})
        except Exception:
            logger.warning("Immediate expert mode notification failed", exc_info=True)

    def unsubscribe() -> None:
        if listener in _listeners:
            _listeners.remove(listener)

    return unsubscribe


def clear_cache() -> None:
    _cache.clear()


__all__ = [
    "ExpertModeSettings",
    "clear_cache",
    "get_active_fsrs_config",
    "get_active_srs_config",
    "get_active_srs_intervals",
    "get_expert_mode_settings",
    "merge_configs",
    "normalize_expert_mode",
    "on_expert_mode_change",
    "reset_expert_mode",
    "sanitize_intervals",
    "sanitize_overrides",
    "set_expert_mode_settings",
    "toggle_expert_mode",
]
