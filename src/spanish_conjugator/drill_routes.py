"""JSON API for drilling, grading, dashboards and expert settings."""

from __future__ import annotations

import logging
from functools import partial
from typing import Any

from fastapi import APIRouter, Header, HTTPException
from pydantic import BaseModel, Field

from .analytics import AnalyticsLoader, competency_radar, heat_map, srs_stats, user_stats
from .challenges import get_daily_challenge_status
from .corpus import all_forms, verb_lookup
from .errors import DrillConfigurationError
from .expert_mode import get_expert_mode_settings, reset_expert_mode, set_expert_mode_settings
from .generator import build_drill_item, generate_next_item
from .grader import grade
from .models import History, HistoryEntry, Settings, VerbForm
from .progress import record_attempt
from .sync import require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

analytics_loader = AnalyticsLoader()


class NextItemRequest(BaseModel):
    settings: dict[str, Any] = Field(default_factory=dict)
    history: dict[str, dict[str, int]] = Field(default_factory=dict)
    current_item: dict[str, Any] | None = Field(default=None, alias="currentItem")


class GradeRequest(BaseModel):
    item: dict[str, Any]
    answer: str
    settings: dict[str, Any] = Field(default_factory=dict)
    latency_ms: int = Field(default=0, alias="latencyMs")
    hints_used: int = Field(default=0, alias="hintsUsed")


def _settings(raw: dict[str, Any]) -> Settings:
    try:
        return Settings.from_dict(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None


def _history(raw: dict[str, dict[str, int]]) -> History:
    return {
        key: HistoryEntry(seen=int(entry.get("seen", 0)), correct=int(entry.get("correct", 0)))
        for key, entry in raw.items()
    }


def _find_form(forms: list[VerbForm], data: dict[str, Any] | None) -> VerbForm | None:
    if not data:
        return None
    wanted = (data.get("lemma"), data.get("mood"), data.get("tense"), data.get("person"))
    for form in forms:
        if (form.lemma, form.mood, form.tense, form.person) == wanted:
            return form
    return None


@router.post("/drill/next")
async def next_item(payload: NextItemRequest) -> dict[str, Any]:
    settings = _settings(payload.settings)
    forms = all_forms(settings.region)
    try:
        item = generate_next_item(
            forms,
            _history(payload.history),
            settings,
            current_item=_find_form(forms, payload.current_item),
        )
    except DrillConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from None
    if item is None:
        raise HTTPException(status_code=404, detail="Not enough verbs for this configuration")
    return item.to_dict()


@router.post("/drill/grade")
async def grade_answer(payload: GradeRequest, x_user_id: str | None = Header(default=None)) -> dict[str, Any]:
    settings = _settings(payload.item.get("settings") or payload.settings)
    form = _find_form(all_forms(), payload.item)
    if form is None:
        raise HTTPException(status_code=404, detail="Unknown verb form")

    result = grade(payload.answer, form, settings)
    response = result.to_dict()
    if x_user_id:
        item = build_drill_item(form, settings, verb_lookup(), item_id=payload.item.get("id"))
        outcome = record_attempt(
            x_user_id,
            item,
            result,
            latency_ms=payload.latency_ms,
            hints_used=payload.hints_used,
        )
        response["progress"] = outcome.to_dict()
    return response


@router.get("/analytics")
async def analytics(
    time_range: str = "all_time",
    x_user_id: str | None = Header(default=None),
) -> dict[str, Any]:
    user_id = require_user(x_user_id)
    loaders = {
        "heatMap": partial(heat_map, user_id, time_range),
        "radar": partial(competency_radar, user_id),
        "srs": partial(srs_stats, user_id),
        "stats": partial(user_stats, user_id),
    }
    # Keys are per user so a newer dashboard request supersedes an older one.
    results = await analytics_loader.load_all({f"{user_id}:{name}": loader for name, loader in loaders.items()})
    return {"userId": user_id, **{name: results[f"{user_id}:{name}"] for name in loaders}}


@router.get("/challenges/today")
async def challenges_today(x_user_id: str | None = Header(default=None)) -> dict[str, Any]:
    return get_daily_challenge_status(require_user(x_user_id))


@router.get("/expert-mode")
async def read_expert_mode(x_user_id: str | None = Header(default=None)) -> dict[str, Any]:
    return get_expert_mode_settings(require_user(x_user_id)).to_dict()


@router.put("/expert-mode")
async def update_expert_mode(updates: dict[str, Any], x_user_id: str | None = Header(default=None)) -> dict[str, Any]:
    return set_expert_mode_settings(require_user(x_user_id), updates).to_dict()


@router.delete("/expert-mode")
async def clear_expert_mode(x_user_id: str | None = Header(default=None)) -> dict[str, Any]:
    return reset_expert_mode(require_user(x_user_id)).to_dict()


__all__ = ["GradeRequest", "NextItemRequest", "analytics_loader", "router"]
