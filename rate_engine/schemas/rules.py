"""Pydantic schemas for the rule configuration endpoints.

Request bodies only check JSON types. Range checks (limit > 0, window > 0,
HH:MM time ranges, ...) are done by the rule registry so the HTTP surface
and the library report the same ``invalid_rule`` error.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from rate_engine.engine.models import Action, Algorithm, Scope


class TimeRangeIn(BaseModel):
    start: str = Field(..., description="Start of the range, HH:MM.")
    end: str = Field(..., description="End of the range, HH:MM (inclusive).")


class RuleConditionsIn(BaseModel):
    user_roles: List[str] | None = None
    endpoints: List[str] | None = Field(default=None, description="Endpoint path prefixes.")
    methods: List[str] | None = None
    ip_ranges: List[str] | None = Field(
        default=None,
        description="Addresses or a.b.c.d/n ranges (octet-aligned prefix match).",
    )
    time_ranges: List[TimeRangeIn] | None = None


class CustomResponseIn(BaseModel):
    status: int = 429
    message: str = "Rate limit exceeded"
    headers: Dict[str, str] = Field(default_factory=dict)


class RuleActionsIn(BaseModel):
    on_limit: Action | None = None
    on_exceed: Action | None = None
    custom_response: CustomResponseIn | None = None


class RulePatch(BaseModel):
    """Partial rule update. Only fields present in the body are changed."""

    name: str | None = None
    algorithm: Algorithm | None = None
    scope: Scope | None = None
    limit: int | None = None
    window: int | None = Field(default=None, description="Window length in milliseconds.")
    burst: int | None = None
    refill_rate: float | None = Field(default=None, description="Tokens per second.")
    priority: int | None = None
    enabled: bool | None = None
    conditions: RuleConditionsIn | None = None
    actions: RuleActionsIn | None = None

    def to_updates(self) -> dict[str, Any]:
        updates = self.model_dump(exclude_unset=True, mode="json")
        if isinstance(updates.get("actions"), dict):
            # on_limit/on_exceed left out keep their defaults, not None
            updates["actions"] = {k: v for k, v in updates["actions"].items() if v is not None}
        return updates


class RuleCreate(RulePatch):
    """New rule. Omitted fields take the defaults of a custom rule."""

    id: str | None = Field(default=None, description="Generated when omitted.")

    def to_config(self) -> dict[str, Any]:
        config = self.to_updates()
        if config.get("id") is None:
            config.pop("id", None)
        return config
