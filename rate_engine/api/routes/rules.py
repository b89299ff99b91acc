from __future__ import annotations

from typing import Annotated, List

from fastapi import APIRouter, Depends, Response, status

from rate_engine.core.auth import verify_api_key
from rate_engine.core.errors import NotFoundAppError
from rate_engine.core.rate_limit import enforce_rate_limit, get_engine
from rate_engine.engine.models import RateLimitRule, rule_defaults
from rate_engine.engine.service import RateLimitingService
from rate_engine.schemas.rules import RuleCreate, RulePatch

router = APIRouter(
    prefix="/rules",
    tags=["Rules"],
    dependencies=[Depends(verify_api_key), Depends(enforce_rate_limit)],
)

Engine = Annotated[RateLimitingService, Depends(get_engine)]


@router.get("", response_model=List[RateLimitRule])
def list_rules(engine: Engine) -> list[RateLimitRule]:
    return engine.list_rules()


@router.get("/{rule_id}", response_model=RateLimitRule)
def get_rule(rule_id: str, engine: Engine) -> RateLimitRule:
    rule = engine.get_rule(rule_id)
    if rule is None:
        raise NotFoundAppError(
            code="rule_not_found",
            message=f"Rule {rule_id!r} does not exist",
            details={"rule_id": rule_id},
        )
    return rule


@router.post("", response_model=RateLimitRule, status_code=status.HTTP_201_CREATED)
def create_rule(payload: RuleCreate, engine: Engine) -> RateLimitRule:
    """Register a rule. A rule with the same id is replaced.

    Raises:
        ValidationAppError: 400 when the rule is invalid.
    """

    return engine.add_rule(rule_defaults(payload.to_config()))


@router.patch("/{rule_id}", response_model=RateLimitRule)
def update_rule(rule_id: str, payload: RulePatch, engine: Engine) -> RateLimitRule:
    """Apply a partial update. Takes effect on the next decision."""

    return engine.update_rule(rule_id, payload.to_updates())


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(rule_id: str, engine: Engine) -> Response:
    engine.remove_rule(rule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
