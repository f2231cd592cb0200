"""
Rule Router

Read-only view of rules and their evaluation state, plus the operator
actions: clear a manually-mitigated rule and run an out-of-band evaluation.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from alert_engine.api.dependency import get_engine
from alert_engine.api.model.enums import ResponseStatus
from alert_engine.api.model.responses import (
    ClearRuleResponse,
    EvaluateRuleResponse,
    RuleListResponse,
    RuleStateResponse,
    RuleSummary,
)
from alert_engine.engine import AlertEngine
from alert_engine.exception import RuleNotFoundError
from alert_engine.model.enum.alert_enum import AlertState

router = APIRouter()

logger = logging.getLogger("RuleRouter")


@router.get("/", response_model=RuleListResponse, summary="List rules")
async def list_rules(engine: AlertEngine = Depends(get_engine)) -> RuleListResponse:
    rules = engine.registry.snapshot()
    summaries = [
        RuleSummary(
            name=rule.name,
            kind=rule.criteria.kind,
            severity=rule.severity,
            enabled=rule.enabled,
            auto_mitigate=rule.auto_mitigate,
            frequency_sec=rule.frequency.total_seconds(),
            window_size_sec=rule.window_size.total_seconds(),
            channels=sorted(rule.channels),
            state=engine.state_manager.get_state(rule.name),
        )
        for rule in rules.values()
    ]
    firing = sum(1 for s in summaries if s.state == AlertState.FIRING)
    return RuleListResponse(
        status=ResponseStatus.SUCCESS, rules=summaries, total_count=len(summaries), firing_count=firing
    )


@router.get("/{rule_name}/state", response_model=RuleStateResponse, summary="Get rule state")
async def get_rule_state(rule_name: str, engine: AlertEngine = Depends(get_engine)) -> RuleStateResponse:
    """
    Current failing-period history and alert state of one rule.

    Raises:
        HTTPException: 404 if the rule is not registered
    """
    try:
        rule = engine.get_rule(rule_name)
        record = engine.get_rule_state(rule_name)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    response = RuleStateResponse(
        status=ResponseStatus.SUCCESS,
        rule_name=rule.name,
        evaluated=record is not None,
        state=AlertState.RESOLVED,
        periods=rule.periods,
        min_failing_periods=rule.min_failing,
        in_flight=rule.name in engine.scheduler.in_flight,
    )
    if record is None:
        return response

    return response.model_copy(
        update={
            "state": record.state,
            "history": list(record.history),
            "met_count": record.met_count,
            "sequence": record.sequence,
            "last_transition_at": record.last_transition_at,
            "last_notified_state": record.last_notified_state,
            "last_evaluated_at": record.last_evaluated_at,
            "last_value": record.last_value,
        }
    )


@router.post("/{rule_name}/clear", response_model=ClearRuleResponse, summary="Clear a firing rule")
async def clear_rule(rule_name: str, engine: AlertEngine = Depends(get_engine)) -> ClearRuleResponse:
    try:
        report = await engine.clear_rule(rule_name)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    if report is None:
        return ClearRuleResponse(
            status=ResponseStatus.SUCCESS, rule_name=rule_name, cleared=False, message="Rule already resolved"
        )

    logger.info(f"[API] {rule_name}: cleared by operator")
    return ClearRuleResponse(
        status=ResponseStatus.PARTIAL_SUCCESS if report.failed else ResponseStatus.SUCCESS,
        rule_name=rule_name,
        cleared=True,
        delivered=report.delivered,
        failed=report.failed,
        skipped=report.skipped,
    )


@router.post("/{rule_name}/evaluate", response_model=EvaluateRuleResponse, summary="Evaluate a rule now")
async def evaluate_rule(rule_name: str, engine: AlertEngine = Depends(get_engine)) -> EvaluateRuleResponse:
    try:
        result = await engine.evaluate_now(rule_name)
    except RuleNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    if result is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=f"Evaluation of '{rule_name}' already in progress"
        )

    return EvaluateRuleResponse(
        status=ResponseStatus.SUCCESS,
        rule_name=rule_name,
        outcome=result.outcome,
        value=result.value,
        window_start=result.window_start,
        window_end=result.window_end,
        error=result.error,
    )
