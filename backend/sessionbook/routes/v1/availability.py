# backend/sessionbook/routes/v1/availability.py
"""
Therapist availability routes - API v1

Endpoints:
    GET /{therapist_id}/available-dates - Dates with at least one configured window
    GET /{therapist_id}/slots - Bookable slots on one date

Schedule maintenance (the therapist themself, or an admin):
    GET /{therapist_id}/rules - Weekly rules
    POST /{therapist_id}/rules - Add a weekly rule
    PUT /{therapist_id}/rules/{rule_id} - Supersede a rule
    DELETE /{therapist_id}/rules/{rule_id} - Deactivate a rule
    GET /{therapist_id}/exceptions - Date exceptions in a range
    POST /{therapist_id}/exceptions - Disable a date or add a custom window
    DELETE /{therapist_id}/exceptions/{exception_id} - Remove a date exception
"""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ...api.dependencies import get_availability_service, require_staff
from ...core.exceptions import DomainException, NotFoundException
from ...models.user import User, UserRole
from ...schemas.availability import (
    AvailabilityRuleCreate,
    AvailabilityRuleReplace,
    AvailabilityRuleResponse,
    AvailableDatesResponse,
    DateExceptionCreate,
    DateExceptionResponse,
    TimeSlotResponse,
    TimeSlotsResponse,
)
from ...services.availability_service import AvailabilityService, parse_date
from .errors import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["availability-v1"])


def _ensure_own_schedule(current_user: User, therapist_id: str) -> None:
    if current_user.role == UserRole.ADMIN.value:
        return
    if current_user.id != therapist_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Not your schedule", "code": "FORBIDDEN", "details": {}},
        )


@router.get("/{therapist_id}/available-dates", response_model=AvailableDatesResponse)
async def get_available_dates(
    therapist_id: str,
    month: int = Query(..., description="1-12"),
    year: int = Query(...),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailableDatesResponse:
    try:
        dates = await asyncio.to_thread(
            availability_service.get_available_dates, therapist_id, month, year
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return AvailableDatesResponse(therapist_id=therapist_id, month=month, year=year, dates=dates)


@router.get("/{therapist_id}/slots", response_model=TimeSlotsResponse)
async def get_time_slots(
    therapist_id: str,
    date: str = Query(..., description="YYYY-MM-DD"),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> TimeSlotsResponse:
    """Open slots: configured, not held by an active booking, not in the past."""
    try:
        target = parse_date(date)
        slots = await asyncio.to_thread(availability_service.get_time_slots, therapist_id, target)
    except DomainException as exc:
        handle_domain_exception(exc)
    return TimeSlotsResponse(
        therapist_id=therapist_id,
        date=target,
        slots=[TimeSlotResponse.from_slot(s) for s in slots],
    )


# Weekly rules


@router.get("/{therapist_id}/rules", response_model=List[AvailabilityRuleResponse])
async def list_rules(
    therapist_id: str,
    include_inactive: bool = Query(default=False),
    current_user: User = Depends(require_staff),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> List[AvailabilityRuleResponse]:
    _ensure_own_schedule(current_user, therapist_id)
    try:
        rules = await asyncio.to_thread(
            availability_service.list_rules, therapist_id, include_inactive
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return [AvailabilityRuleResponse.model_validate(r) for r in rules]


@router.post(
    "/{therapist_id}/rules",
    response_model=AvailabilityRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_rule(
    therapist_id: str,
    payload: AvailabilityRuleCreate,
    current_user: User = Depends(require_staff),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRuleResponse:
    """Add a recurring weekly window; overlapping an active rule is a 409."""
    _ensure_own_schedule(current_user, therapist_id)
    try:
        rule = await asyncio.to_thread(
            availability_service.add_rule,
            therapist_id,
            payload.day_of_week,
            payload.start_time,
            payload.end_time,
            payload.session_duration_minutes,
            payload.session_type,
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return AvailabilityRuleResponse.model_validate(rule)


def _rule_of(availability_service: AvailabilityService, therapist_id: str, rule_id: str):
    rule = availability_service.get_rule(rule_id)
    if rule.therapist_id != therapist_id:
        raise NotFoundException("Availability rule not found", details={"rule_id": rule_id})
    return rule


@router.put("/{therapist_id}/rules/{rule_id}", response_model=AvailabilityRuleResponse)
async def replace_rule(
    therapist_id: str,
    rule_id: str,
    payload: AvailabilityRuleReplace,
    current_user: User = Depends(require_staff),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRuleResponse:
    """Supersede a rule; the old one stays on record, deactivated."""
    _ensure_own_schedule(current_user, therapist_id)
    try:
        await asyncio.to_thread(_rule_of, availability_service, therapist_id, rule_id)
        new_rule = await asyncio.to_thread(
            lambda: availability_service.replace_rule(
                rule_id,
                start_time=payload.start_time,
                end_time=payload.end_time,
                session_duration_minutes=payload.session_duration_minutes,
                session_type=payload.session_type,
                day_of_week=payload.day_of_week,
            )
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return AvailabilityRuleResponse.model_validate(new_rule)


@router.delete("/{therapist_id}/rules/{rule_id}", response_model=AvailabilityRuleResponse)
async def deactivate_rule(
    therapist_id: str,
    rule_id: str,
    current_user: User = Depends(require_staff),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRuleResponse:
    _ensure_own_schedule(current_user, therapist_id)
    try:
        await asyncio.to_thread(_rule_of, availability_service, therapist_id, rule_id)
        rule = await asyncio.to_thread(availability_service.deactivate_rule, rule_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return AvailabilityRuleResponse.model_validate(rule)


# Date exceptions


@router.get("/{therapist_id}/exceptions", response_model=List[DateExceptionResponse])
async def list_date_exceptions(
    therapist_id: str,
    start_date: str = Query(..., description="YYYY-MM-DD"),
    end_date: str = Query(..., description="YYYY-MM-DD"),
    current_user: User = Depends(require_staff),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> List[DateExceptionResponse]:
    _ensure_own_schedule(current_user, therapist_id)
    try:
        exceptions = await asyncio.to_thread(
            availability_service.list_date_exceptions, therapist_id, start_date, end_date
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return [DateExceptionResponse.model_validate(e) for e in exceptions]


@router.post(
    "/{therapist_id}/exceptions",
    response_model=DateExceptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_date_exception(
    therapist_id: str,
    payload: DateExceptionCreate,
    current_user: User = Depends(require_staff),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> DateExceptionResponse:
    _ensure_own_schedule(current_user, therapist_id)
    try:
        exception = await asyncio.to_thread(
            lambda: availability_service.add_date_exception(
                therapist_id,
                payload.exception_date,
                is_disabled=payload.is_disabled,
                start_time=payload.start_time,
                end_time=payload.end_time,
                session_duration_minutes=payload.session_duration_minutes,
                session_type=payload.session_type,
                reason=payload.reason,
            )
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    return DateExceptionResponse.model_validate(exception)


def _remove_own_exception(
    availability_service: AvailabilityService, therapist_id: str, exception_id: str
) -> None:
    exception = availability_service.get_date_exception(exception_id)
    if exception.therapist_id != therapist_id:
        raise NotFoundException("Date exception not found", details={"id": exception_id})
    availability_service.remove_date_exception(exception_id)


@router.delete(
    "/{therapist_id}/exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_date_exception(
    therapist_id: str,
    exception_id: str,
    current_user: User = Depends(require_staff),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> Response:
    _ensure_own_schedule(current_user, therapist_id)
    try:
        await asyncio.to_thread(
            _remove_own_exception, availability_service, therapist_id, exception_id
        )
    except DomainException as exc:
        handle_domain_exception(exc)
    logger.info("Date exception %s removed by %s", exception_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
