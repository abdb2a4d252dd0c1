# backend/sessionbook/routes/v1/bookings.py
"""
Booking routes - API v1

All business logic delegated to BookingService and the ConflictGuard.

Endpoints:
    POST / - Book a session with one credit
    GET / - The caller's bookings
    GET /{booking_id} - One booking (patient or staff)
    POST /{booking_id}/cancel - The patient cancels their own booking
    POST /{booking_id}/status - Status change for staff tooling
"""

import asyncio
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...api.dependencies import (
    get_booking_service,
    get_conflict_guard,
    get_current_user,
    require_staff,
)
from ...core.exceptions import DomainException
from ...domain.results import BookingErrorKind, BookingFailed
from ...models.booking import BookingStatus
from ...models.user import User, UserRole
from ...schemas.booking import (
    BookingCancelRequest,
    BookingCreate,
    BookingErrorResponse,
    BookingResponse,
    BookingStatusUpdate,
)
from ...services.booking_service import BookingRequest, BookingService
from ...services.conflict_guard import ConflictGuard
from .errors import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings-v1"])

ERROR_STATUS = {
    BookingErrorKind.INVALID_ARGUMENT: status.HTTP_400_BAD_REQUEST,
    BookingErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    BookingErrorKind.SLOT_UNAVAILABLE: status.HTTP_409_CONFLICT,
    BookingErrorKind.INSUFFICIENT_CREDITS: status.HTTP_402_PAYMENT_REQUIRED,
    BookingErrorKind.INVARIANT_VIOLATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
    BookingErrorKind.TRANSIENT: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _raise_booking_failure(result: BookingFailed) -> NoReturn:
    body = BookingErrorResponse.from_result(result)
    headers = {"Retry-After": "2"} if result.error.kind == BookingErrorKind.TRANSIENT else None
    raise HTTPException(
        status_code=ERROR_STATUS[result.error.kind],
        detail=body.model_dump(mode="json"),
        headers=headers,
    )


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreate,
    current_user: User = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """
    Book a session.

    Failures come back with the error kind; a 402 carries the credit
    packages the patient can buy.
    """
    request = BookingRequest(
        patient_id=current_user.id,
        therapist_id=payload.therapist_id,
        booking_date=payload.booking_date,
        start_time=payload.start_time,
        duration_minutes=payload.duration_minutes,
        session_type=payload.session_type,
    )
    result = await asyncio.to_thread(booking_service.attempt_booking, request)
    if isinstance(result, BookingFailed):
        _raise_booking_failure(result)
    return BookingResponse.from_result(result)


@router.get("", response_model=List[BookingResponse])
async def list_my_bookings(
    status_filter: Optional[List[str]] = Query(default=None, alias="status"),
    current_user: User = Depends(get_current_user),
    conflict_guard: ConflictGuard = Depends(get_conflict_guard),
) -> List[BookingResponse]:
    bookings = await asyncio.to_thread(
        conflict_guard.list_patient_bookings, current_user.id, status_filter
    )
    return [BookingResponse.from_booking(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    current_user: User = Depends(get_current_user),
    conflict_guard: ConflictGuard = Depends(get_conflict_guard),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(conflict_guard.get_booking, booking_id)
    except DomainException as exc:
        handle_domain_exception(exc)

    allowed = (
        current_user.role == UserRole.ADMIN.value
        or current_user.id in (booking.patient_id, booking.therapist_id)
    )
    if not allowed:
        # Do not reveal other patients' bookings
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Booking not found", "code": "NotFoundException", "details": {}},
        )
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_my_booking(
    booking_id: str,
    payload: Optional[BookingCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    conflict_guard: ConflictGuard = Depends(get_conflict_guard),
) -> BookingResponse:
    """
    Cancel one of the caller's own bookings.

    Goes through the same transition gate as staff tooling, so completed or
    already cancelled bookings are rejected with 422. The spent credit is
    not returned.
    """
    try:
        booking = await asyncio.to_thread(conflict_guard.get_booking, booking_id)
        if booking.patient_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"message": "Booking not found", "code": "NotFoundException", "details": {}},
            )
        cancelled = await asyncio.to_thread(
            conflict_guard.cancel_booking,
            booking_id,
            actor_id=current_user.id,
            reason=payload.reason if payload else None,
        )
    except DomainException as exc:
        handle_domain_exception(exc)

    logger.info("Booking %s cancelled by its patient", booking_id)
    return BookingResponse.from_booking(cancelled)


@router.post("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: str,
    payload: BookingStatusUpdate,
    current_user: User = Depends(require_staff),
    conflict_guard: ConflictGuard = Depends(get_conflict_guard),
) -> BookingResponse:
    """Staff tooling: confirm, complete, cancel or mark a no-show."""
    try:
        booking = await asyncio.to_thread(conflict_guard.get_booking, booking_id)
        if (
            current_user.role == UserRole.THERAPIST.value
            and booking.therapist_id != current_user.id
        ):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"message": "Not your booking", "code": "FORBIDDEN", "details": {}},
            )
        updated = await asyncio.to_thread(
            conflict_guard.transition_status,
            booking_id,
            payload.status,
            actor_id=current_user.id,
            reason=payload.reason,
        )
    except DomainException as exc:
        handle_domain_exception(exc)

    if updated.status == BookingStatus.CANCELLED.value:
        logger.info("Booking %s cancelled by %s", booking_id, current_user.id)
    return BookingResponse.from_booking(updated)
