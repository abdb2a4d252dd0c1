# backend/sessionbook/routes/v1/credits.py
"""
Credit routes - API v1

Endpoints:
    GET /credits - The caller's credit balance
    GET /credit-packages - Packages available for purchase
    POST /credits/grants - Admin/partner grant of credits to a patient
    POST /credits/{credit_id}/refund - Admin refund of an unused credit
"""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ...api.dependencies import (
    get_credit_service,
    get_current_user,
    get_db,
    get_payment_service,
    require_admin,
)
from ...core.exceptions import DomainException, InvariantViolationException
from ...models.user import User, UserRole
from ...repositories.factory import RepositoryFactory
from ...schemas.payment import (
    CreditBalanceResponse,
    CreditGrantRequest,
    CreditGrantResponse,
    CreditPackageResponse,
    CreditRefundResponse,
)
from ...services.credit_service import CreditService
from ...services.payment_service import PaymentService
from .errors import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["credits-v1"])


@router.get("/credits", response_model=CreditBalanceResponse)
async def get_credit_balance(
    current_user: User = Depends(get_current_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> CreditBalanceResponse:
    balance = await asyncio.to_thread(credit_service.available_credits, current_user.id)
    summary = await asyncio.to_thread(credit_service.credit_summary, current_user.id)
    return CreditBalanceResponse(
        patient_id=current_user.id,
        available=balance.count,
        credit_ids=list(balance.credit_ids),
        summary=summary,
    )


@router.get("/credit-packages", response_model=List[CreditPackageResponse])
async def list_credit_packages(
    payment_service: PaymentService = Depends(get_payment_service),
) -> List[CreditPackageResponse]:
    offers = await asyncio.to_thread(payment_service.list_package_offers)
    return [CreditPackageResponse.from_offer(o) for o in offers]


@router.post(
    "/credits/grants",
    response_model=CreditGrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_credits(
    payload: CreditGrantRequest,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    credit_service: CreditService = Depends(get_credit_service),
) -> CreditGrantResponse:
    """
    Grant credits outside the payment flow (partner allocations, goodwill).

    Repeating a grant with the same package_reference returns the credits
    created the first time.
    """
    patient = await asyncio.to_thread(
        RepositoryFactory.create_user_repository(db).get_active_user, payload.patient_id
    )
    if patient is None or patient.role != UserRole.PATIENT.value:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Patient not found", "code": "NotFoundException", "details": {}},
        )
    try:
        credit_ids = await asyncio.to_thread(
            credit_service.grant_credits,
            payload.patient_id,
            payload.count,
            payload.package_reference,
        )
    except DomainException as exc:
        handle_domain_exception(exc)

    logger.info(
        "Admin %s granted %s credits to %s (%s)",
        current_user.id,
        len(credit_ids),
        payload.patient_id,
        payload.package_reference,
    )
    return CreditGrantResponse(
        patient_id=payload.patient_id,
        package_reference=payload.package_reference,
        credit_ids=credit_ids,
    )


@router.post("/credits/{credit_id}/refund", response_model=CreditRefundResponse)
async def refund_credit(
    credit_id: str,
    current_user: User = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> CreditRefundResponse:
    """Refund an unused credit; reserved or spent credits are a 409."""
    try:
        refunded = await asyncio.to_thread(credit_service.refund_credit, credit_id)
        credit = await asyncio.to_thread(credit_service.get_credit, credit_id)
    except InvariantViolationException as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Only unused credits can be refunded",
                "code": "CREDIT_NOT_REFUNDABLE",
                "details": exc.details,
            },
        ) from exc
    except DomainException as exc:
        handle_domain_exception(exc)

    if refunded:
        logger.info("Admin %s refunded credit %s", current_user.id, credit_id)
    return CreditRefundResponse(credit_id=credit_id, status=credit.status, refunded=refunded)
