"""NFT reservation router."""

from typing import List

from fastapi import APIRouter, Depends, status

from aoc.core.dependencies import get_admission_controller, require_admin
from aoc.core.logger.logger import logger
from aoc.core.service.chain.models import VerificationResult
from aoc.core.service.reservation.admission import AdmissionController
from aoc.core.service.reservation.models import (
    QuoteResponse,
    ReservationRecord,
    ReserveRequest,
    SupplyResponse,
    VerifyRequest,
)

router = APIRouter(
    prefix="/api/v1",
    tags=["reservations"],
    responses={
        400: {"description": "Bad Request"},
        409: {"description": "Duplicate signature, tier sold out or user limit reached"},
        500: {"description": "Verification failed"},
        503: {"description": "Price feed or storage unavailable"}
    }
)


@router.post(
    "/reservations/{user_id}",
    response_model=ReservationRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Reserve an NFT",
    description="Admit a reservation backed by a confirmed SOL transfer to the receiving wallet"
)
async def create_reservation(
    user_id: str,
    request: ReserveRequest,
    admission: AdmissionController = Depends(get_admission_controller)
) -> ReservationRecord:
    """
    Reserve one NFT of a tier.

    The transaction is checked on-chain (age, success, recipient, amount)
    before anything is written. Payer and amount in the stored record come
    from the chain, not from the request.
    """
    logger.info(
        "Reservation requested",
        extra={"user_id": user_id, "tier": request.tier, "signature": request.signature}
    )
    return await admission.reserve(user_id, request.tier, request.signature, request.claimedUSD)


@router.get(
    "/reservations/{user_id}",
    response_model=List[ReservationRecord],
    summary="List a user's reservations"
)
async def list_user_reservations(
    user_id: str,
    admission: AdmissionController = Depends(get_admission_controller)
) -> List[ReservationRecord]:
    return await admission.list_by_user(user_id)


@router.get(
    "/reservations",
    response_model=List[ReservationRecord],
    summary="List all reservations",
    dependencies=[Depends(require_admin)]
)
async def list_all_reservations(
    admission: AdmissionController = Depends(get_admission_controller)
) -> List[ReservationRecord]:
    return await admission.list_all()


@router.get("/supply", response_model=SupplyResponse, summary="Sold and remaining supply per tier")
async def get_supply(
    admission: AdmissionController = Depends(get_admission_controller)
) -> SupplyResponse:
    return await admission.supply()


@router.get("/quote/{tier}", response_model=QuoteResponse, summary="Estimated SOL amount for a tier")
async def get_quote(
    tier: str,
    admission: AdmissionController = Depends(get_admission_controller)
) -> QuoteResponse:
    return await admission.quote(tier)


@router.post(
    "/verify",
    response_model=VerificationResult,
    summary="Verify a payment without reserving",
    description="Dry run of the on-chain checks; nothing is committed"
)
async def verify_payment(
    request: VerifyRequest,
    admission: AdmissionController = Depends(get_admission_controller)
) -> VerificationResult:
    return await admission.verify_only(request.tier, request.signature, request.claimedUSD)
