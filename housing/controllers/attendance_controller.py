"""Controller layer for registrant verification endpoints."""

from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from housing.controllers.accommodation_controller import RoomDetailsResponse, details_to_response
from housing.controllers.dependencies import get_verification_service, require_admin
from housing.domain.errors import NotFoundError, VerificationStateError
from housing.domain.models import UnverifyConflict
from housing.services.verification_service import VerificationGuard
from housing.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/attendance", tags=["attendance"])


class VerifyRequest(BaseModel):
    registrant_id: int = Field(gt=0)


class UnverifyRequest(BaseModel):
    registrant_id: int = Field(gt=0)
    force_unverify: bool = False


class VerifyResponse(BaseModel):
    registrant_id: int
    full_name: str
    is_verified: bool
    verified_at: Optional[str] = None
    verified_by: Optional[str] = None


class UnverifyResponse(BaseModel):
    registrant_id: int
    full_name: str
    room_removed: bool
    removed_room_id: Optional[int] = None
    unverified_at: str
    unverified_by: str


class UnverifyEligibilityResponse(BaseModel):
    registrant_id: int
    can_unverify: bool
    has_room_allocation: bool
    room_details: Optional[RoomDetailsResponse] = None


@router.post("/verify", response_model=VerifyResponse)
async def verify(
    payload: VerifyRequest,
    service: VerificationGuard = Depends(get_verification_service),
    operator: str = Depends(require_admin),
) -> Union[VerifyResponse, JSONResponse]:
    try:
        registrant = service.verify(payload.registrant_id, performed_by=operator)
        return VerifyResponse(
            registrant_id=registrant.registrant_id,
            full_name=registrant.full_name,
            is_verified=registrant.is_verified,
            verified_at=registrant.verified_at,
            verified_by=registrant.verified_by,
        )
    except VerificationStateError as exc:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=exc.to_dict())
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected verification failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify registrant",
        ) from exc


@router.post(
    "/unverify",
    response_model=UnverifyResponse,
    responses={status.HTTP_409_CONFLICT: {"description": "Registrant still holds a room"}},
)
async def unverify(
    payload: UnverifyRequest,
    service: VerificationGuard = Depends(get_verification_service),
    operator: str = Depends(require_admin),
) -> Union[UnverifyResponse, JSONResponse]:
    """Unverify a registrant; a held room blocks this unless ``force_unverify`` is set."""
    try:
        outcome = service.unverify(
            payload.registrant_id,
            force_unverify=payload.force_unverify,
            performed_by=operator,
        )
    except VerificationStateError as exc:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=exc.to_dict())
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected unverify failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to unverify registrant",
        ) from exc

    if isinstance(outcome, UnverifyConflict):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={
                "error_code": outcome.error_code,
                "message": (
                    "Registrant has a room allocation. "
                    "Set force_unverify to remove it and unverify."
                ),
                "registrant_id": outcome.registrant_id,
                "room_details": details_to_response(outcome.room_details).model_dump(
                    mode="json"
                ),
            },
        )
    return UnverifyResponse(
        registrant_id=outcome.registrant_id,
        full_name=outcome.full_name,
        room_removed=outcome.room_removed,
        removed_room_id=outcome.removed_room_id,
        unverified_at=outcome.unverified_at,
        unverified_by=outcome.unverified_by,
    )


@router.get(
    "/unverify/{registrant_id}",
    response_model=UnverifyEligibilityResponse,
    dependencies=[Depends(require_admin)],
)
async def unverify_eligibility(
    registrant_id: int,
    service: VerificationGuard = Depends(get_verification_service),
) -> UnverifyEligibilityResponse:
    try:
        eligibility = service.unverify_eligibility(registrant_id)
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return UnverifyEligibilityResponse(
        registrant_id=eligibility.registrant_id,
        can_unverify=eligibility.can_unverify,
        has_room_allocation=eligibility.has_room_allocation,
        room_details=(
            details_to_response(eligibility.room_details)
            if eligibility.room_details is not None
            else None
        ),
    )
