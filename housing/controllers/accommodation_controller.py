"""HTTP controller layer for room allocation."""

from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from housing.controllers.dependencies import (
    get_allocation_service,
    get_policy_service,
    require_admin,
)
from housing.domain.errors import (
    AllocationConflictError,
    AllocationValidationError,
    NotFoundError,
)
from housing.domain.models import AllocationRunResult, Gender, RoomDetails
from housing.services.allocation_service import AccommodationAllocationService
from housing.services.policy_service import AllocationPolicyService
from housing.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/accommodations", tags=["accommodations"])


class AgeAllocationRequest(BaseModel):
    gender: Optional[Gender] = None
    age_range_years: Optional[int] = None


class RandomAllocationRequest(BaseModel):
    gender: Optional[Gender] = None


class ManualAllocationRequest(BaseModel):
    registrant_id: int = Field(gt=0)
    room_id: int = Field(gt=0)


class EmptyRoomsRequest(BaseModel):
    gender: Gender


class AgeGapPolicyRequest(BaseModel):
    age_gap: int


class PlacementResponse(BaseModel):
    registrant_id: int
    room_id: int


class GroupReportResponse(BaseModel):
    gender: Gender
    min_age: int = Field(ge=0)
    max_age: int = Field(ge=0)
    size: int = Field(ge=0)
    allocated: int = Field(ge=0)
    remaining: int = Field(ge=0)
    status: str


class AllocationRunResponse(BaseModel):
    strategy: str
    total_allocated: int = Field(ge=0)
    placements: list[PlacementResponse]
    unallocated: list[int]
    groups: list[GroupReportResponse]
    age_range_years: Optional[int] = None


class AllocationResponse(BaseModel):
    registrant_id: int
    room_id: int
    allocated_at: str
    allocated_by: str


class RoomDetailsResponse(BaseModel):
    room_id: int
    room_name: str
    room_gender: Gender
    room_capacity: int = Field(ge=0)
    current_occupancy: int = Field(ge=0)
    roommates: list[str]
    registrant_name: str
    allocated_at: str
    allocated_by: str


class RemoveAllocationResponse(BaseModel):
    removed: bool


class EmptyRoomsResponse(BaseModel):
    gender: Gender
    removed_allocations: int = Field(ge=0)
    affected_rooms: int = Field(ge=0)


class AgeGapPolicyResponse(BaseModel):
    age_gap: int = Field(ge=1)


class RoomOccupancyResponse(BaseModel):
    room_id: int
    name: str
    gender: Gender
    capacity: int = Field(ge=0)
    is_active: bool
    occupancy: int = Field(ge=0)
    occupants: list[str]


class OverviewResponse(BaseModel):
    total_registrants: int = Field(ge=0)
    verified_registrants: int = Field(ge=0)
    allocated_registrants: int = Field(ge=0)
    unallocated_verified: int = Field(ge=0)
    allocation_rate: float = Field(ge=0.0, le=1.0)
    total_rooms: int = Field(ge=0)
    active_rooms: int = Field(ge=0)
    total_capacity: int = Field(ge=0)
    occupied_spaces: int = Field(ge=0)
    available_spaces: int
    rooms: list[RoomOccupancyResponse]


def run_to_response(result: AllocationRunResult) -> AllocationRunResponse:
    return AllocationRunResponse(
        strategy=result.strategy,
        total_allocated=result.total_allocated,
        placements=[
            PlacementResponse(registrant_id=item.registrant_id, room_id=item.room_id)
            for item in result.placements
        ],
        unallocated=list(result.unallocated),
        groups=[
            GroupReportResponse(
                gender=group.gender,
                min_age=group.min_age,
                max_age=group.max_age,
                size=group.size,
                allocated=group.allocated,
                remaining=group.remaining,
                status=group.status,
            )
            for group in result.groups
        ],
        age_range_years=result.age_range_years,
    )


def details_to_response(details: RoomDetails) -> RoomDetailsResponse:
    return RoomDetailsResponse(
        room_id=details.room_id,
        room_name=details.room_name,
        room_gender=details.room_gender,
        room_capacity=details.room_capacity,
        current_occupancy=details.current_occupancy,
        roommates=list(details.roommates),
        registrant_name=details.registrant_name,
        allocated_at=details.allocated_at,
        allocated_by=details.allocated_by,
    )


@router.post("/allocate", response_model=AllocationRunResponse, status_code=status.HTTP_200_OK)
async def allocate_by_age(
    payload: AgeAllocationRequest,
    service: AccommodationAllocationService = Depends(get_allocation_service),
    operator: str = Depends(require_admin),
) -> AllocationRunResponse:
    """Group eligible registrants by age and place each group together where possible."""
    try:
        result = service.allocate_by_age(
            performed_by=operator,
            gender=payload.gender,
            age_range_years=payload.age_range_years,
        )
        return run_to_response(result)
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected age allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to allocate rooms",
        ) from exc


@router.post(
    "/random_allocate",
    response_model=AllocationRunResponse,
    status_code=status.HTTP_200_OK,
)
async def allocate_random(
    payload: RandomAllocationRequest,
    service: AccommodationAllocationService = Depends(get_allocation_service),
    operator: str = Depends(require_admin),
) -> AllocationRunResponse:
    try:
        result = service.allocate_random(performed_by=operator, gender=payload.gender)
        return run_to_response(result)
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected random allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to allocate rooms",
        ) from exc


@router.post(
    "/manual_allocate",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={status.HTTP_409_CONFLICT: {"description": "Allocation rejected"}},
)
async def allocate_manual(
    payload: ManualAllocationRequest,
    service: AccommodationAllocationService = Depends(get_allocation_service),
    operator: str = Depends(require_admin),
) -> Union[AllocationResponse, JSONResponse]:
    try:
        allocation = service.allocate_manual(
            registrant_id=payload.registrant_id,
            room_id=payload.room_id,
            performed_by=operator,
        )
        return AllocationResponse(
            registrant_id=allocation.registrant_id,
            room_id=allocation.room_id,
            allocated_at=allocation.allocated_at,
            allocated_by=allocation.allocated_by,
        )
    except AllocationConflictError as exc:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=exc.to_dict())
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected manual allocation failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to allocate room",
        ) from exc


@router.get(
    "/allocations/{registrant_id}",
    response_model=RoomDetailsResponse,
    dependencies=[Depends(require_admin)],
)
async def get_allocation(
    registrant_id: int,
    service: AccommodationAllocationService = Depends(get_allocation_service),
) -> RoomDetailsResponse:
    try:
        return details_to_response(service.get_allocation_details(registrant_id))
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.delete(
    "/allocations/{registrant_id}",
    response_model=RemoveAllocationResponse,
    dependencies=[Depends(require_admin)],
)
async def remove_allocation(
    registrant_id: int,
    service: AccommodationAllocationService = Depends(get_allocation_service),
) -> RemoveAllocationResponse:
    try:
        return RemoveAllocationResponse(removed=service.remove_allocation(registrant_id))
    except NotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected allocation removal failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to remove allocation",
        ) from exc


@router.post(
    "/empty",
    response_model=EmptyRoomsResponse,
    dependencies=[Depends(require_admin)],
)
async def empty_rooms(
    payload: EmptyRoomsRequest,
    service: AccommodationAllocationService = Depends(get_allocation_service),
) -> EmptyRoomsResponse:
    try:
        removed, affected_rooms = service.empty_rooms(payload.gender)
        return EmptyRoomsResponse(
            gender=payload.gender,
            removed_allocations=removed,
            affected_rooms=affected_rooms,
        )
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


@router.get(
    "/age_gap_policy",
    response_model=AgeGapPolicyResponse,
    dependencies=[Depends(require_admin)],
)
async def get_age_gap_policy(
    service: AllocationPolicyService = Depends(get_policy_service),
) -> AgeGapPolicyResponse:
    return AgeGapPolicyResponse(age_gap=service.get_policy().max_age_gap)


@router.put(
    "/age_gap_policy",
    response_model=AgeGapPolicyResponse,
    dependencies=[Depends(require_admin)],
)
async def set_age_gap_policy(
    payload: AgeGapPolicyRequest,
    service: AllocationPolicyService = Depends(get_policy_service),
) -> AgeGapPolicyResponse:
    try:
        policy = service.set_policy(payload.age_gap)
        return AgeGapPolicyResponse(age_gap=policy.max_age_gap)
    except AllocationValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc


@router.get("/overview", response_model=OverviewResponse, dependencies=[Depends(require_admin)])
async def overview(
    service: AccommodationAllocationService = Depends(get_allocation_service),
) -> OverviewResponse:
    stats = service.overview()
    return OverviewResponse(
        total_registrants=stats.total_registrants,
        verified_registrants=stats.verified_registrants,
        allocated_registrants=stats.allocated_registrants,
        unallocated_verified=stats.unallocated_verified,
        allocation_rate=min(1.0, stats.allocation_rate),
        total_rooms=stats.total_rooms,
        active_rooms=stats.active_rooms,
        total_capacity=stats.total_capacity,
        occupied_spaces=stats.occupied_spaces,
        available_spaces=stats.available_spaces,
        rooms=[
            RoomOccupancyResponse(
                room_id=item.room.room_id,
                name=item.room.name,
                gender=item.room.gender,
                capacity=item.room.capacity,
                is_active=item.room.is_active,
                occupancy=item.occupancy,
                occupants=list(item.occupants),
            )
            for item in stats.rooms
        ],
    )
