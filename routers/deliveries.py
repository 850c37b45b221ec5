from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.response import paginated_response
from database.connection import get_db
from routers.auth import get_current_user, get_optional_user
from models.delivery import DeliveryStatus, PackageSize
from schemas.delivery import (
    DeliveryCreate, DeliveryFilters, DeliveryResponse, StatusUpdate, CancelRequest,
    OtpValidateRequest, OtpValidateResponse, LocationUpdate, LocationResponse
)
from schemas.user import UserResponse
from core.exceptions import InvalidOtpError
from services.delivery import DeliveryService, to_response
from services.location import record_location, get_latest_location

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["deliveries"])

@router.get("/deliveries")
async def list_deliveries(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    status_filter: Optional[DeliveryStatus] = Query(None, alias="status"),
    pickup_location: Optional[str] = Query(None),
    drop_location: Optional[str] = Query(None),
    package_size: Optional[PackageSize] = Query(None),
    min_weight: Optional[int] = Query(None, ge=0),
    max_weight: Optional[int] = Query(None, ge=0),
    min_fee: Optional[int] = Query(None, ge=0),
    max_fee: Optional[int] = Query(None, ge=0),
    min_rating: Optional[int] = Query(None, ge=1, le=5),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    current_user: Optional[UserResponse] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Browse delivery requests, newest first"""
    filters = DeliveryFilters(
        status=status_filter,
        pickup_location=pickup_location,
        drop_location=drop_location,
        package_size=package_size,
        min_weight=min_weight,
        max_weight=max_weight,
        min_fee=min_fee,
        max_fee=max_fee,
        min_rating=min_rating,
        start_date=start_date,
        end_date=end_date
    )
    deliveries, total = await DeliveryService(db).list_deliveries(filters, page=page, per_page=per_page)

    viewer_id = current_user.id if current_user else None
    return paginated_response(
        data=[to_response(d, viewer_id).model_dump(mode="json") for d in deliveries],
        page=page,
        per_page=per_page,
        total_items=total,
        message="Deliveries retrieved successfully"
    )

@router.post("/deliveries", response_model=DeliveryResponse, status_code=status.HTTP_201_CREATED)
async def create_delivery(
    delivery_data: DeliveryCreate,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Post a new delivery request"""
    return await DeliveryService(db).create_delivery_request(current_user.id, delivery_data)

@router.get("/deliveries/{delivery_id}", response_model=DeliveryResponse)
async def get_delivery(
    delivery_id: str,
    current_user: Optional[UserResponse] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a delivery; OTPs are only shown to its sender"""
    viewer_id = current_user.id if current_user else None
    return await DeliveryService(db).get_delivery_view(delivery_id, viewer_id)

@router.patch("/deliveries/{delivery_id}/status", response_model=DeliveryResponse)
async def update_delivery_status(
    delivery_id: str,
    status_update: StatusUpdate,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Accept, pick up, start transit or complete a delivery"""
    return await DeliveryService(db).transition_status(
        delivery_id,
        current_user.id,
        status_update.status,
        otp=status_update.otp
    )

@router.post("/deliveries/{delivery_id}/cancel", response_model=DeliveryResponse)
async def cancel_delivery(
    delivery_id: str,
    cancel_request: CancelRequest,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Cancel a delivery with a reason"""
    return await DeliveryService(db).cancel_delivery(
        delivery_id,
        current_user.id,
        cancel_request.cancellation_reason
    )

@router.post("/deliveries/{delivery_id}/validate-otp", response_model=OtpValidateResponse)
async def validate_delivery_otp(
    delivery_id: str,
    otp_request: OtpValidateRequest,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Check an OTP without changing the delivery"""
    valid = await DeliveryService(db).validate_otp(
        delivery_id,
        current_user.id,
        otp_request.otp,
        otp_request.type
    )
    if not valid:
        raise InvalidOtpError()
    return OtpValidateResponse(valid=True)

@router.get("/user/deliveries/sender", response_model=List[DeliveryResponse])
async def get_my_sent_deliveries(
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Deliveries the current user has requested"""
    deliveries = await DeliveryService(db).get_sender_deliveries(current_user.id)
    return [to_response(d, current_user.id) for d in deliveries]

@router.get("/user/deliveries/carrier", response_model=List[DeliveryResponse])
async def get_my_carried_deliveries(
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Deliveries the current user is carrying"""
    deliveries = await DeliveryService(db).get_carrier_deliveries(current_user.id)
    return [to_response(d, current_user.id) for d in deliveries]

@router.post("/deliveries/{delivery_id}/location", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def update_delivery_location(
    delivery_id: str,
    location: LocationUpdate,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Report the carrier's current position"""
    return await record_location(db, delivery_id, current_user.id, location.latitude, location.longitude)

@router.get("/deliveries/{delivery_id}/location", response_model=Optional[LocationResponse])
async def get_delivery_location(
    delivery_id: str,
    current_user: UserResponse = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Latest known position of the carrier, if any"""
    return await get_latest_location(db, delivery_id, current_user.id)
