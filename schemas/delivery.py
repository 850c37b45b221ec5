from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, validator

from models.delivery import DeliveryStatus, PackageSize
from schemas.user import UserSummary


class OtpType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class DeliveryCreate(BaseModel):
    pickup_location: str = Field(..., min_length=1, max_length=255)
    drop_location: str = Field(..., min_length=1, max_length=255)
    package_size: PackageSize
    package_weight: int = Field(..., ge=1, description="Weight in grams")
    delivery_fee: int = Field(..., ge=1, description="Fee in cents")
    description: Optional[str] = Field(None, max_length=2000)
    special_instructions: Optional[str] = Field(None, max_length=2000)
    preferred_delivery_date: str = Field(..., description="YYYY-MM-DD")
    preferred_delivery_time: str = Field(..., min_length=1, max_length=20)

    @validator('pickup_location', 'drop_location')
    def validate_location(cls, v):
        if not v.strip():
            raise ValueError('Location is required')
        return v.strip()

    @validator('preferred_delivery_date')
    def validate_date(cls, v):
        try:
            datetime.strptime(v, "%Y-%m-%d")
        except ValueError:
            raise ValueError('Preferred delivery date must use the YYYY-MM-DD format')
        return v


class DeliveryFilters(BaseModel):
    status: Optional[DeliveryStatus] = None
    pickup_location: Optional[str] = None
    drop_location: Optional[str] = None
    package_size: Optional[PackageSize] = None
    min_weight: Optional[int] = Field(None, ge=0)
    max_weight: Optional[int] = Field(None, ge=0)
    min_fee: Optional[int] = Field(None, ge=0)
    max_fee: Optional[int] = Field(None, ge=0)
    min_rating: Optional[int] = Field(None, ge=1, le=5)
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class StatusUpdate(BaseModel):
    status: DeliveryStatus
    otp: Optional[str] = None


class CancelRequest(BaseModel):
    cancellation_reason: str


class OtpValidateRequest(BaseModel):
    otp: str
    type: OtpType = OtpType.PICKUP


class OtpValidateResponse(BaseModel):
    valid: bool


class DeliveryResponse(BaseModel):
    id: str
    sender_id: str
    carrier_id: Optional[str] = None
    pickup_location: str
    drop_location: str
    package_size: PackageSize
    package_weight: int
    delivery_fee: int
    description: Optional[str] = None
    special_instructions: Optional[str] = None
    preferred_delivery_date: str
    preferred_delivery_time: str
    status: DeliveryStatus
    # Only populated for the sender, who reads them out to the carrier
    pickup_otp: Optional[str] = None
    delivery_otp: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    sender: Optional[UserSummary] = None
    carrier: Optional[UserSummary] = None

    class Config:
        from_attributes = True


class LocationUpdate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class LocationResponse(BaseModel):
    delivery_id: str
    latitude: float
    longitude: float
    timestamp: datetime

    class Config:
        from_attributes = True
