from pydantic import BaseModel, validator, Field
from typing import Optional, Union
from datetime import datetime
from models.user import UserRole
import re

# Base User Schema
class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    full_name: str = Field(..., min_length=2, max_length=100)
    phone_number: Optional[str] = None
    role: Union[UserRole, str] = UserRole.BOTH

# User Registration Schema
class UserRegister(UserBase):
    password: str = Field(..., min_length=6, max_length=128)

    @validator('username')
    def validate_username(cls, v):
        v = v.strip()
        if not re.match(r'^[a-zA-Z0-9_.\-]+$', v):
            raise ValueError('Username may only contain letters, digits, dots, dashes and underscores')
        return v

    @validator('full_name')
    def validate_full_name(cls, v):
        if not v or len(v.strip()) < 2:
            raise ValueError('Full name must be at least 2 characters long')
        return v.strip()

    @validator('phone_number')
    def validate_phone_number(cls, v):
        if v is None:
            return v
        if not re.fullmatch(r'\d{10}', v):
            raise ValueError('Phone number must be exactly 10 digits')
        return v

    @validator('role')
    def validate_role(cls, v):
        if isinstance(v, str):
            try:
                return UserRole(v.lower())
            except ValueError:
                valid_roles = [role.value for role in UserRole]
                raise ValueError(f'Invalid role. Must be one of: {valid_roles}')
        return v

# User Login Schema
class UserLogin(BaseModel):
    username: str
    password: str

# Safe projection embedded in delivery, message and review payloads
class UserSummary(BaseModel):
    id: str
    username: str
    full_name: str
    rating: Optional[int] = None
    total_reviews: int = 0
    phone_number: Optional[str] = None

    class Config:
        from_attributes = True

# User Response Schema
class UserResponse(UserSummary):
    role: UserRole
    created_at: datetime

# Token Schema
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse

# Token Data Schema
class TokenData(BaseModel):
    username: Optional[str] = None
    user_id: Optional[str] = None
