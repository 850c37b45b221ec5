from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import timedelta
from typing import Optional
import logging

from database.connection import get_db
from services.auth import (
    authenticate_user,
    create_user,
    create_access_token,
    verify_token,
    get_user_by_id,
    get_user_by_username
)
from schemas.user import UserLogin, UserRegister, Token, UserResponse
from core.config import settings
from core.exceptions import BaseCustomException

logger = logging.getLogger(__name__)

router = APIRouter()
security = HTTPBearer(auto_error=False)

async def resolve_user_from_token(token: Optional[str], db: AsyncSession) -> Optional[UserResponse]:
    """Resolve a bearer token to the user it was issued for, or None."""
    if not token:
        return None

    token_data = verify_token(token)
    if token_data is None:
        return None

    user = await get_user_by_id(db, token_data.user_id)
    if user is None:
        logger.warning(f"Token valid but user not found: {token_data.username}")
        return None

    return UserResponse.model_validate(user)

# Dependency to get current user
async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> UserResponse:
    """Get the current authenticated user."""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication credentials required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await resolve_user_from_token(credentials.credentials, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user

async def get_optional_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[UserResponse]:
    """Current user when a valid token is supplied, otherwise None."""
    if not credentials or not credentials.credentials:
        return None
    return await resolve_user_from_token(credentials.credentials, db)

def _issue_token(user) -> Token:
    access_token = create_access_token(
        data={"sub": user.username, "user_id": str(user.id)},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    return Token(
        access_token=access_token,
        token_type="bearer",
        user=UserResponse.model_validate(user)
    )

@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserRegister, db: AsyncSession = Depends(get_db)):
    """Register a new user and log them in."""
    try:
        logger.info(f"Registration attempt for username: {user_data.username}")

        user = await create_user(
            db=db,
            username=user_data.username,
            password=user_data.password,
            full_name=user_data.full_name,
            role=user_data.role,
            phone_number=user_data.phone_number
        )

        logger.info(f"User registered successfully: {user.username}")
        return _issue_token(user)

    except (HTTPException, BaseCustomException):
        raise
    except Exception as e:
        logger.error(f"Unexpected error during registration: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred. Please try again."
        )

@router.post("/login", response_model=Token)
async def login(user_credentials: UserLogin, db: AsyncSession = Depends(get_db)):
    """Login user and return access token."""
    logger.info(f"Login attempt for username: {user_credentials.username}")

    if not user_credentials.username or not user_credentials.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username and password are required"
        )

    user = await authenticate_user(db, user_credentials.username, user_credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info(f"User logged in successfully: {user.username}")
    return _issue_token(user)

@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: UserResponse = Depends(get_current_user)):
    """Get current user information."""
    logger.info(f"User info requested for: {current_user.username}")
    return current_user

@router.post("/logout")
async def logout(current_user: UserResponse = Depends(get_current_user)):
    """Logout user (client should discard token)."""
    logger.info(f"User logged out: {current_user.username}")
    return {"message": "Successfully logged out"}

@router.get("/check-username/{username}")
async def check_username_availability(username: str, db: AsyncSession = Depends(get_db)):
    """Check if a username is available for registration."""
    existing_user = await get_user_by_username(db, username)
    available = existing_user is None

    return {
        "available": available,
        "message": "Username is available" if available else "Username is already taken"
    }
