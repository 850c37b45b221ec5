from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from models.user import User, UserRole
from schemas.user import TokenData
from core.config import settings
from core.exceptions import ConflictError
import logging

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS
)

# JWT settings
SECRET_KEY = settings.SECRET_KEY
ALGORITHM = "HS256"

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token carrying the username (sub) and user id."""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({
        "exp": expire,
        "iat": datetime.utcnow(),
        "iss": "carryconnect",
        "type": "access"
    })

    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    logger.info(f"Access token created for user: {data.get('sub')}")
    return encoded_jwt

def verify_token(token: str) -> Optional[TokenData]:
    """Decode a JWT token; returns None when it is invalid or expired."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT verification failed: {str(e)}")
        return None

    username: str = payload.get("sub")
    user_id: str = payload.get("user_id")
    if username is None or user_id is None:
        logger.warning("Token missing required claims")
        return None

    return TokenData(username=username, user_id=user_id)

async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()

async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    username = username.strip()
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()

async def authenticate_user(db: AsyncSession, username: str, password: str) -> Optional[User]:
    """Authenticate a user with username and password."""
    user = await get_user_by_username(db, username)
    if not user:
        logger.warning(f"Authentication attempt with unknown username: {username}")
        return None

    if not verify_password(password, user.password_hash):
        logger.warning(f"Authentication attempt with invalid password for user: {username}")
        return None

    logger.info(f"Successful authentication for user: {username}")
    return user

async def create_user(db: AsyncSession, username: str, password: str, full_name: str,
                      role: UserRole = UserRole.BOTH, phone_number: Optional[str] = None) -> User:
    """Create a new user; a taken username raises ConflictError."""
    existing_user = await get_user_by_username(db, username)
    if existing_user:
        logger.warning(f"Attempt to create user with existing username: {username}")
        raise ConflictError("Username already exists", details={"field": "username"})

    db_user = User(
        username=username.strip(),
        password_hash=get_password_hash(password),
        full_name=full_name,
        role=role,
        phone_number=phone_number,
        total_reviews=0,
        created_at=datetime.utcnow()
    )

    db.add(db_user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(f"Concurrent registration for username: {username}")
        raise ConflictError("Username already exists", details={"field": "username"})

    await db.refresh(db_user)
    logger.info(f"User created successfully: {username} with role {role.value}")
    return db_user
