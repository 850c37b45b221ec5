"""
One-time codes for pickup and delivery handoffs.

Codes are six ASCII digits drawn from the full 000000-999999 range with a
CSPRNG. A freshly issued pair never repeats a code that a live (non-terminal)
delivery still holds, and the pickup and delivery codes always differ.
"""
import hmac
import logging
import secrets
from typing import Optional, Tuple

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from models.delivery import Delivery, DeliveryStatus

logger = logging.getLogger(__name__)

OTP_LENGTH = 6
OTP_SPACE = 10 ** OTP_LENGTH


def generate_otp() -> str:
    return f"{secrets.randbelow(OTP_SPACE):0{OTP_LENGTH}d}"


def is_well_formed(otp: Optional[str]) -> bool:
    # str.isdigit accepts non-ASCII digits, so check the ASCII range explicitly
    return (
        isinstance(otp, str)
        and len(otp) == OTP_LENGTH
        and all("0" <= ch <= "9" for ch in otp)
    )


def otp_matches(expected: Optional[str], supplied: str) -> bool:
    """Strict equality against the stored code, no normalisation."""
    if not expected:
        return False
    return hmac.compare_digest(expected.encode("ascii"), supplied.encode("ascii"))


async def _codes_in_use(db: AsyncSession, codes: Tuple[str, ...]) -> bool:
    live = Delivery.status.notin_([DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED])
    result = await db.execute(
        select(Delivery.id).where(
            live,
            or_(Delivery.pickup_otp.in_(codes), Delivery.delivery_otp.in_(codes))
        ).limit(1)
    )
    return result.first() is not None


async def issue_otp_pair(db: AsyncSession) -> Tuple[str, str]:
    """Draw a (pickup, delivery) pair that is distinct and unused by live deliveries."""
    for attempt in range(settings.OTP_MAX_ATTEMPTS):
        pickup_otp = generate_otp()
        delivery_otp = generate_otp()
        if pickup_otp == delivery_otp:
            continue
        if await _codes_in_use(db, (pickup_otp, delivery_otp)):
            logger.info(f"OTP collision with a live delivery, redrawing (attempt {attempt + 1})")
            continue
        return pickup_otp, delivery_otp

    raise RuntimeError("Could not draw a unique OTP pair")
