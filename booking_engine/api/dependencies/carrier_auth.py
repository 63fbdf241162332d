"""
Shared-secret check for inbound carrier status callbacks.

The carrier sends ``X-Carrier-Token`` with every callback; it must match
CARRIER_CALLBACK_SECRET.
"""
import hmac

from fastapi import Header, HTTPException, status

from booking_engine.core.config import settings
from booking_engine.core.logging import get_logger

logger = get_logger(__name__)


async def verify_carrier_callback_token(
    x_carrier_token: str | None = Header(None),
) -> None:
    """
    - CARRIER_CALLBACK_SECRET unset: callbacks are refused (403), since an
      open callback could confirm shipments that were never handed over.
    - Header missing or wrong: 403.
    """
    expected = settings.CARRIER_CALLBACK_SECRET
    if not expected:
        logger.warning("Carrier callback refused, CARRIER_CALLBACK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Carrier callbacks are not configured",
        )

    if not x_carrier_token or not hmac.compare_digest(x_carrier_token, expected):
        logger.warning("Carrier callback with missing or invalid token")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid carrier token",
        )
