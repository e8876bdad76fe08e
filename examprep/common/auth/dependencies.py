"""
Authentication dependencies for the ExamPrep API.

The identity provider in front of this service verifies the token and
forwards the caller as ``X-User-Id`` / ``X-User-Role`` headers.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from examprep.common.auth.user import Principal

logger = logging.getLogger(__name__)


async def get_current_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header("user")
) -> Principal:
    """
    Build the calling principal from the forwarded identity headers.

    Raises:
        HTTPException: If the identity headers are missing or malformed
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )

    try:
        return Principal(id=x_user_id, role=x_user_role or "user")
    except ValueError:
        logger.warning(f"Rejected unknown role {x_user_role!r} for user {x_user_id}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Role header"
        )
