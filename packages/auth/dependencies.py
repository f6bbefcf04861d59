from typing import Annotated, Optional
from fastapi import Depends, HTTPException, status, Header

from common.core.otel_axiom_exporter import trace_span, get_logger
from packages.auth.models.domain.authenticated_user import AuthenticatedUser
from packages.auth.providers.firebase_provider import (
    FirebaseTokenVerifier,
    get_token_verifier,
)

logger = get_logger(__name__)


@trace_span
async def get_current_user(
    authorization: Annotated[Optional[str], Header()] = None,
    verifier: FirebaseTokenVerifier = Depends(get_token_verifier),
) -> AuthenticatedUser:
    """Get current authenticated user from a Firebase ID token."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing or invalid",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization.split(" ")[1]
    return await verifier.authenticate(token)


@trace_span
async def get_current_active_user(
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> AuthenticatedUser:
    """Get current active user."""
    logger.debug(f"Authenticated user_id={current_user.user_id}")
    return current_user
