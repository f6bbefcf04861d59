"""Firebase ID token verification."""

from typing import Optional

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from fastapi import HTTPException, status

from common.core.otel_axiom_exporter import trace_span, get_logger
from common.core.config import settings
from packages.auth.models.domain.authenticated_user import AuthenticatedUser

logger = get_logger(__name__)

# Custom claim the identity service sets on every ID token
USER_ID_CLAIM = "user_id"

_firebase_app: Optional[firebase_admin.App] = None


def _get_firebase_app() -> firebase_admin.App:
    """Get or initialize Firebase Admin app."""
    global _firebase_app
    if _firebase_app is None:
        if not settings.firebase_project_id:
            raise ValueError("Firebase configuration missing: firebase_project_id required")

        # Explicit credentials locally, ADC on GKE
        cred = None
        if settings.google_application_credentials:
            cred = credentials.Certificate(settings.google_application_credentials)

        _firebase_app = firebase_admin.initialize_app(
            credential=cred, options={"projectId": settings.firebase_project_id}
        )
        logger.info(
            f"Firebase Admin SDK initialized for project: {settings.firebase_project_id}"
        )
    return _firebase_app


class FirebaseTokenVerifier:
    """Verifies Firebase ID tokens and maps them to billing users."""

    def __init__(self):
        self.app = _get_firebase_app()

    @trace_span
    async def authenticate(self, token: str) -> AuthenticatedUser:
        try:
            decoded_token = firebase_auth.verify_id_token(token, app=self.app)
        except firebase_auth.ExpiredIdTokenError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Firebase token has expired",
            )
        except (firebase_auth.InvalidIdTokenError, ValueError) as e:
            logger.warning(f"Firebase token validation failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid Firebase token",
            )

        user_id = decoded_token.get(USER_ID_CLAIM)
        if user_id is None:
            logger.warning(
                "Firebase token missing user_id claim",
                extra={"uid": decoded_token.get("uid")},
            )
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token is not linked to a user",
            )

        return AuthenticatedUser(
            user_id=int(user_id), provider_user_id=decoded_token.get("uid")
        )


_verifier: Optional[FirebaseTokenVerifier] = None


def get_token_verifier() -> FirebaseTokenVerifier:
    """Singleton verifier."""
    global _verifier
    if _verifier is None:
        _verifier = FirebaseTokenVerifier()
    return _verifier
