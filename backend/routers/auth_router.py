"""
Authentication Router

Exchanges a Firebase ID token for the local user profile, creating the
profile on first sign-in.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

import identity_sync
from auth import (
    FirebaseIdentityVerifier,
    IdentityProviderError,
    InvalidCredentialError,
    get_identity_verifier,
)
from database import get_db
from models import UserResponse, VerifyTokenRequest
from structured_logging import get_logger, log_security_event

logger = get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def serialize_user(user) -> dict:
    return UserResponse.model_validate(user).model_dump(by_alias=True, mode="json")


@router.post("/verify-token")
def verify_token(
    payload: VerifyTokenRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    verifier: FirebaseIdentityVerifier = Depends(get_identity_verifier)
):
    """Verify an ID token and return the matching profile (201 when newly created)."""
    if not payload.token:
        raise HTTPException(status_code=400, detail="No token provided")

    try:
        claims = verifier.verify(payload.token)
    except (InvalidCredentialError, IdentityProviderError) as e:
        log_security_event(
            "token_verification_failed",
            "medium",
            client_ip=request.client.host if request.client else None,
            details=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
        )

    request.state.user_id = claims.uid

    try:
        user, created = identity_sync.sync_user(db, claims)
    except Exception as e:
        db.rollback()
        logger.error(
            "Database error during authentication",
            extra={"uid": claims.uid, "error_type": type(e).__name__},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Authentication failed due to database error")

    if created:
        response.status_code = status.HTTP_201_CREATED
        message = "User authenticated and profile created"
    else:
        message = "User authenticated"

    return {"error": False, "message": message, "user": serialize_user(user)}
