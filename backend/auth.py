"""
Authentication helpers.

Identity is delegated to Firebase Authentication: clients send a Firebase
ID token as a bearer credential and the backend verifies it with
firebase-admin. Local passwords linked to an account are stored as bcrypt
hashes only.
"""

import threading
from dataclasses import dataclass
from typing import List, Optional

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin.exceptions import FirebaseError
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from config import (
    FIREBASE_PROJECT_ID,
    FIREBASE_CLIENT_EMAIL,
    FIREBASE_PRIVATE_KEY,
    IDENTITY_TIMEOUT_SECONDS,
)
from structured_logging import get_logger, log_security_event

logger = get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

PASSWORD_PROVIDER = "password"


# =============================================================================
# PASSWORD HASHING
# =============================================================================

def get_password_hash(password):
    return pwd_context.hash(password)


# =============================================================================
# IDENTITY PROVIDER
# =============================================================================

class InvalidCredentialError(Exception):
    """The bearer credential is malformed, expired or revoked."""


class EmailAlreadyInUseError(Exception):
    """Another identity already owns the requested email."""


class IdentityProviderError(Exception):
    """The identity provider rejected or failed a request."""


@dataclass
class IdentityClaims:
    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    email_verified: bool = False

    @classmethod
    def from_token(cls, decoded: dict) -> "IdentityClaims":
        return cls(
            uid=decoded["uid"],
            email=decoded.get("email"),
            name=decoded.get("name"),
            picture=decoded.get("picture"),
            email_verified=bool(decoded.get("email_verified", False)),
        )


class FirebaseIdentityVerifier:
    """
    Thin wrapper over firebase-admin.

    The Firebase app is initialized lazily on first use from the service
    account values in config, so importing this module never needs
    credentials. Every request the SDK makes is bounded by httpTimeout.
    """

    def __init__(self, app: Optional[firebase_admin.App] = None, timeout: Optional[float] = None):
        self._app = app
        self.timeout = timeout if timeout is not None else IDENTITY_TIMEOUT_SECONDS
        self._lock = threading.Lock()

    def _get_app(self) -> firebase_admin.App:
        if self._app is not None:
            return self._app
        with self._lock:
            if self._app is None:
                try:
                    self._app = firebase_admin.get_app()
                except ValueError:
                    cred = credentials.Certificate({
                        "type": "service_account",
                        "project_id": FIREBASE_PROJECT_ID,
                        "client_email": FIREBASE_CLIENT_EMAIL,
                        "private_key": FIREBASE_PRIVATE_KEY,
                        "token_uri": "https://oauth2.googleapis.com/token",
                    })
                    self._app = firebase_admin.initialize_app(cred, options={"httpTimeout": self.timeout})
                    logger.info(
                        "Firebase app initialized",
                        extra={"project_id": FIREBASE_PROJECT_ID, "timeout_s": self.timeout}
                    )
        return self._app

    def verify(self, token: str) -> IdentityClaims:
        try:
            decoded = firebase_auth.verify_id_token(token, app=self._get_app())
        except (firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
                firebase_auth.RevokedIdTokenError, ValueError) as e:
            raise InvalidCredentialError(str(e)) from e
        except FirebaseError as e:
            raise IdentityProviderError(str(e)) from e
        return IdentityClaims.from_token(decoded)

    def provider_ids(self, uid: str) -> List[str]:
        """Sign-in providers linked to the identity (e.g. "password", "google.com")."""
        try:
            record = firebase_auth.get_user(uid, app=self._get_app())
        except FirebaseError as e:
            raise IdentityProviderError(str(e)) from e
        return [info.provider_id for info in record.provider_data]

    def update_user(self, uid: str, **kwargs):
        try:
            firebase_auth.update_user(uid, app=self._get_app(), **kwargs)
        except firebase_auth.EmailAlreadyExistsError as e:
            raise EmailAlreadyInUseError(str(e)) from e
        except (FirebaseError, ValueError) as e:
            raise IdentityProviderError(str(e)) from e

    def delete_user(self, uid: str):
        try:
            firebase_auth.delete_user(uid, app=self._get_app())
        except FirebaseError as e:
            raise IdentityProviderError(str(e)) from e


_verifier: Optional[FirebaseIdentityVerifier] = None


def get_identity_verifier() -> FirebaseIdentityVerifier:
    global _verifier
    if _verifier is None:
        _verifier = FirebaseIdentityVerifier()
    return _verifier


# =============================================================================
# REQUEST DEPENDENCIES
# =============================================================================

def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def get_current_user(
    request: Request,
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: FirebaseIdentityVerifier = Depends(get_identity_verifier),
) -> IdentityClaims:
    """Resolve the caller from the Authorization: Bearer <id token> header."""
    if bearer is None or not bearer.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = verifier.verify(bearer.credentials)
    except (InvalidCredentialError, IdentityProviderError) as e:
        log_security_event(
            "invalid_token",
            "medium",
            client_ip=_client_ip(request),
            details=str(e),
            http_path=request.url.path,
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user_id = claims.uid
    return claims


def ensure_same_user(current_user: IdentityClaims, uid: str, action: str = "access"):
    """Reject requests that target another user's profile."""
    if current_user.uid != uid:
        log_security_event(
            "cross_user_access",
            "high",
            user_id=current_user.uid,
            details=f"attempted to {action} profile {uid}",
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unauthorized: You can only {action} your own profile",
        )
