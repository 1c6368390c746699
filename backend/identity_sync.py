"""
Lazy creation of local user rows for verified identities.

The first time an identity presents a valid credential a users row is
inserted with a unique username. Username disambiguation is optimistic:
candidates are checked one by one and the insert may still race with a
concurrent request for the same identity. That race is repaired with the
``insert_or_reread`` strategy below instead of a lock.
"""

from typing import Callable, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import stores
from auth import IdentityClaims
from database import User, DEFAULT_PROFILE_PHOTO
from structured_logging import get_logger

logger = get_logger(__name__)

FALLBACK_USERNAME = "user"


def derive_base_username(claims: IdentityClaims) -> str:
    """Display name when present, else the local part of the email."""
    if claims.name and claims.name.strip():
        return claims.name.strip()
    if claims.email and "@" in claims.email:
        local = claims.email.split("@", 1)[0]
        if local:
            return local
    return FALLBACK_USERNAME


def unique_username(db: Session, base: str) -> str:
    """
    First free name among base, base1, base2, ...

    The Nth collision on the same base yields the suffix N-1.
    """
    candidate = base
    counter = 1
    while stores.username_exists(db, candidate):
        candidate = f"{base}{counter}"
        counter += 1
    return candidate


def insert_or_reread(db: Session, uid: str, insert: Callable[[], User]) -> Tuple[User, bool]:
    """
    Run ``insert``; if it violates a unique constraint, treat the conflict as
    "someone else just created it" and return the stored row instead.

    Returns (user, created). A conflict with no row to re-read is an
    anomaly and the original IntegrityError is raised.
    """
    try:
        return insert(), True
    except IntegrityError:
        db.rollback()
        existing = stores.get_user(db, uid)
        if existing is None:
            logger.error("Unique violation but user row missing", extra={"uid": uid})
            raise
        logger.info("Concurrent user creation resolved by re-read", extra={"uid": uid})
        return existing, False


def sync_user(db: Session, claims: IdentityClaims) -> Tuple[User, bool]:
    """Return the local user for verified claims, creating it when absent."""
    user = stores.get_user(db, claims.uid)
    if user:
        return user, False

    username = unique_username(db, derive_base_username(claims))
    photo_url = claims.picture or DEFAULT_PROFILE_PHOTO

    user, created = insert_or_reread(
        db,
        claims.uid,
        lambda: stores.create_user(
            db,
            uid=claims.uid,
            username=username,
            email=claims.email,
            photo_url=photo_url,
        ),
    )
    if created:
        logger.info("User profile created", extra={"uid": claims.uid, "username": username})
    return user, created
