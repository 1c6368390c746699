"""
User Profile Router

Endpoints for:
- Reading and updating the caller's profile
- Profile photo upload
- Linking an email/password credential and resetting its password
- Account deletion (local row, photo file and identity provider account)

All endpoints act on /api/users/{uid} and require the caller to be {uid}.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, File, UploadFile, status
from sqlalchemy.orm import Session

import stores
from auth import (
    PASSWORD_PROVIDER,
    EmailAlreadyInUseError,
    FirebaseIdentityVerifier,
    IdentityClaims,
    IdentityProviderError,
    ensure_same_user,
    get_current_user,
    get_identity_verifier,
    get_password_hash,
)
from config import MAX_UPLOAD_SIZE
from database import get_db
from models import (
    LinkEmailPasswordRequest,
    ResetPasswordRequest,
    UserProfileUpdate,
    UserResponse,
)
from shared import delete_image, image_extension, is_local_photo, profile_photo_url, save_image
from structured_logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/users", tags=["User Profiles"])

MIN_PASSWORD_LENGTH = 6


def serialize_user(user) -> dict:
    return UserResponse.model_validate(user).model_dump(by_alias=True, mode="json")


def _require_user(db: Session, uid: str):
    user = stores.get_user(db, uid)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def _check_password(password: Optional[str]):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


# =============================================================================
# PROFILE ENDPOINTS
# =============================================================================

@router.get("/{uid}")
def get_user_profile(
    uid: str,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ensure_same_user(current_user, uid, "view")
    user = _require_user(db, uid)
    return {
        "error": False,
        "message": "User profile retrieved successfully",
        "user": serialize_user(user)
    }


@router.put("/{uid}")
def update_user_profile(
    uid: str,
    payload: UserProfileUpdate,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update username and birthdate."""
    ensure_same_user(current_user, uid, "update")

    if not payload.username or not payload.username.strip():
        raise HTTPException(status_code=400, detail="Username is required")
    username = payload.username.strip()

    try:
        holder = stores.get_user_by_username(db, username)
        if holder and holder.uid != uid:
            raise HTTPException(status_code=409, detail="Username is already taken")

        user = stores.update_user(db, uid, username=username, birthdate=payload.birthdate)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")

        return {
            "error": False,
            "message": "User profile updated successfully",
            "user": serialize_user(user)
        }
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to update user profile: {str(e)}")


@router.post("/{uid}/photo")
async def upload_profile_photo(
    uid: str,
    image: Optional[UploadFile] = File(None),
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ensure_same_user(current_user, uid, "update")

    contents = await image.read() if image is not None else None
    if not contents:
        raise HTTPException(status_code=400, detail="No image uploaded")
    if len(contents) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Image exceeds the {MAX_UPLOAD_SIZE // (1024 * 1024)}MB upload limit"
        )

    _require_user(db, uid)

    try:
        photo_url = profile_photo_url(uid, image_extension(image.filename))
        save_image(photo_url, contents)
        user = stores.set_user_photo(db, uid, photo_url)
        logger.info("Profile photo updated", extra={"uid": uid, "photo_url": photo_url})
        return {
            "error": False,
            "message": "Profile photo uploaded successfully",
            "user": serialize_user(user)
        }
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to upload profile photo: {str(e)}")


# =============================================================================
# CREDENTIAL ENDPOINTS
# =============================================================================

@router.post("/{uid}/link-email-password")
def link_email_password(
    uid: str,
    payload: LinkEmailPasswordRequest,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db),
    verifier: FirebaseIdentityVerifier = Depends(get_identity_verifier)
):
    """Add an email/password sign-in method to an account created through OAuth."""
    ensure_same_user(current_user, uid, "update")
    _check_password(payload.password)
    user = _require_user(db, uid)

    email = user.email or current_user.email
    if not email:
        raise HTTPException(status_code=400, detail="Account has no email address to link")

    try:
        if PASSWORD_PROVIDER in verifier.provider_ids(uid):
            raise HTTPException(
                status_code=400,
                detail="Email/password authentication is already linked to this account"
            )
        verifier.update_user(uid, email=email, password=payload.password, email_verified=True)
        stores.update_user(db, uid, password=get_password_hash(payload.password))
    except HTTPException:
        raise
    except EmailAlreadyInUseError:
        raise HTTPException(status_code=400, detail="Email is already in use by another account")
    except IdentityProviderError as e:
        raise HTTPException(status_code=500, detail=f"Failed to link email/password: {str(e)}")
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to link email/password: {str(e)}")

    logger.info("Email/password linked", extra={"uid": uid})
    return {"error": False, "message": "Email/password authentication linked successfully"}


@router.post("/{uid}/reset-password")
def reset_password(
    uid: str,
    payload: ResetPasswordRequest,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db),
    verifier: FirebaseIdentityVerifier = Depends(get_identity_verifier)
):
    ensure_same_user(current_user, uid, "update")
    _check_password(payload.new_password)
    _require_user(db, uid)

    try:
        if PASSWORD_PROVIDER not in verifier.provider_ids(uid):
            raise HTTPException(
                status_code=400,
                detail="Password authentication is not linked to this account"
            )
        verifier.update_user(uid, password=payload.new_password)
        stores.update_user(db, uid, password=get_password_hash(payload.new_password))
    except HTTPException:
        raise
    except IdentityProviderError as e:
        raise HTTPException(status_code=500, detail=f"Failed to reset password: {str(e)}")
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to reset password: {str(e)}")

    return {"error": False, "message": "Password reset successfully"}


# =============================================================================
# ACCOUNT DELETION
# =============================================================================

@router.delete("/{uid}")
def delete_user_profile(
    uid: str,
    current_user: IdentityClaims = Depends(get_current_user),
    db: Session = Depends(get_db),
    verifier: FirebaseIdentityVerifier = Depends(get_identity_verifier)
):
    """
    Delete the local profile, its photo file and the identity provider account.

    The provider call comes last; if it fails the local data is already gone
    and the 500 response carries partial=true.
    """
    ensure_same_user(current_user, uid, "delete")
    user = _require_user(db, uid)

    if is_local_photo(user.photo_url):
        try:
            delete_image(user.photo_url)
        except (OSError, ValueError) as e:
            logger.warning("Could not delete profile photo", extra={"uid": uid, "error_message": str(e)})

    try:
        stores.delete_user(db, user)
    except Exception as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to delete user: {str(e)}")

    try:
        verifier.delete_user(uid)
    except IdentityProviderError as e:
        logger.error("User deleted locally but not at identity provider", extra={"uid": uid, "error_message": str(e)})
        raise HTTPException(
            status_code=500,
            detail={
                "message": "User deleted from database but not from identity provider",
                "partial": True,
                "details": str(e),
            }
        )

    logger.info("User deleted", extra={"uid": uid})
    return {"error": False, "message": "User deleted successfully"}
