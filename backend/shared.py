"""
Shared module containing constants and file storage helpers.
Routers and pipelines import from this module for labels, fixed chat texts
and the image directory layout.

Images live in a flat tree under IMAGES_DIR:

    scans/scan-<scan_id><ext>          original eye photos
    conjunctivas/conj-<scan_id><ext>   cropped conjunctiva photos
    profiles/photo-<uid><ext>          profile photos

and are served back under the same URL prefixes (/scans, /conjunctivas,
/profiles).
"""

from pathlib import Path
from typing import Optional

from config import IMAGES_DIR
from database import DEFAULT_PROFILE_PHOTO

# =============================================================================
# LABEL MAPPINGS
# =============================================================================

ANEMIC_LABEL = "Anemic"
NON_ANEMIC_LABEL = "Non-Anemic"
CLASS_LABELS = (ANEMIC_LABEL, NON_ANEMIC_LABEL)

RESULT_SOURCE_MODEL = "model"
RESULT_SOURCE_FALLBACK = "fallback"

# =============================================================================
# CHAT TEXTS
# =============================================================================

SYSTEM_INSTRUCTION = (
    "You are an assistant anemia analyze. you provide advice on how to cure "
    "or prevent anemia based on the image and report given to you"
)

DEFAULT_SESSION_TITLE = "Anemia Analysis Chat"
SCAN_IMAGE_MESSAGE = "Eye scan image for analysis"
WELCOME_MESSAGE = "Silahkan bertanya!"
APOLOGY_MESSAGE = (
    "Maaf, saya tidak dapat menjawab pertanyaan tersebut saat ini. "
    "Silakan coba dengan pertanyaan lain."
)

SENDER_USER = "user"
SENDER_AI = "ai"
MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_IMAGE = "image"

# =============================================================================
# FILE STORAGE
# =============================================================================

SCANS_PREFIX = "scans"
CONJUNCTIVAS_PREFIX = "conjunctivas"
PROFILES_PREFIX = "profiles"

DEFAULT_IMAGE_EXTENSION = ".jpg"

IMAGE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".heic": "image/heic",
}
DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"


def image_extension(filename: Optional[str]) -> str:
    """Extension of an uploaded filename, defaulting to .jpg."""
    suffix = Path(filename or "").suffix
    return suffix.lower() if suffix else DEFAULT_IMAGE_EXTENSION


def image_mime_type(name: Optional[str]) -> str:
    """MIME type for an image filename or URL, by extension."""
    return IMAGE_MIME_TYPES.get(image_extension(name), DEFAULT_IMAGE_MIME_TYPE)


def scan_photo_url(scan_id: str, extension: str) -> str:
    return f"/{SCANS_PREFIX}/scan-{scan_id}{extension}"


def conjunctiva_photo_url(scan_id: str, extension: str) -> str:
    return f"/{CONJUNCTIVAS_PREFIX}/conj-{scan_id}{extension}"


def conjunctiva_url_for(photo_url: str) -> str:
    """Derive the cropped photo URL from a scan photo URL."""
    name = Path(photo_url).name
    if name.startswith("scan-"):
        name = "conj-" + name[len("scan-"):]
    return f"/{CONJUNCTIVAS_PREFIX}/{name}"


def profile_photo_url(uid: str, extension: str) -> str:
    return f"/{PROFILES_PREFIX}/photo-{uid}{extension}"


def resolve_image_path(url: str) -> Path:
    """
    Map a stored image URL to its file under IMAGES_DIR.

    Only the last path component is used as the file name, so a URL can
    never point outside its prefix directory.
    """
    parts = url.strip("/").split("/")
    if len(parts) < 2:
        raise ValueError(f"Not an image URL: {url}")
    return Path(IMAGES_DIR) / parts[0] / Path(parts[-1]).name


def save_image(url: str, data: bytes) -> Path:
    """Write image bytes for a URL, creating the directory when missing."""
    path = resolve_image_path(url)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return path


def read_image(url: str) -> Optional[bytes]:
    """Read image bytes for a URL, or None when the file is unreadable."""
    try:
        return resolve_image_path(url).read_bytes()
    except (OSError, ValueError):
        return None


def is_local_photo(url: Optional[str]) -> bool:
    """True for photos stored on disk by this service."""
    if not url or url == DEFAULT_PROFILE_PHOTO:
        return False
    return not url.startswith(("http://", "https://"))


def delete_image(url: str) -> bool:
    """Remove the file behind a URL. Returns False when nothing was removed."""
    try:
        resolve_image_path(url).unlink()
        return True
    except FileNotFoundError:
        return False
