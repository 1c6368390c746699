"""
Scan ingestion pipeline.

Turns one uploaded eye photo into a stored Scan:

1. validate the upload
2. allocate an 8-character scan id
3. save the original photo
4. crop the conjunctiva (original photo reused when the crop service fails)
5. save the cropped photo
6. classify (synthesized fallback result when the classify service fails)
7. stamp scan_date and insert the Scan row

Availability wins over fidelity: downstream inference failures never fail
the request. A fallback verdict is stored with result_source="fallback" and
logged with event="classification_fallback".

Each step persists on its own. A crash between steps can leave photo files
without a Scan row; nothing cleans those up.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

import stores
from config import MAX_UPLOAD_SIZE
from database import Scan
from inference_gateway import InferenceGateway, ClassificationResult, synthesize_fallback
from shared import (
    image_extension,
    scan_photo_url,
    conjunctiva_photo_url,
    save_image,
)
from structured_logging import get_logger, log_inference_call

logger = get_logger(__name__)

MAX_SCAN_ID_ATTEMPTS = 5


def generate_scan_id() -> str:
    """Random UUID, hyphens stripped, first 8 hex characters."""
    return uuid.uuid4().hex[:8]


def allocate_scan_id(db: Session, generate: Optional[Callable[[], str]] = None) -> str:
    """Draw scan ids until one is not already stored."""
    generate = generate or generate_scan_id
    for attempt in range(1, MAX_SCAN_ID_ATTEMPTS + 1):
        candidate = generate()
        if not stores.scan_id_exists(db, candidate):
            return candidate
        logger.warning("Scan id collision, regenerating", extra={"scan_id": candidate, "attempt": attempt})
    raise RuntimeError(f"Could not allocate a unique scan id after {MAX_SCAN_ID_ATTEMPTS} attempts")


@dataclass
class ScanOutcome:
    scan: Scan
    conjunctiva_url: str
    cropped: bool
    classification: ClassificationResult

    @property
    def result_source(self) -> str:
        return self.classification.source


def validate_upload(image: Optional[bytes], max_size: Optional[int] = None):
    max_size = max_size or MAX_UPLOAD_SIZE
    if not image:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No image uploaded")
    if len(image) > max_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Image exceeds the {max_size // (1024 * 1024)}MB upload limit"
        )


async def _crop(gateway: InferenceGateway, image: bytes, filename: str, scan_id: str):
    start = time.time()
    cropped = await gateway.crop_conjunctiva(image, filename)
    duration_ms = (time.time() - start) * 1000
    if cropped is None:
        log_inference_call(
            service="crop",
            duration_ms=duration_ms,
            success=False,
            fallback=True,
            error="crop service unavailable, using original image",
            scan_id=scan_id,
        )
        return image, False
    log_inference_call(service="crop", duration_ms=duration_ms, success=True, scan_id=scan_id)
    return cropped, True


async def _classify(gateway: InferenceGateway, image: bytes, filename: str, scan_id: str) -> ClassificationResult:
    start = time.time()
    result = await gateway.classify(image, filename)
    duration_ms = (time.time() - start) * 1000
    if result is None:
        result = synthesize_fallback()
        log_inference_call(
            service="classification",
            duration_ms=duration_ms,
            success=False,
            fallback=True,
            confidence=result.anemic_probability,
            predicted_class=result.detection,
            error="classify service unavailable or malformed response",
            scan_id=scan_id,
        )
        return result
    log_inference_call(
        service="classification",
        duration_ms=duration_ms,
        success=True,
        confidence=result.anemic_probability,
        predicted_class=result.detection,
        scan_id=scan_id,
    )
    return result


async def ingest_scan(
    db: Session,
    gateway: InferenceGateway,
    image: Optional[bytes],
    filename: Optional[str],
) -> ScanOutcome:
    """Run the full ingestion sequence for one upload."""
    validate_upload(image)

    scan_id = allocate_scan_id(db)
    extension = image_extension(filename)
    upload_name = f"scan-{scan_id}{extension}"

    photo_url = scan_photo_url(scan_id, extension)
    save_image(photo_url, image)

    cropped_image, cropped = await _crop(gateway, image, upload_name, scan_id)

    conjunctiva_url = conjunctiva_photo_url(scan_id, extension)
    save_image(conjunctiva_url, cropped_image)

    classification = await _classify(gateway, cropped_image, f"conj-{scan_id}{extension}", scan_id)

    scan = stores.create_scan(
        db,
        scan_id=scan_id,
        photo_url=photo_url,
        scan_result=classification.is_anemic,
        confidence=classification.anemic_probability,
        result_source=classification.source,
        scan_date=datetime.utcnow(),
    )

    logger.info(
        "Scan stored",
        extra={
            "scan_id": scan_id,
            "scan_result": scan.scan_result,
            "confidence": scan.confidence,
            "result_source": scan.result_source,
            "cropped": cropped,
        }
    )
    return ScanOutcome(scan=scan, conjunctiva_url=conjunctiva_url, cropped=cropped, classification=classification)
