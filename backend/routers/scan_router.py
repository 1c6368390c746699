"""
Scan Router

Endpoints for:
- Eye photo upload with conjunctiva cropping and anemia classification
- Scan listing and lookup
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, File, UploadFile, status
from sqlalchemy.orm import Session

import scan_pipeline
import stores
from database import get_db
from inference_gateway import InferenceGateway, get_inference_gateway
from models import ScanResponse
from shared import conjunctiva_url_for
from structured_logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/scans", tags=["Scans"])


def serialize_scan(scan) -> dict:
    return ScanResponse(
        scan_id=scan.scan_id,
        photo_url=scan.photo_url,
        conjunctiva_url=conjunctiva_url_for(scan.photo_url),
        scan_result=scan.scan_result,
        confidence=scan.confidence,
        result_source=scan.result_source or "model",
        scan_date=scan.scan_date,
    ).model_dump(by_alias=True, mode="json")


# =============================================================================
# UPLOAD ENDPOINT
# =============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def upload_scan(
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    gateway: InferenceGateway = Depends(get_inference_gateway)
):
    """
    Upload an eye photo and classify it.

    Always stores a verdict: when the inference services are down the
    result is synthesized and reported with resultSource="fallback".
    """
    contents = await image.read() if image is not None else None
    filename = image.filename if image is not None else None

    try:
        outcome = await scan_pipeline.ingest_scan(db, gateway, contents, filename)
    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(
            "Scan upload failed",
            extra={"error_type": type(e).__name__, "error_message": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="An error occurred while uploading the image")

    return {
        "error": False,
        "message": "Image uploaded successfully",
        "data": serialize_scan(outcome.scan)
    }


# =============================================================================
# READ ENDPOINTS
# =============================================================================

@router.get("")
def get_all_scans(db: Session = Depends(get_db)):
    """All scans, newest first."""
    scans = stores.list_scans(db)
    return {
        "error": False,
        "message": "Scans retrieved successfully",
        "data": [serialize_scan(scan) for scan in scans]
    }


@router.get("/{scan_id}")
def get_scan(scan_id: str, db: Session = Depends(get_db)):
    scan = stores.get_scan(db, scan_id)
    if not scan:
        raise HTTPException(status_code=404, detail="Scan not found")
    return {
        "error": False,
        "message": "Scan retrieved successfully",
        "data": serialize_scan(scan)
    }

