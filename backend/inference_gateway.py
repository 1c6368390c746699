"""
Inference Gateway Client

HTTP client for the two external computer-vision services used by scan
ingestion:

- crop:     POST CROP_SERVICE_URL, multipart field "file" -> cropped image bytes
- classify: POST CLASSIFY_SERVICE_URL, multipart field "file" ->
            {"detection": "Anemic" | "Non-Anemic",
             "confidence": {"Anemic": p, "Non-Anemic": 1 - p}}

Both services run as a separate local deployment and are expected to be
unreliable, so every method returns None instead of raising on transport
errors, timeouts, non-2xx statuses or malformed bodies. Callers decide how
to degrade.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx

from config import CROP_SERVICE_URL, CLASSIFY_SERVICE_URL, INFERENCE_TIMEOUT_SECONDS
from shared import (
    ANEMIC_LABEL,
    NON_ANEMIC_LABEL,
    CLASS_LABELS,
    RESULT_SOURCE_MODEL,
    RESULT_SOURCE_FALLBACK,
    image_mime_type,
)
from structured_logging import get_logger

logger = get_logger(__name__)


@dataclass
class ClassificationResult:
    """Outcome of the classify stage, genuine or synthesized."""
    detection: str
    confidence: Dict[str, float] = field(default_factory=dict)
    source: str = RESULT_SOURCE_MODEL

    @property
    def is_anemic(self) -> bool:
        return self.detection == ANEMIC_LABEL

    @property
    def anemic_probability(self) -> float:
        return float(self.confidence.get(ANEMIC_LABEL, 0.0))

    @property
    def is_fallback(self) -> bool:
        return self.source == RESULT_SOURCE_FALLBACK


def parse_classification(body) -> Optional[ClassificationResult]:
    """Validate a classify response body. Returns None when malformed."""
    if not isinstance(body, dict):
        return None
    detection = body.get("detection")
    confidence = body.get("confidence")
    if detection not in CLASS_LABELS or not isinstance(confidence, dict):
        return None

    scores = {}
    for label in CLASS_LABELS:
        value = confidence.get(label)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        if not 0.0 <= value <= 1.0:
            return None
        scores[label] = float(value)

    return ClassificationResult(detection=detection, confidence=scores, source=RESULT_SOURCE_MODEL)


def synthesize_fallback(rng: Optional[random.Random] = None) -> ClassificationResult:
    """
    Locally generated stand-in for a classify response.

    Random positive-class probability with the negative probability as its
    complement. The verdict is the more probable label, as in a real
    classify response. Tagged source="fallback".
    """
    rng = rng or random
    p_anemic = round(rng.random(), 4)
    detection = ANEMIC_LABEL if p_anemic >= 0.5 else NON_ANEMIC_LABEL
    return ClassificationResult(
        detection=detection,
        confidence={ANEMIC_LABEL: p_anemic, NON_ANEMIC_LABEL: round(1.0 - p_anemic, 4)},
        source=RESULT_SOURCE_FALLBACK,
    )


class InferenceGateway:
    """Client for the crop and classify services."""

    def __init__(
        self,
        crop_url: Optional[str] = None,
        classify_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.crop_url = crop_url or CROP_SERVICE_URL
        self.classify_url = classify_url or CLASSIFY_SERVICE_URL
        self.timeout = timeout if timeout is not None else INFERENCE_TIMEOUT_SECONDS
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the HTTP client"""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post_image(self, url: str, image: bytes, filename: str) -> Optional[httpx.Response]:
        client = await self._get_client()
        try:
            response = await client.post(url, files={"file": (filename, image, image_mime_type(filename))})
            response.raise_for_status()
            return response
        except httpx.TimeoutException:
            logger.warning("Inference service timed out", extra={"url": url, "timeout_s": self.timeout})
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Inference service returned an error status",
                extra={"url": url, "status_code": e.response.status_code},
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Inference service unreachable",
                extra={"url": url, "error_type": type(e).__name__, "error_message": str(e)},
            )
        return None

    async def crop_conjunctiva(self, image: bytes, filename: str = "image.jpg") -> Optional[bytes]:
        """Cropped conjunctiva bytes, or None when the service fails."""
        response = await self._post_image(self.crop_url, image, filename)
        if response is None:
            return None
        if not response.content:
            logger.warning("Crop service returned an empty body", extra={"url": self.crop_url})
            return None
        return response.content

    async def classify(self, image: bytes, filename: str = "image.jpg") -> Optional[ClassificationResult]:
        """Parsed classification, or None when the service fails or replies malformed."""
        response = await self._post_image(self.classify_url, image, filename)
        if response is None:
            return None
        try:
            body = response.json()
        except ValueError:
            logger.warning("Classify service returned non-JSON body", extra={"url": self.classify_url})
            return None

        result = parse_classification(body)
        if result is None:
            logger.warning("Classify service returned malformed body", extra={"url": self.classify_url})
        return result


# Singleton instance
_inference_gateway: Optional[InferenceGateway] = None


def get_inference_gateway() -> InferenceGateway:
    """Get or create the inference gateway instance"""
    global _inference_gateway
    if _inference_gateway is None:
        _inference_gateway = InferenceGateway()
    return _inference_gateway


async def cleanup_inference_gateway():
    """Close the shared gateway client"""
    global _inference_gateway
    if _inference_gateway:
        await _inference_gateway.close()
        _inference_gateway = None
