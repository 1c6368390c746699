"""
Unit tests for the crop/classify HTTP client.

Requests are served by httpx.MockTransport so no network is needed.
"""

import asyncio
import random
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

import httpx

from inference_gateway import (
    InferenceGateway,
    ClassificationResult,
    parse_classification,
    synthesize_fallback,
)

CROP_URL = "http://inference.test/crop"
CLASSIFY_URL = "http://inference.test/predict"


def _run(handler, call):
    """Run one gateway call against a mock transport and close the client."""
    async def _go():
        gateway = InferenceGateway(
            crop_url=CROP_URL,
            classify_url=CLASSIFY_URL,
            timeout=1.0,
            transport=httpx.MockTransport(handler),
        )
        try:
            return await call(gateway)
        finally:
            await gateway.close()
    return asyncio.run(_go())


def _classify(gateway):
    return gateway.classify(b"image-bytes", "conj-a1b2c3d4.jpg")


def _crop(gateway):
    return gateway.crop_conjunctiva(b"image-bytes", "scan-a1b2c3d4.jpg")


class TestParseClassification:
    """Tests for classify body validation."""

    def test_valid_body(self):
        """Test a well-formed classify body."""
        result = parse_classification({
            "detection": "Anemic",
            "confidence": {"Anemic": 0.82, "Non-Anemic": 0.18},
        })

        assert result.is_anemic is True
        assert result.anemic_probability == 0.82
        assert result.is_fallback is False

    def test_unknown_label_rejected(self):
        assert parse_classification({"detection": "Maybe", "confidence": {"Anemic": 0.5, "Non-Anemic": 0.5}}) is None

    def test_missing_probability_rejected(self):
        assert parse_classification({"detection": "Anemic", "confidence": {"Anemic": 0.9}}) is None

    def test_out_of_range_probability_rejected(self):
        assert parse_classification({"detection": "Anemic", "confidence": {"Anemic": 1.2, "Non-Anemic": -0.2}}) is None

    def test_non_dict_rejected(self):
        assert parse_classification(["Anemic"]) is None


class TestSynthesizeFallback:
    """Tests for the locally generated classification."""

    def test_fallback_shape(self):
        """Test that probabilities are complementary and tagged as fallback."""
        for seed in range(20):
            result = synthesize_fallback(random.Random(seed))

            assert isinstance(result, ClassificationResult)
            assert result.detection in ("Anemic", "Non-Anemic")
            assert 0.0 <= result.anemic_probability <= 1.0
            assert abs(result.confidence["Anemic"] + result.confidence["Non-Anemic"] - 1.0) < 1e-3
            assert result.source == "fallback"
            assert result.is_fallback is True

    def test_fallback_verdict_matches_probability(self):
        """Test that the synthesized verdict is the more probable label."""
        for seed in range(200):
            result = synthesize_fallback(random.Random(seed))

            assert result.is_anemic == (result.anemic_probability >= 0.5)


class TestInferenceGateway:
    """Tests for InferenceGateway over a mock transport."""

    def test_classify_success(self):
        """Test that a 200 JSON reply is parsed."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = request.content
            return httpx.Response(200, json={
                "detection": "Non-Anemic",
                "confidence": {"Anemic": 0.3, "Non-Anemic": 0.7},
            })

        result = _run(handler, _classify)

        assert result.detection == "Non-Anemic"
        assert result.anemic_probability == 0.3
        assert seen["url"] == CLASSIFY_URL
        assert b'name="file"' in seen["body"]
        assert b"image-bytes" in seen["body"]

    def test_upload_content_type_follows_filename(self):
        """Test that the multipart part is typed by the image's extension."""
        bodies = []

        def handler(request):
            bodies.append(request.content)
            return httpx.Response(200, content=b"cropped")

        _run(handler, lambda gateway: gateway.crop_conjunctiva(b"image-bytes", "scan-a1b2c3d4.png"))
        _run(handler, _crop)

        assert b"Content-Type: image/png" in bodies[0]
        assert b"Content-Type: image/jpeg" in bodies[1]

    def test_classify_server_error_returns_none(self):
        """Test that a non-2xx status degrades to None."""
        assert _run(lambda request: httpx.Response(500, text="boom"), _classify) is None

    def test_classify_timeout_returns_none(self):
        """Test that a timeout degrades to None."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        assert _run(handler, _classify) is None

    def test_classify_connection_error_returns_none(self):
        """Test that an unreachable service degrades to None."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        assert _run(handler, _classify) is None

    def test_classify_non_json_returns_none(self):
        """Test that a non-JSON body degrades to None."""
        assert _run(lambda request: httpx.Response(200, text="not json"), _classify) is None

    def test_classify_malformed_json_returns_none(self):
        """Test that JSON with the wrong shape degrades to None."""
        assert _run(lambda request: httpx.Response(200, json={"label": "Anemic"}), _classify) is None

    def test_crop_success_returns_bytes(self):
        """Test that the crop service's body is returned as is."""
        def handler(request):
            assert str(request.url) == CROP_URL
            return httpx.Response(200, content=b"cropped")

        assert _run(handler, _crop) == b"cropped"

    def test_crop_empty_body_returns_none(self):
        """Test that an empty crop reply counts as a failure."""
        assert _run(lambda request: httpx.Response(200, content=b""), _crop) is None

    def test_crop_error_returns_none(self):
        assert _run(lambda request: httpx.Response(503), _crop) is None
