"""
Integration tests for scan endpoints.

Tests the complete scan flow including:
- Upload with crop and classification
- Degraded uploads when inference services fail
- Listing and lookup (verdicts are read-only over HTTP)
"""

import sys
import os

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def _upload(client, image_bytes, filename="eye.jpg"):
    return client.post("/api/scans", files={"image": (filename, image_bytes, "image/jpeg")})


class TestScanUpload:
    """Tests for POST /api/scans."""

    def test_upload_success(self, client, sample_image_bytes, images_dir):
        """Test that an upload is classified and stored."""
        response = _upload(client, sample_image_bytes)

        assert response.status_code == 201
        body = response.json()
        assert body["error"] is False
        data = body["data"]
        assert len(data["scanId"]) == 8
        assert data["scanResult"] is True
        assert data["confidence"] == 0.82
        assert data["resultSource"] == "model"
        assert data["photoUrl"] == f"/scans/scan-{data['scanId']}.jpg"
        assert data["conjunctivaUrl"] == f"/conjunctivas/conj-{data['scanId']}.jpg"
        assert (images_dir / "scans" / f"scan-{data['scanId']}.jpg").exists()

    def test_upload_with_classifier_down(self, client, inference_gateway, sample_image_bytes):
        """Test that a failed classification still returns a stored scan."""
        inference_gateway.classification = None

        response = _upload(client, sample_image_bytes)

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["resultSource"] == "fallback"
        assert 0.0 <= data["confidence"] <= 1.0
        assert client.get(f"/api/scans/{data['scanId']}").status_code == 200

    def test_upload_with_cropper_down(self, client, inference_gateway, sample_image_bytes):
        """Test that a failed crop classifies the original image."""
        inference_gateway.cropped = None

        response = _upload(client, sample_image_bytes)

        assert response.status_code == 201
        assert inference_gateway.classify_calls[0][0] == sample_image_bytes

    def test_upload_without_image(self, client):
        """Test that a request with no file is rejected."""
        response = client.post("/api/scans")

        assert response.status_code == 400
        assert response.json()["detail"] == "No image uploaded"

    def test_upload_too_large(self, client, monkeypatch):
        """Test that oversized uploads are rejected with 413."""
        import scan_pipeline
        monkeypatch.setattr(scan_pipeline, "MAX_UPLOAD_SIZE", 16)

        response = _upload(client, b"x" * 17)

        assert response.status_code == 413

    def test_upload_internal_error(self, client, sample_image_bytes, monkeypatch):
        """Test that unexpected failures return the generic upload error."""
        import scan_pipeline

        def _boom(db, generate=None):
            raise RuntimeError("disk on fire")
        monkeypatch.setattr(scan_pipeline, "allocate_scan_id", _boom)

        response = _upload(client, sample_image_bytes)

        assert response.status_code == 500
        assert response.json()["detail"] == "An error occurred while uploading the image"


class TestScanRead:
    """Tests for scan listing and lookup."""

    def test_list_scans_newest_first(self, client, sample_scan, user_named_scan):
        response = client.get("/api/scans")

        assert response.status_code == 200
        ids = [scan["scanId"] for scan in response.json()["data"]]
        assert ids == [user_named_scan.scan_id, sample_scan.scan_id]

    def test_get_scan(self, client, sample_scan):
        response = client.get(f"/api/scans/{sample_scan.scan_id}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["scanId"] == sample_scan.scan_id
        assert data["scanDate"].startswith("2024-06-01")

    def test_get_scan_not_found(self, client):
        response = client.get("/api/scans/deadbeef")

        assert response.status_code == 404
        assert response.json()["detail"] == "Scan not found"

    def test_scans_cannot_be_modified_over_http(self, client, sample_scan):
        """Test that stored verdicts are read-only through the API."""
        response = client.patch(f"/api/scans/{sample_scan.scan_id}", json={"scanResult": False})

        assert response.status_code == 405
        data = client.get(f"/api/scans/{sample_scan.scan_id}").json()["data"]
        assert data["scanResult"] is True
        assert data["resultSource"] == "model"
