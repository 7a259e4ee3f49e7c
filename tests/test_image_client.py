"""
Tests for the Seedream REST client helpers (no network).
"""

import base64

import pytest

from storyboard_api.core.errors import ImageProviderError
from storyboard_api.services import image_client as image_client_module
from storyboard_api.services.image_client import FalAPIError, FalImageClient, FalQuotaError


class TestFalImageClient:
    """Tests for FalImageClient payload and response helpers"""

    @pytest.fixture
    def client(self):
        return FalImageClient(api_key="test-key", ratio="16:9")

    def test_missing_key_is_rejected(self, monkeypatch):
        monkeypatch.setattr(image_client_module.settings, "FAL_KEY", None)

        with pytest.raises(ValueError):
            FalImageClient()

    def test_negative_prompt_is_merged(self, client):
        assert client._merge_prompt("a robot", "blurry, text") == "a robot, without: blurry, text"
        assert client._merge_prompt("a robot", "") == "a robot"

    def test_text_to_image_payload(self, client):
        payload = client._payload("a robot", [])

        assert payload["prompt"] == "a robot"
        assert payload["image_size"] == {"width": 1280, "height": 720}
        assert payload["sync_mode"] is True
        assert "image_urls" not in payload
        assert "seed" not in payload

    def test_reference_images_use_edit_payload(self, client):
        payload = client._payload("a robot", ["https://cdn.example.com/ref.png"])

        assert payload["image_urls"] == ["https://cdn.example.com/ref.png"]
        assert payload["num_images"] == 1

    def test_unknown_ratio_defaults_to_square(self, client):
        assert client.get_size_for_ratio("5:7") == (1024, 1024)

    def test_data_uri_is_decoded(self, client):
        encoded = base64.b64encode(b"fake-bytes").decode()

        data, content_type = client._decode_data_uri(f"data:image/jpeg;base64,{encoded}")

        assert data == b"fake-bytes"
        assert content_type == "image/jpeg"

    def test_sanitize_removes_strong_tokens(self, client):
        cleaned = client._soft_sanitize_prompt("ABSOLUTE REQUIREMENT: keep face, without: face swap, blurry")

        assert "ABSOLUTE REQUIREMENT" not in cleaned
        assert "face swap" not in cleaned

    def test_error_types(self):
        quota = FalQuotaError("quota", status=429)

        assert isinstance(quota, ImageProviderError)
        assert quota.rate_limited is True
        assert FalAPIError("bad request", status=400).rate_limited is False
