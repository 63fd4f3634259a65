import pytest
import requests

from music_catalog import uploads
from music_catalog.errors import (
    AssetDeletionUnsupported,
    HostRejected,
    HostUnreachable,
    InvalidCloudIdentifier,
    InvalidUploadPreset,
    MissingConfiguration,
)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None, reason="OK"):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ("" if payload is None else str(payload))
        self.reason = reason

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


@pytest.fixture
def cloud(monkeypatch):
    monkeypatch.setenv("CLOUDINARY_CLOUD_NAME", "demo-cloud")


def _capture_post(monkeypatch, response):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(uploads.requests, "post", fake_post)
    return calls


def test_missing_cloud_name_fails_before_network(monkeypatch):
    calls = _capture_post(monkeypatch, FakeResponse())
    with pytest.raises(MissingConfiguration):
        uploads.upload(b"bytes", "image", "genres")
    assert calls == []


def test_image_upload(monkeypatch, cloud):
    calls = _capture_post(
        monkeypatch,
        FakeResponse(payload={
            "public_id": "genres/jazz",
            "secure_url": "https://res.cloudinary.com/demo-cloud/image/upload/genres/jazz.png",
            "resource_type": "image",
            "format": "png",
        }),
    )

    result = uploads.upload(b"png-bytes", "image", "genres", filename="jazz.png", content_type="image/png")

    assert result.public_id == "genres/jazz"
    assert result.secure_url.startswith("https://")
    url, kwargs = calls[0]
    assert url == "https://api.cloudinary.com/v1_1/demo-cloud/image/upload"
    assert kwargs["data"] == {"upload_preset": "spoty_uploads", "folder": "genres"}
    assert kwargs["files"]["file"][0] == "jazz.png"
    assert len(calls) == 1


def test_audio_goes_to_video_endpoint(monkeypatch, cloud):
    monkeypatch.setenv("CLOUDINARY_UPLOAD_PRESET", "custom")
    calls = _capture_post(
        monkeypatch,
        FakeResponse(payload={"public_id": "songs/so-what", "secure_url": "https://x/so-what.mp3"}),
    )

    result = uploads.upload(b"mp3", uploads.MediaKind.AUDIO, "songs")

    url, kwargs = calls[0]
    assert url == "https://api.cloudinary.com/v1_1/demo-cloud/video/upload"
    assert kwargs["data"] == {"upload_preset": "custom", "folder": "songs", "resource_type": "video"}
    assert result.format is None


@pytest.mark.parametrize(
    "message, expected",
    [
        ("Invalid upload preset", InvalidUploadPreset),
        ("Upload preset not found", InvalidUploadPreset),
        ("Invalid cloud_name demo-cloud", InvalidCloudIdentifier),
        ("File size too large", HostRejected),
    ],
)
def test_structured_host_errors(monkeypatch, cloud, message, expected):
    _capture_post(
        monkeypatch,
        FakeResponse(status_code=400, payload={"error": {"message": message}}, reason="Bad Request"),
    )
    with pytest.raises(expected):
        uploads.upload(b"x", "image", "genres")


def test_host_rejected_keeps_message(monkeypatch, cloud):
    _capture_post(monkeypatch, FakeResponse(status_code=400, payload={"error": {"message": "Unsupported format"}}))
    with pytest.raises(HostRejected) as info:
        uploads.upload(b"x", "image", "genres")
    assert info.value.message == "Unsupported format"


def test_unparseable_error_body(monkeypatch, cloud):
    _capture_post(monkeypatch, FakeResponse(status_code=502, text="<html>bad gateway</html>", reason="Bad Gateway"))
    with pytest.raises(HostUnreachable) as info:
        uploads.upload(b"x", "image", "genres")
    assert (info.value.status, info.value.status_text) == (502, "Bad Gateway")


def test_transport_failure_is_unreachable(monkeypatch, cloud):
    calls = _capture_post(monkeypatch, requests.ConnectionError("connection refused"))
    with pytest.raises(HostUnreachable) as info:
        uploads.upload(b"x", "audio", "songs")
    assert info.value.status == 0
    assert len(calls) == 1


def test_error_in_success_body(monkeypatch, cloud):
    _capture_post(monkeypatch, FakeResponse(payload={"error": {"message": "Upload failed"}}))
    with pytest.raises(HostRejected):
        uploads.upload(b"x", "image", "genres")


def test_delete_without_secret_is_explicitly_unsupported(monkeypatch, cloud):
    calls = _capture_post(monkeypatch, FakeResponse(payload={"result": "ok"}))
    with pytest.raises(AssetDeletionUnsupported):
        uploads.delete_file("genres/jazz")
    assert calls == []


def test_signed_delete(monkeypatch, cloud):
    monkeypatch.setenv("CLOUDINARY_API_KEY", "key")
    monkeypatch.setenv("CLOUDINARY_API_SECRET", "shh")
    monkeypatch.setattr(uploads.time, "time", lambda: 1700000000)
    calls = _capture_post(monkeypatch, FakeResponse(payload={"result": "ok"}))

    assert uploads.delete_file("songs/so-what", "audio") == "ok"

    url, kwargs = calls[0]
    assert url == "https://api.cloudinary.com/v1_1/demo-cloud/video/destroy"
    assert kwargs["data"]["api_key"] == "key"
    assert kwargs["data"]["timestamp"] == 1700000000
    expected = uploads._sign({"public_id": "songs/so-what", "timestamp": 1700000000}, "shh")
    assert kwargs["data"]["signature"] == expected
    assert len(expected) == 40


def test_delivery_urls(cloud):
    assert (
        uploads.optimized_image_url("genres/jazz", width=300, height=200)
        == "https://res.cloudinary.com/demo-cloud/image/upload/f_auto,q_auto,w_300,h_200/genres/jazz"
    )
    assert uploads.audio_url("songs/x") == "https://res.cloudinary.com/demo-cloud/video/upload/songs/x"


def test_success_without_asset_fields_is_unreachable(monkeypatch, cloud):
    _capture_post(monkeypatch, FakeResponse(payload={"secure_url": "https://x/y.png"}))
    with pytest.raises(HostUnreachable) as info:
        uploads.upload(b"x", "image", "genres")
    assert (info.value.status, info.value.status_text) == (200, "Malformed response")
