"""
Pytest configuration and fixtures for Viewfinder Service tests.

Provides Picamera2 mocks, capture control ports, and image builders.
"""

import io

import pytest
from unittest.mock import MagicMock, Mock
from fastapi.testclient import TestClient
from PIL import Image


@pytest.fixture
def mock_picamera2():
    """
    Mock Picamera2 instance for testing.

    Simulates the control surface used by Picamera2ControlPort without
    requiring camera hardware.
    """
    mock = MagicMock()
    mock.global_camera_info.return_value = [
        {"Model": "imx708", "Location": 2, "Rotation": 0}
    ]
    mock.set_controls = Mock()
    mock.configure = Mock()
    mock.start = Mock()
    mock.close = Mock()
    return mock


@pytest.fixture
def picamera_port(mock_picamera2):
    """Picamera2ControlPort wrapping the mocked camera."""
    from viewfinder_service.picamera_port import Picamera2ControlPort

    return Picamera2ControlPort(mock_picamera2)


@pytest.fixture
def recording_port():
    """Capture control port that records every applied request."""
    from viewfinder_service.capture import RecordingControlPort

    return RecordingControlPort()


@pytest.fixture
def controller(recording_port):
    """ParameterController wired to the recording port, in photo mode."""
    from viewfinder_service.parameter_controller import ParameterController

    return ParameterController(recording_port)


@pytest.fixture
def pipeline():
    """OverlayPipeline with a generous pixel limit."""
    from viewfinder_service.overlay_pipeline import OverlayPipeline

    return OverlayPipeline(max_image_pixels=10_000_000)


def encode_image(img, fmt="PNG", orientation=None):
    """Encode a PIL image, optionally tagging it with an EXIF orientation."""
    buffer = io.BytesIO()
    if orientation is not None:
        exif = Image.Exif()
        exif[274] = orientation
        img.save(buffer, format=fmt, exif=exif.tobytes())
    else:
        img.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def image_bytes():
    """Factory returning encoded bytes of a solid-colour image."""
    def _make(width, height, color=(0, 0, 0, 255), fmt="PNG", orientation=None):
        mode = "RGB" if fmt == "JPEG" else "RGBA"
        fill = color[:3] if mode == "RGB" else color
        return encode_image(Image.new(mode, (width, height), fill), fmt, orientation)

    return _make


@pytest.fixture
def split_image_bytes():
    """Factory for a PNG whose left half is one colour and right half another."""
    def _make(width, height, left=(0, 0, 0, 255), right=(255, 255, 255, 255)):
        img = Image.new("RGBA", (width, height), left)
        img.paste(right, (width // 2, 0, width, height))
        return encode_image(img)

    return _make


@pytest.fixture
def test_config():
    """
    Provide test configuration values.

    Returns:
        dict: Test configuration
    """
    return {
        "api_key": "test-api-key-12345",
        "log_level": "DEBUG",
        "max_image_pixels": 1_000_000,
    }


@pytest.fixture
def client_no_auth(monkeypatch):
    """
    Create a FastAPI test client without authentication.

    The client is entered as a context manager so the lifespan handler runs.
    """
    from viewfinder_service import api
    from viewfinder_service.config import ViewfinderConfig

    monkeypatch.setattr(api, "CONFIG", ViewfinderConfig(api_key=None, control_backend="recording"))
    with TestClient(api.app) as client:
        yield client


@pytest.fixture
def client_with_auth(monkeypatch, test_config):
    """Create a FastAPI test client with authentication enabled."""
    from viewfinder_service import api
    from viewfinder_service.config import ViewfinderConfig

    monkeypatch.setattr(
        api,
        "CONFIG",
        ViewfinderConfig(api_key=test_config["api_key"], control_backend="recording"),
    )
    with TestClient(api.app) as client:
        yield client


@pytest.fixture
def image_root(tmp_path):
    """Directory overlay files may be loaded from."""
    root = tmp_path / "images"
    root.mkdir()
    return root


@pytest.fixture
def client_with_images(monkeypatch, image_root):
    """Create a FastAPI test client with overlay file loading enabled."""
    from viewfinder_service import api
    from viewfinder_service.config import ViewfinderConfig

    monkeypatch.setattr(
        api,
        "CONFIG",
        ViewfinderConfig(api_key=None, control_backend="recording", image_root=image_root),
    )
    with TestClient(api.app) as client:
        yield client


@pytest.fixture
def auth_headers(test_config):
    """
    Provide authentication headers for API requests.

    Returns:
        dict: Headers with API key
    """
    return {"X-API-Key": test_config["api_key"]}


@pytest.fixture(autouse=True)
def reset_logging():
    """
    Reset logging configuration between tests.

    This prevents log level changes from affecting other tests.
    """
    import logging

    original_level = logging.root.level

    yield

    logging.root.setLevel(original_level)
