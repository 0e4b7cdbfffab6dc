"""
FastAPI application for Viewfinder Service.

Thin presentation adapter over the manual parameter controller and the
overlay image pipeline. Each pro interaction returns the slider range,
slider value, label and capture request; overlay loads return the
oriented original and its edge map as PNG.
"""

from __future__ import annotations

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from threading import RLock
from typing import Annotated, Any, AsyncGenerator, Dict, List, Optional

import numpy as np
from fastapi import Depends, FastAPI, HTTPException, Request, Security, status
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from viewfinder_service.capture import CaptureControlPort, CaptureRequest, RecordingControlPort
from viewfinder_service.config import CONFIG
from viewfinder_service.exceptions import (
    ControlError,
    DecodeError,
    ImageSourceError,
    InvalidParameterError,
    ViewfinderError,
)
from viewfinder_service.image_source import FileImageSource
from viewfinder_service.overlay_pipeline import OverlayPipeline, PixelBuffer
from viewfinder_service.parameter_controller import (
    CameraMode,
    Deselected,
    ParameterController,
)
from viewfinder_service.parameters import RESET_ORDER, ParameterRange, ProParameter
from viewfinder_service.picamera_port import Picamera2ControlPort

API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=CONFIG.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances (initialized in lifespan)
control_port: CaptureControlPort | None = None
parameter_controller: ParameterController | None = None
overlay_pipeline: OverlayPipeline | None = None

# Controller calls arrive from the request thread pool
_controller_lock = RLock()
_overlay_lock = RLock()

# API Key authentication
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Verify API key for authentication.

    Args:
        api_key: API key from X-API-Key header

    Raises:
        HTTPException: If authentication is required and key is invalid
    """
    # If no API key is configured, skip authentication
    if not CONFIG.api_key:
        return

    if api_key is None or api_key != CONFIG.api_key:
        logger.warning("Authentication failed: invalid or missing API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )


# Dependency injection functions
def get_parameter_controller() -> ParameterController:
    """
    Dependency injection for the parameter controller.

    Raises:
        HTTPException: If the controller is not initialized
    """
    if parameter_controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Parameter controller not initialized",
        )
    return parameter_controller


def get_overlay_pipeline() -> OverlayPipeline:
    """
    Dependency injection for the overlay pipeline.

    Raises:
        HTTPException: If the pipeline is not initialized
    """
    if overlay_pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Overlay pipeline not initialized",
        )
    return overlay_pipeline


def _create_control_port() -> CaptureControlPort:
    if CONFIG.control_backend == "picamera2":
        return Picamera2ControlPort.open()
    logger.info("No camera backend configured, recording capture requests only")
    return RecordingControlPort(max_history=CONFIG.request_history_size)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Manage application lifecycle: startup and shutdown events.

    Opens the capture control port and creates the controller and the
    overlay pipeline on startup; closes the port on shutdown.
    """
    global control_port, parameter_controller, overlay_pipeline

    logger.info("=== Viewfinder Service Starting ===")
    logger.info(f"Control backend: {CONFIG.control_backend}, initial mode: {CONFIG.initial_mode}")
    logger.info(f"API Key Auth: {'Enabled' if CONFIG.api_key else 'Disabled'}")
    logger.info(f"Overlay image root: {CONFIG.image_root or 'disabled'}")

    try:
        control_port = _create_control_port()
        parameter_controller = ParameterController(
            control_port, mode=CameraMode.parse(CONFIG.initial_mode)
        )
        overlay_pipeline = OverlayPipeline(max_image_pixels=CONFIG.max_image_pixels)
        logger.info("=== Viewfinder Service Started Successfully ===")
    except ControlError as e:
        logger.error(f"Capture control not available: {e}")
        raise

    yield

    logger.info("=== Viewfinder Service Shutting Down ===")

    if isinstance(control_port, Picamera2ControlPort):
        control_port.close()

    control_port = None
    parameter_controller = None
    overlay_pipeline = None

    logger.info("=== Viewfinder Service Shutdown Complete ===")


# Create FastAPI app
app = FastAPI(
    title="Viewfinder Service",
    description="Manual camera parameter control and edge-detected overlay composition",
    version=API_VERSION,
    lifespan=lifespan,
)


# ========== Pydantic Models ==========

class StatusResponse(BaseModel):
    """Base response model with status."""
    status: str = "ok"


class ParameterRangeModel(BaseModel):
    """Slider range for one pro parameter."""
    parameter: str = Field(..., description="Parameter name")
    title: str = Field(..., description="Slider caption")
    min: float = Field(..., description="Lowest slider value")
    max: float = Field(..., description="Highest slider value")
    step: float = Field(..., description="Slider step")
    default: float = Field(..., description="Slider value while automatic")

    @classmethod
    def of(cls, rng: ParameterRange) -> "ParameterRangeModel":
        return cls(
            parameter=rng.parameter.value,
            title=rng.title,
            min=rng.min,
            max=rng.max,
            step=rng.step,
            default=rng.default,
        )


class ParameterRequest(BaseModel):
    """Request naming a pro parameter."""
    parameter: str = Field(..., description="iso, shutter_speed, white_balance, manual_focus, exposure_comp")


class SliderRequest(BaseModel):
    """Request model for a slider move."""
    value: float = Field(..., description="Raw slider position")


class ModeRequest(BaseModel):
    """Request model for camera mode selection."""
    mode: str = Field(..., description="Camera mode: portrait, photo, video, pro")


class SelectResponse(StatusResponse):
    """Response model for parameter selection."""
    selected: bool = Field(..., description="True when the parameter is now active")
    parameter: str = Field(..., description="Parameter that was toggled")
    range: Optional[ParameterRangeModel] = Field(None, description="Slider range when selected")
    slider_value: Optional[float] = Field(None, description="Restored slider position")
    label: Optional[str] = Field(None, description="Current value label")


class SliderResponse(StatusResponse):
    """Response model for slider moves."""
    applied: bool = Field(..., description="False when no parameter was active")
    parameter: Optional[str] = Field(None, description="Active parameter")
    range: Optional[ParameterRangeModel] = Field(None, description="Slider range")
    slider_value: Optional[float] = Field(None, description="Quantized slider value")
    label: Optional[str] = Field(None, description="Value label")
    request: Dict[str, Any] = Field(default_factory=dict, description="Capture request controls")


class AutoResponse(StatusResponse):
    """Response model for reverting a parameter to auto."""
    parameter: str = Field(..., description="Parameter reset")
    label: str = Field(..., description="Label after reset")
    request: Dict[str, Any] = Field(..., description="Neutral capture request controls")


class ResetResponse(StatusResponse):
    """Response model for resetting every parameter."""
    requests: List[Dict[str, Any]] = Field(..., description="Neutral requests in reset order")


class ModeResponse(StatusResponse):
    """Response model for mode selection."""
    mode: str = Field(..., description="Current camera mode")
    pro_enabled: bool = Field(..., description="Pro controls available")
    requests: List[Dict[str, Any]] = Field(..., description="Requests issued by the mode change")


class ProStateResponse(BaseModel):
    """Controller state response model."""
    mode: str = Field(..., description="Current camera mode")
    active_parameter: str = Field(..., description="Parameter owning the slider")
    labels: Dict[str, str] = Field(..., description="Label per parameter")


class OverlayRequest(BaseModel):
    """Request model for loading an overlay from inline bytes."""
    image_base64: str = Field(..., description="Encoded image (JPEG, PNG, ...) in base64")
    orientation: Optional[int] = Field(
        None, description="EXIF orientation tag; read from the image when omitted"
    )


class OverlayFileRequest(BaseModel):
    """Request model for loading an overlay from a file path."""
    path: str = Field(..., description="Image path relative to the configured image root")


class OverlayResponse(StatusResponse):
    """Response model for overlay loads."""
    width: int = Field(..., description="Oriented image width")
    height: int = Field(..., description="Oriented image height")
    rotation: int = Field(..., description="Clockwise rotation applied (degrees)")
    edge_pixels: int = Field(..., description="Number of edge pixels")
    mean_luma: float = Field(..., description="Mean luma (0-255) of the oriented image")
    original_png_base64: str = Field(..., description="Oriented image as base64 PNG")
    edge_png_base64: str = Field(..., description="Edge map as base64 PNG")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    mode: Optional[str] = Field(None, description="Current camera mode")
    active_parameter: Optional[str] = Field(None, description="Parameter owning the slider")
    overlay_loaded: bool = Field(..., description="An overlay pair is loaded")
    version: str = Field(..., description="API version")


def _request_dict(request: CaptureRequest) -> Dict[str, Any]:
    return request.to_dict()


def _overlay_response(pipeline: OverlayPipeline, original: PixelBuffer, edge_map: PixelBuffer) -> OverlayResponse:
    return OverlayResponse(
        width=original.width,
        height=original.height,
        rotation=pipeline.rotation,
        edge_pixels=int(np.count_nonzero(edge_map.pixels[..., 3])),
        mean_luma=original.mean_luma(),
        original_png_base64=base64.b64encode(original.to_png()).decode("ascii"),
        edge_png_base64=base64.b64encode(edge_map.to_png()).decode("ascii"),
    )


# ========== Exception Handlers ==========

@app.exception_handler(InvalidParameterError)
async def invalid_parameter_handler(request: Request, exc: InvalidParameterError) -> JSONResponse:
    """Handle invalid parameter errors."""
    logger.warning(f"Invalid parameter: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


@app.exception_handler(DecodeError)
async def decode_error_handler(request: Request, exc: DecodeError) -> JSONResponse:
    """Handle undecodable overlay images."""
    logger.warning(f"Decode error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


@app.exception_handler(ImageSourceError)
async def image_source_error_handler(request: Request, exc: ImageSourceError) -> JSONResponse:
    """Handle unreadable image references."""
    logger.warning(f"Image source error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(ControlError)
async def control_error_handler(request: Request, exc: ControlError) -> JSONResponse:
    """Handle capture requests rejected by the camera."""
    logger.error(f"Capture control error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": f"Camera rejected the request: {exc}"},
    )


@app.exception_handler(ViewfinderError)
async def viewfinder_error_handler(request: Request, exc: ViewfinderError) -> JSONResponse:
    """Handle general viewfinder errors."""
    logger.error(f"Viewfinder error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Viewfinder operation failed"},
    )


# ========== API Endpoints ==========

@app.get("/health", response_model=HealthResponse, tags=["System"])
def health_check() -> HealthResponse:
    """
    Health check endpoint for monitoring.

    Does not require authentication.
    """
    controller = parameter_controller
    return HealthResponse(
        status="healthy" if controller is not None else "initializing",
        mode=controller.mode.value if controller else None,
        active_parameter=controller.active.value if controller else None,
        overlay_loaded=overlay_pipeline.has_overlay if overlay_pipeline else False,
        version=API_VERSION,
    )


@app.get(
    "/v1/pro/state",
    response_model=ProStateResponse,
    tags=["Pro"],
    dependencies=[Depends(verify_api_key)],
)
def get_pro_state(
    controller: Annotated[ParameterController, Depends(get_parameter_controller)],
) -> ProStateResponse:
    """Return mode, active parameter and the label of every parameter."""
    with _controller_lock:
        return ProStateResponse(
            mode=controller.mode.value,
            active_parameter=controller.active.value,
            labels={param.value: controller.label(param) for param in RESET_ORDER},
        )


@app.post(
    "/v1/pro/select",
    response_model=SelectResponse,
    tags=["Pro"],
    dependencies=[Depends(verify_api_key)],
)
def select_parameter(
    req: ParameterRequest,
    controller: Annotated[ParameterController, Depends(get_parameter_controller)],
) -> SelectResponse:
    """
    Toggle the slider onto a parameter.

    Selecting the active parameter again hides the slider.
    """
    param = ProParameter.parse(req.parameter)
    with _controller_lock:
        outcome = controller.select(param)

    if isinstance(outcome, Deselected):
        return SelectResponse(selected=False, parameter=outcome.parameter.value)
    return SelectResponse(
        selected=True,
        parameter=outcome.parameter.value,
        range=ParameterRangeModel.of(outcome.range),
        slider_value=outcome.slider_value,
        label=outcome.label,
    )


@app.post(
    "/v1/pro/slider",
    response_model=SliderResponse,
    tags=["Pro"],
    dependencies=[Depends(verify_api_key)],
)
def move_slider(
    req: SliderRequest,
    controller: Annotated[ParameterController, Depends(get_parameter_controller)],
) -> SliderResponse:
    """
    Apply a slider position to the active parameter.

    Returns ``applied=false`` when no parameter is selected.
    """
    with _controller_lock:
        update = controller.update_slider(req.value)

    if update is None:
        return SliderResponse(applied=False)
    return SliderResponse(
        applied=True,
        parameter=update.parameter.value,
        range=ParameterRangeModel.of(update.range),
        slider_value=update.slider_value,
        label=update.label,
        request=_request_dict(update.request),
    )


@app.post(
    "/v1/pro/auto",
    response_model=AutoResponse,
    tags=["Pro"],
    dependencies=[Depends(verify_api_key)],
)
def reset_parameter(
    req: ParameterRequest,
    controller: Annotated[ParameterController, Depends(get_parameter_controller)],
) -> AutoResponse:
    """Return one parameter to automatic control."""
    param = ProParameter.parse(req.parameter)
    with _controller_lock:
        request = controller.reset_to_auto(param)
        label = controller.label(param)
    return AutoResponse(parameter=param.value, label=label, request=_request_dict(request))


@app.post(
    "/v1/pro/reset",
    response_model=ResetResponse,
    tags=["Pro"],
    dependencies=[Depends(verify_api_key)],
)
def reset_all_parameters(
    controller: Annotated[ParameterController, Depends(get_parameter_controller)],
) -> ResetResponse:
    """Return every parameter to automatic control."""
    with _controller_lock:
        requests = controller.reset_all()
    return ResetResponse(requests=[_request_dict(r) for r in requests])


@app.post(
    "/v1/mode",
    response_model=ModeResponse,
    tags=["Pro"],
    dependencies=[Depends(verify_api_key)],
)
def select_mode(
    req: ModeRequest,
    controller: Annotated[ParameterController, Depends(get_parameter_controller)],
) -> ModeResponse:
    """
    Switch camera mode.

    Leaving pro mode (or entering any non-pro mode) resets every parameter
    to automatic.
    """
    mode = CameraMode.parse(req.mode)
    with _controller_lock:
        requests = controller.select_mode(mode)
        return ModeResponse(
            mode=controller.mode.value,
            pro_enabled=controller.pro_enabled,
            requests=[_request_dict(r) for r in requests],
        )


@app.post(
    "/v1/overlay",
    response_model=OverlayResponse,
    tags=["Overlay"],
    dependencies=[Depends(verify_api_key)],
)
def load_overlay(
    req: OverlayRequest,
    pipeline: Annotated[OverlayPipeline, Depends(get_overlay_pipeline)],
) -> OverlayResponse:
    """
    Load an overlay image sent inline.

    The image is rotated upright and edge-detected; both buffers are
    returned as base64 PNG.
    """
    try:
        data = base64.b64decode(req.image_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"image_base64 is not valid base64: {e}") from e

    logger.info(f"Loading overlay from {len(data)} bytes")
    with _overlay_lock:
        original, edge_map = pipeline.load(data, req.orientation)
        return _overlay_response(pipeline, original, edge_map)


@app.post(
    "/v1/overlay/file",
    response_model=OverlayResponse,
    tags=["Overlay"],
    dependencies=[Depends(verify_api_key)],
)
def load_overlay_file(
    req: OverlayFileRequest,
    pipeline: Annotated[OverlayPipeline, Depends(get_overlay_pipeline)],
) -> OverlayResponse:
    """
    Load an overlay image from the configured image directory.

    ``path`` must be relative to VIEWFINDER_IMAGE_ROOT; absolute paths and
    paths leaving the directory are refused. Disabled when no root is set.
    """
    if CONFIG.image_root is None:
        raise ImageSourceError("Overlay file loading is disabled (VIEWFINDER_IMAGE_ROOT not set)")

    logger.info(f"Loading overlay from {req.path}")
    with _overlay_lock:
        original, edge_map = pipeline.load_reference(FileImageSource(CONFIG.image_root), req.path)
        return _overlay_response(pipeline, original, edge_map)
