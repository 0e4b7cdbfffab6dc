"""
Picamera2 capture control port for Viewfinder Service.

Translates abstract capture requests into libcamera controls and applies
them to a Picamera2 instance with thread-safe access.
"""

from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Dict

from viewfinder_service.capture import AeMode, AfMode, AwbMode, CaptureRequest, ControlKey
from viewfinder_service.exceptions import ControlError

logger = logging.getLogger(__name__)

NANOS_PER_MICRO = 1_000
ISO_PER_UNIT_GAIN = 100.0

# libcamera AfMode values
AF_MODE_MANUAL = 0
AF_MODE_CONTINUOUS = 2


def translate_request(request: CaptureRequest) -> Dict[str, Any]:
    """
    Convert an abstract capture request into a libcamera control dictionary.

    Mapping:
    - AE mode on/off -> AeEnable
    - Sensor sensitivity (ISO) -> AnalogueGain, ISO 100 == gain 1.0
    - Exposure time (ns) -> ExposureTime (µs)
    - AF mode off/continuous -> AfMode 0/2
    - Lens focus distance (dioptres, 0 = infinity) -> LensPosition
    - AWB auto -> AwbEnable
    - Exposure compensation index (half stops) -> ExposureValue (stops)

    Args:
        request: Capture request to translate

    Returns:
        dict: Controls suitable for Picamera2.set_controls

    Raises:
        ControlError: If the request holds a control with no libcamera equivalent
    """
    controls: Dict[str, Any] = {}
    for key, value in request.controls.items():
        if key is ControlKey.AE_MODE:
            controls["AeEnable"] = value == AeMode.ON
        elif key is ControlKey.SENSOR_SENSITIVITY:
            controls["AnalogueGain"] = float(value) / ISO_PER_UNIT_GAIN
        elif key is ControlKey.SENSOR_EXPOSURE_TIME:
            controls["ExposureTime"] = int(value) // NANOS_PER_MICRO
        elif key is ControlKey.AF_MODE:
            controls["AfMode"] = AF_MODE_MANUAL if value == AfMode.OFF else AF_MODE_CONTINUOUS
        elif key is ControlKey.LENS_FOCUS_DISTANCE:
            controls["LensPosition"] = float(value)
        elif key is ControlKey.AWB_MODE and value == AwbMode.AUTO:
            controls["AwbEnable"] = True
        elif key is ControlKey.EXPOSURE_COMPENSATION_INDEX:
            controls["ExposureValue"] = int(value) / 2.0
        else:
            raise ControlError(f"Unsupported capture control {key.value}={value!r}")
    return controls


class Picamera2ControlPort:
    """
    Thread-safe capture control port backed by Picamera2.

    Uses RLock for reentrant thread safety. Any backend failure is surfaced
    as ControlError; nothing is retried.
    """

    def __init__(self, picam2: Any) -> None:
        """
        Initialize the port around an already constructed Picamera2 instance.

        Args:
            picam2: Picamera2 instance (or compatible object with set_controls)
        """
        self._picam2 = picam2
        self._lock = RLock()
        logger.debug("Picamera2ControlPort initialized")

    @classmethod
    def open(cls) -> "Picamera2ControlPort":
        """
        Open the default camera and start it.

        picamera2 is imported here so the rest of the package works on hosts
        without the libcamera stack.

        Raises:
            ControlError: If picamera2 is missing or no camera can be opened
        """
        try:
            from picamera2 import Picamera2
        except ImportError as e:
            raise ControlError("picamera2 is not installed") from e

        try:
            if not Picamera2.global_camera_info():
                raise ControlError("No camera detected. Check hardware connection.")
            picam2 = Picamera2()
            picam2.configure(picam2.create_preview_configuration())
            picam2.start()
        except ControlError:
            raise
        except Exception as e:
            logger.error(f"Failed to open camera: {e}")
            raise ControlError(f"Camera could not be opened: {e}") from e

        logger.info("Camera opened for manual control")
        return cls(picam2)

    def apply(self, request: CaptureRequest) -> None:
        """
        Apply a capture request to the camera.

        Args:
            request: Capture request to apply

        Raises:
            ControlError: If the request cannot be translated or is rejected
        """
        if request.is_empty:
            return

        controls = translate_request(request)
        with self._lock:
            if self._picam2 is None:
                raise ControlError("Camera not initialized")
            try:
                self._picam2.set_controls(controls)
            except Exception as e:
                logger.error(f"Camera rejected controls {controls}: {e}")
                raise ControlError(f"Camera rejected controls: {e}") from e

        logger.debug(f"Applied camera controls: {controls}")

    def close(self) -> None:
        """
        Release camera resources.

        Should be called during application shutdown.
        """
        with self._lock:
            if self._picam2 is not None:
                try:
                    logger.info("Closing camera...")
                    self._picam2.close()
                    logger.info("Camera closed successfully")
                except Exception as e:
                    logger.error(f"Error closing camera: {e}")
                finally:
                    self._picam2 = None
