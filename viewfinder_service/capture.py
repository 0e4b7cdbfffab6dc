"""
Capture-request vocabulary and the Capture Control Port.

A CaptureRequest is an opaque bag of key/value controls built by the
parameter controller and handed to whichever port drives the sensor. Ports
translate the abstract vocabulary into backend controls.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Requests kept by RecordingControlPort unless configured otherwise
DEFAULT_MAX_HISTORY = 256


class ControlKey(str, Enum):
    """Abstract capture-control keys."""

    AE_MODE = "ae_mode"
    AF_MODE = "af_mode"
    AWB_MODE = "awb_mode"
    SENSOR_SENSITIVITY = "sensor_sensitivity"
    SENSOR_EXPOSURE_TIME = "sensor_exposure_time_ns"
    LENS_FOCUS_DISTANCE = "lens_focus_distance"
    EXPOSURE_COMPENSATION_INDEX = "exposure_compensation_index"


class AeMode(str, Enum):
    ON = "on"
    OFF = "off"


class AfMode(str, Enum):
    OFF = "off"
    CONTINUOUS_PICTURE = "continuous_picture"


class AwbMode(str, Enum):
    AUTO = "auto"


@dataclass(frozen=True)
class CaptureRequest:
    """
    Set of capture controls to apply in one call.

    An empty request carries no native control (e.g. a white balance
    temperature, which has no capture-request equivalent) and is never sent
    to a port.
    """

    controls: Dict[ControlKey, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.controls

    def get(self, key: ControlKey, default: Any = None) -> Any:
        return self.controls.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-friendly representation."""
        return {
            key.value: value.value if isinstance(value, Enum) else value
            for key, value in self.controls.items()
        }


@runtime_checkable
class CaptureControlPort(Protocol):
    """Port through which capture requests reach the active sensor."""

    def apply(self, request: CaptureRequest) -> None:
        """
        Apply a capture request.

        Raises:
            ControlError: If the backend rejects the request
        """
        ...


class RecordingControlPort:
    """
    Capture control port that records requests instead of driving hardware.

    Used when no sensor is attached. The most recent ``max_history`` applied
    requests are kept in call order; older ones are dropped.
    """

    def __init__(self, max_history: Optional[int] = DEFAULT_MAX_HISTORY) -> None:
        self._history: Deque[CaptureRequest] = deque(maxlen=max_history)

    @property
    def history(self) -> List[CaptureRequest]:
        return list(self._history)

    def apply(self, request: CaptureRequest) -> None:
        self._history.append(request)
        logger.debug(f"Recorded capture request: {request.to_dict()}")

    def clear(self) -> None:
        self._history.clear()
