"""
Manual parameter controller for Viewfinder Service.

Tracks which pro parameter owns the slider, maps slider positions to
domain values and labels, and turns them into capture requests applied
through a capture control port.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

from viewfinder_service.capture import (
    AeMode,
    AfMode,
    AwbMode,
    CaptureControlPort,
    CaptureRequest,
    ControlKey,
)
from viewfinder_service.exceptions import ControlError, InvalidParameterError
from viewfinder_service.parameters import (
    AUTO,
    RESET_ORDER,
    ParameterRange,
    ParameterValue,
    ProParameter,
    ev_index,
    exposure_time_ns,
    format_label,
    get_range,
    parse_label,
)

logger = logging.getLogger(__name__)


class CameraMode(str, Enum):
    """Capture modes offered by the viewfinder."""

    PORTRAIT = "portrait"
    PHOTO = "photo"
    VIDEO = "video"
    PRO = "pro"

    @classmethod
    def parse(cls, name: str) -> "CameraMode":
        """
        Look up a mode by name, case-insensitively.

        Raises:
            InvalidParameterError: If the name matches no mode
        """
        try:
            return cls(name.strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise InvalidParameterError(
                f"Invalid camera mode '{name}'. Must be one of: {valid}"
            ) from None


# ---------- Request builders ----------

def build_manual_request(param: ProParameter, value: float) -> CaptureRequest:
    """
    Capture request for a quantized manual value.

    White balance has no native temperature control, so its request is empty.
    """
    if param is ProParameter.ISO:
        return CaptureRequest({
            ControlKey.AE_MODE: AeMode.OFF,
            ControlKey.SENSOR_SENSITIVITY: int(value),
        })
    if param is ProParameter.SHUTTER_SPEED:
        return CaptureRequest({
            ControlKey.AE_MODE: AeMode.OFF,
            ControlKey.SENSOR_EXPOSURE_TIME: exposure_time_ns(value),
        })
    if param is ProParameter.WHITE_BALANCE:
        return CaptureRequest()
    if param is ProParameter.MANUAL_FOCUS:
        return CaptureRequest({
            ControlKey.AF_MODE: AfMode.OFF,
            ControlKey.LENS_FOCUS_DISTANCE: value,
        })
    if param is ProParameter.EXPOSURE_COMP:
        return CaptureRequest({ControlKey.EXPOSURE_COMPENSATION_INDEX: ev_index(value)})
    raise InvalidParameterError(f"No manual request for parameter {param.value}")


def build_auto_request(param: ProParameter) -> CaptureRequest:
    """Neutral capture request that hands a parameter back to the camera."""
    if param in (ProParameter.ISO, ProParameter.SHUTTER_SPEED):
        return CaptureRequest({ControlKey.AE_MODE: AeMode.ON})
    if param is ProParameter.WHITE_BALANCE:
        return CaptureRequest({ControlKey.AWB_MODE: AwbMode.AUTO})
    if param is ProParameter.MANUAL_FOCUS:
        return CaptureRequest({ControlKey.AF_MODE: AfMode.CONTINUOUS_PICTURE})
    if param is ProParameter.EXPOSURE_COMP:
        return CaptureRequest({ControlKey.EXPOSURE_COMPENSATION_INDEX: 0})
    raise InvalidParameterError(f"No auto request for parameter {param.value}")


# ---------- Outcomes ----------

@dataclass(frozen=True)
class Selected:
    """The slider now drives ``parameter``."""

    parameter: ProParameter
    range: ParameterRange
    slider_value: float
    label: str


@dataclass(frozen=True)
class Deselected:
    """``parameter`` was active and has been toggled off."""

    parameter: ProParameter


SelectionOutcome = Union[Selected, Deselected]


@dataclass(frozen=True)
class ParameterUpdate:
    """Result of moving the slider for the active parameter."""

    parameter: ProParameter
    range: ParameterRange
    slider_value: float
    label: str
    request: CaptureRequest


def _all_auto() -> Dict[ProParameter, ParameterValue]:
    return {param: AUTO for param in RESET_ORDER}


@dataclass
class ParameterState:
    """
    Mutable controller state.

    Every parameter except NONE has exactly one stored value.
    """

    active: ProParameter = ProParameter.NONE
    values: Dict[ProParameter, ParameterValue] = field(default_factory=_all_auto)


class ParameterController:
    """
    Finite-state machine for the pro parameter slider.

    At most one parameter is active. Requests are built from committed
    state and then handed to the capture control port; a ControlError from
    the port is logged and re-raised without rolling the state back.
    """

    def __init__(
        self,
        port: Optional[CaptureControlPort] = None,
        mode: CameraMode = CameraMode.PHOTO,
    ) -> None:
        """
        Initialize the controller with every parameter automatic.

        Args:
            port: Capture control port to apply requests through (optional)
            mode: Initial camera mode
        """
        self._port = port
        self._mode = mode
        self._state = ParameterState()
        logger.debug(f"ParameterController initialized in {mode.value} mode")

    # ---------- Read access ----------

    @property
    def active(self) -> ProParameter:
        return self._state.active

    @property
    def mode(self) -> CameraMode:
        return self._mode

    @property
    def pro_enabled(self) -> bool:
        return self._mode is CameraMode.PRO

    @property
    def state(self) -> ParameterState:
        """Snapshot of the controller state."""
        return ParameterState(active=self._state.active, values=dict(self._state.values))

    def value(self, param: ProParameter) -> ParameterValue:
        get_range(param)
        return self._state.values[param]

    def label(self, param: ProParameter) -> str:
        return format_label(param, self.value(param))

    def slider_value(self, param: ProParameter) -> float:
        """Slider position restored from the parameter's current label."""
        return parse_label(param, self.label(param))

    # ---------- Transitions ----------

    def select(self, param: ProParameter) -> SelectionOutcome:
        """
        Toggle the slider onto a parameter.

        Selecting the active parameter again deselects it. Selecting any other
        parameter makes it active without touching its stored value.

        Args:
            param: Parameter to select

        Returns:
            Selected or Deselected

        Raises:
            InvalidParameterError: If param is NONE
        """
        rng = get_range(param)

        if param is self._state.active:
            self._state.active = ProParameter.NONE
            logger.info(f"Pro parameter deselected: {param.value}")
            return Deselected(parameter=param)

        self._state.active = param
        outcome = Selected(
            parameter=param,
            range=rng,
            slider_value=self.slider_value(param),
            label=self.label(param),
        )
        logger.info(f"Pro parameter selected: {param.value} (slider={outcome.slider_value})")
        return outcome

    def update_slider(self, raw_value: float) -> Optional[ParameterUpdate]:
        """
        Store a manual value for the active parameter and apply it.

        The raw value is clamped to the range and snapped to the nearest step.
        With no active parameter this is a no-op returning None.

        Args:
            raw_value: Slider position reported by the UI

        Returns:
            ParameterUpdate, or None when no parameter is active

        Raises:
            InvalidParameterError: If raw_value is not finite
            ControlError: If the port rejects the request (value stays stored)
        """
        param = self._state.active
        if param is ProParameter.NONE:
            logger.debug(f"Slider moved to {raw_value} with no active parameter, ignoring")
            return None

        rng = get_range(param)
        value = rng.quantize(raw_value)
        self._state.values[param] = ParameterValue.of(value)

        request = build_manual_request(param, value)
        update = ParameterUpdate(
            parameter=param,
            range=rng,
            slider_value=value,
            label=rng.label(value),
            request=request,
        )
        if request.is_empty:
            logger.warning(
                f"{rng.title} set to {update.label} but has no native capture control"
            )
        else:
            logger.info(f"{rng.title} set to {update.label}")
        self._dispatch(request)
        return update

    def reset_to_auto(self, param: ProParameter) -> CaptureRequest:
        """
        Return a parameter to automatic control.

        Deselects the parameter when it is the active one.

        Args:
            param: Parameter to reset

        Returns:
            CaptureRequest: Neutral request for the parameter

        Raises:
            InvalidParameterError: If param is NONE
            ControlError: If the port rejects the request (reset stays stored)
        """
        get_range(param)
        self._state.values[param] = AUTO
        if self._state.active is param:
            self._state.active = ProParameter.NONE

        request = build_auto_request(param)
        logger.info(f"Pro parameter reset to auto: {param.value}")
        self._dispatch(request)
        return request

    def reset_all(self) -> List[CaptureRequest]:
        """
        Reset every parameter to automatic in fixed order.

        Returns:
            list: Five neutral requests (ISO, shutter, WB, focus, EV)

        Raises:
            ControlError: If the port rejects any request. Every request is
                still attempted, all parameters are already automatic, and
                the first error is raised after the last request.
        """
        self._state.active = ProParameter.NONE
        for param in RESET_ORDER:
            self._state.values[param] = AUTO

        requests = [build_auto_request(param) for param in RESET_ORDER]
        logger.info("All pro parameters reset to auto")

        errors: List[ControlError] = []
        for request in requests:
            try:
                self._dispatch(request)
            except ControlError as e:
                errors.append(e)
        if errors:
            logger.error(f"{len(errors)} of {len(requests)} reset requests rejected")
            raise errors[0]
        return requests

    def select_mode(self, mode: CameraMode) -> List[CaptureRequest]:
        """
        Switch camera mode.

        Entering any mode other than PRO resets every parameter to automatic.

        Args:
            mode: Mode to enter

        Returns:
            list: Requests issued by the reset (empty when entering PRO)
        """
        previous = self._mode
        self._mode = mode
        logger.info(f"Camera mode changed: {previous.value} -> {mode.value}")

        if mode is CameraMode.PRO:
            return []
        return self.reset_all()

    def _dispatch(self, request: CaptureRequest) -> None:
        if self._port is None or request.is_empty:
            return
        try:
            self._port.apply(request)
        except ControlError as e:
            logger.warning(f"Capture control rejected {request.to_dict()}: {e}")
            raise
