"""
Tests for ParameterController.

Tests selection toggling, slider updates and their capture requests,
resets to auto, mode transitions, and control error handling.
"""

import pytest
from unittest.mock import MagicMock

from viewfinder_service.capture import AeMode, AfMode, AwbMode, CaptureRequest, ControlKey
from viewfinder_service.exceptions import ControlError, InvalidParameterError
from viewfinder_service.parameter_controller import (
    CameraMode,
    Deselected,
    ParameterController,
    Selected,
    build_auto_request,
)
from viewfinder_service.parameters import AUTO, RANGES, RESET_ORDER, ParameterValue, ProParameter

AUTO_REQUESTS = [
    CaptureRequest({ControlKey.AE_MODE: AeMode.ON}),
    CaptureRequest({ControlKey.AE_MODE: AeMode.ON}),
    CaptureRequest({ControlKey.AWB_MODE: AwbMode.AUTO}),
    CaptureRequest({ControlKey.AF_MODE: AfMode.CONTINUOUS_PICTURE}),
    CaptureRequest({ControlKey.EXPOSURE_COMPENSATION_INDEX: 0}),
]


class TestParameterControllerInit:
    """Test controller initialization."""

    def test_init_all_auto(self, controller):
        """Test that every parameter starts automatic with nothing active."""
        state = controller.state

        assert state.active is ProParameter.NONE
        assert set(state.values) == set(RESET_ORDER)
        assert all(value is AUTO for value in state.values.values())
        assert controller.mode is CameraMode.PHOTO
        assert controller.pro_enabled is False

    def test_state_is_a_snapshot(self, controller):
        """Test that mutating the returned state does not affect the controller."""
        state = controller.state
        state.values[ProParameter.ISO] = ParameterValue.of(800)

        assert controller.value(ProParameter.ISO) is AUTO


class TestSelect:
    """Test parameter selection."""

    @pytest.mark.parametrize("param", RESET_ORDER)
    def test_select_then_select_deselects(self, controller, param):
        """Test that selecting the same parameter twice returns to NONE."""
        first = controller.select(param)
        second = controller.select(param)

        assert isinstance(first, Selected)
        assert second == Deselected(parameter=param)
        assert controller.active is ProParameter.NONE
        assert controller.value(param) is AUTO

    @pytest.mark.parametrize("param", RESET_ORDER)
    def test_select_auto_uses_default(self, controller, param):
        """Test that an untouched parameter restores the range default."""
        outcome = controller.select(param)

        assert outcome.range is RANGES[param]
        assert outcome.slider_value == RANGES[param].default

    def test_select_switches_parameter(self, controller):
        """Test that selecting another parameter moves the slider to it."""
        controller.select(ProParameter.ISO)
        outcome = controller.select(ProParameter.SHUTTER_SPEED)

        assert isinstance(outcome, Selected)
        assert controller.active is ProParameter.SHUTTER_SPEED

    def test_select_restores_manual_value(self, controller):
        """Test that reselecting restores the previous slider position."""
        controller.select(ProParameter.SHUTTER_SPEED)
        controller.update_slider(250)
        controller.select(ProParameter.ISO)

        outcome = controller.select(ProParameter.SHUTTER_SPEED)

        assert outcome.slider_value == 250
        assert outcome.label == "1/250"

    def test_select_restores_focus_sentinel(self, controller):
        """Test that infinity focus restores slider position 0."""
        controller.select(ProParameter.MANUAL_FOCUS)
        controller.update_slider(0)
        controller.select(ProParameter.MANUAL_FOCUS)

        outcome = controller.select(ProParameter.MANUAL_FOCUS)

        assert outcome.label == "∞"
        assert outcome.slider_value == 0.0

    def test_select_does_not_emit_requests(self, controller, recording_port):
        """Test that selection leaves stored values and the camera untouched."""
        controller.select(ProParameter.ISO)

        assert recording_port.history == []
        assert controller.value(ProParameter.ISO) is AUTO

    def test_select_none_rejected(self, controller):
        """Test that NONE cannot be selected."""
        with pytest.raises(InvalidParameterError):
            controller.select(ProParameter.NONE)


class TestUpdateSlider:
    """Test slider updates and their capture requests."""

    def test_no_active_parameter_is_noop(self, controller, recording_port):
        """Test that moving the slider with nothing selected does nothing."""
        assert controller.update_slider(400) is None
        assert recording_port.history == []
        assert all(v is AUTO for v in controller.state.values.values())

    def test_iso_request(self, controller, recording_port):
        """Test ISO disables auto exposure and sets sensitivity."""
        controller.select(ProParameter.ISO)
        update = controller.update_slider(400)

        assert update.label == "400"
        assert update.slider_value == 400
        assert update.request == CaptureRequest({
            ControlKey.AE_MODE: AeMode.OFF,
            ControlKey.SENSOR_SENSITIVITY: 400,
        })
        assert recording_port.history == [update.request]
        assert controller.value(ProParameter.ISO) == ParameterValue.of(400)

    def test_iso_quantized_and_clamped(self, controller):
        """Test raw ISO values are snapped to steps and clamped."""
        controller.select(ProParameter.ISO)

        assert controller.update_slider(437).slider_value == 400
        assert controller.update_slider(5000).slider_value == 3200

    @pytest.mark.parametrize("speed, nanos", [(1, 1_000_000_000), (1000, 1_000_000), (0, 1_000_000_000)])
    def test_shutter_request(self, controller, speed, nanos):
        """Test shutter speed exposure time, including the range floor."""
        controller.select(ProParameter.SHUTTER_SPEED)
        update = controller.update_slider(speed)

        assert update.request.get(ControlKey.AE_MODE) is AeMode.OFF
        assert update.request.get(ControlKey.SENSOR_EXPOSURE_TIME) == nanos

    def test_white_balance_has_no_native_request(self, controller, recording_port):
        """Test white balance is labelled and stored but never sent."""
        controller.select(ProParameter.WHITE_BALANCE)
        update = controller.update_slider(3200)

        assert update.label == "3200K"
        assert update.request.is_empty
        assert recording_port.history == []
        assert controller.value(ProParameter.WHITE_BALANCE) == ParameterValue.of(3200)

    def test_manual_focus_request(self, controller):
        """Test manual focus disables autofocus and sets the distance."""
        controller.select(ProParameter.MANUAL_FOCUS)
        update = controller.update_slider(2.54)

        assert update.label == "2.5"
        assert update.request == CaptureRequest({
            ControlKey.AF_MODE: AfMode.OFF,
            ControlKey.LENS_FOCUS_DISTANCE: 2.5,
        })

    def test_manual_focus_infinity(self, controller):
        """Test focus distance 0 is labelled infinity."""
        controller.select(ProParameter.MANUAL_FOCUS)

        assert controller.update_slider(0).label == "∞"

    @pytest.mark.parametrize(
        "value, index, label",
        [(2.0, 4, "+2.0"), (-2.0, -4, "-2.0"), (0.0, 0, "0.0"), (1.0, 2, "+1.0")],
    )
    def test_exposure_comp_request(self, controller, value, index, label):
        """Test exposure compensation index and sign formatting."""
        controller.select(ProParameter.EXPOSURE_COMP)
        update = controller.update_slider(value)

        assert update.label == label
        assert update.request == CaptureRequest({ControlKey.EXPOSURE_COMPENSATION_INDEX: index})

    def test_update_is_idempotent(self, controller):
        """Test that the same input twice gives the same stored value and request."""
        controller.select(ProParameter.EXPOSURE_COMP)
        first = controller.update_slider(0.73)
        stored = controller.value(ProParameter.EXPOSURE_COMP)
        second = controller.update_slider(0.73)

        assert first == second
        assert controller.value(ProParameter.EXPOSURE_COMP) == stored

    def test_control_error_keeps_value(self, controller, recording_port):
        """Test that a rejected request does not roll the stored value back."""
        recording_port.apply = MagicMock(side_effect=ControlError("unsupported"))
        controller.select(ProParameter.ISO)

        with pytest.raises(ControlError):
            controller.update_slider(800)

        assert controller.value(ProParameter.ISO) == ParameterValue.of(800)
        assert controller.label(ProParameter.ISO) == "800"

    def test_works_without_port(self):
        """Test the controller can run detached from any camera."""
        controller = ParameterController()
        controller.select(ProParameter.ISO)

        assert controller.update_slider(200).label == "200"


class TestResetToAuto:
    """Test reverting parameters to automatic control."""

    @pytest.mark.parametrize("param, expected", list(zip(RESET_ORDER, AUTO_REQUESTS)))
    def test_neutral_requests(self, controller, param, expected):
        """Test the neutral request for each parameter."""
        assert controller.reset_to_auto(param) == expected
        assert build_auto_request(param) == expected

    def test_reset_active_parameter_deselects(self, controller):
        """Test that resetting the active parameter hides the slider."""
        controller.select(ProParameter.ISO)
        controller.update_slider(800)

        controller.reset_to_auto(ProParameter.ISO)

        assert controller.active is ProParameter.NONE
        assert controller.value(ProParameter.ISO) is AUTO
        assert controller.label(ProParameter.ISO) == "AUTO"

    def test_reset_other_parameter_keeps_selection(self, controller):
        """Test that resetting a different parameter keeps the active one."""
        controller.select(ProParameter.ISO)
        controller.reset_to_auto(ProParameter.MANUAL_FOCUS)

        assert controller.active is ProParameter.ISO

    def test_reset_applies_request(self, controller, recording_port):
        """Test that the neutral request reaches the port."""
        controller.reset_to_auto(ProParameter.WHITE_BALANCE)

        assert recording_port.history == [CaptureRequest({ControlKey.AWB_MODE: AwbMode.AUTO})]

    def test_reset_none_rejected(self, controller):
        with pytest.raises(InvalidParameterError):
            controller.reset_to_auto(ProParameter.NONE)


class TestResetAll:
    """Test resetting every parameter."""

    def test_reset_all_order(self, controller, recording_port):
        """Test five neutral requests in fixed order."""
        requests = controller.reset_all()

        assert requests == AUTO_REQUESTS
        assert recording_port.history == AUTO_REQUESTS

    def test_reset_all_from_manual_state(self, controller):
        """Test reset clears manual values and the selection."""
        for param, value in zip(RESET_ORDER, (800, 60, 3000, 1.2, -1.0)):
            controller.select(param)
            controller.update_slider(value)

        requests = controller.reset_all()

        assert len(requests) == 5
        assert requests == AUTO_REQUESTS
        assert controller.active is ProParameter.NONE
        assert all(v is AUTO for v in controller.state.values.values())


class TestSelectMode:
    """Test camera mode transitions."""

    def test_enter_pro_does_not_reset(self, controller, recording_port):
        """Test entering pro mode emits nothing."""
        assert controller.select_mode(CameraMode.PRO) == []
        assert controller.pro_enabled is True
        assert recording_port.history == []

    @pytest.mark.parametrize("mode", [CameraMode.PHOTO, CameraMode.VIDEO, CameraMode.PORTRAIT])
    def test_leaving_pro_resets_all(self, controller, mode):
        """Test leaving pro mode resets every parameter."""
        controller.select_mode(CameraMode.PRO)
        controller.select(ProParameter.ISO)
        controller.update_slider(1600)

        requests = controller.select_mode(mode)

        assert requests == AUTO_REQUESTS
        assert controller.mode is mode
        assert controller.active is ProParameter.NONE
        assert controller.value(ProParameter.ISO) is AUTO

    def test_mode_parse(self):
        """Test mode lookup by name."""
        assert CameraMode.parse("PRO") is CameraMode.PRO
        with pytest.raises(InvalidParameterError):
            CameraMode.parse("night")


class TestResetAllPartialFailure:
    """Test reset_all against a camera that rejects some controls."""

    class NoAutofocusPort:
        """Records requests and rejects any that touch autofocus."""

        def __init__(self):
            self.applied = []

        def apply(self, request):
            if request.get(ControlKey.AF_MODE) is not None:
                raise ControlError("AfMode not supported")
            self.applied.append(request)

    def test_every_request_attempted(self):
        """Test a rejected request does not stop the remaining resets."""
        port = self.NoAutofocusPort()
        controller = ParameterController(port)
        controller.select(ProParameter.EXPOSURE_COMP)
        controller.update_slider(2.0)
        port.applied.clear()

        with pytest.raises(ControlError) as exc_info:
            controller.reset_all()

        assert "AfMode" in str(exc_info.value)
        assert port.applied == [AUTO_REQUESTS[0], AUTO_REQUESTS[1], AUTO_REQUESTS[2], AUTO_REQUESTS[4]]
        assert controller.label(ProParameter.EXPOSURE_COMP) == "0.0"
        assert all(v is AUTO for v in controller.state.values.values())

    def test_mode_change_still_resets_hardware(self):
        """Test leaving pro mode reaches the exposure reset despite the error."""
        port = self.NoAutofocusPort()
        controller = ParameterController(port, mode=CameraMode.PRO)

        with pytest.raises(ControlError):
            controller.select_mode(CameraMode.PHOTO)

        assert controller.mode is CameraMode.PHOTO
        assert port.applied[-1] == CaptureRequest({ControlKey.EXPOSURE_COMPENSATION_INDEX: 0})
