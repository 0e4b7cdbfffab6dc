"""
Pro parameter definitions for Viewfinder Service.

Holds the closed set of manual ("pro") parameters, their immutable slider
ranges, and the forward (value -> label) and reverse (label -> slider)
mappings shared by the parameter controller and the presentation layer.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from viewfinder_service.exceptions import InvalidParameterError

logger = logging.getLogger(__name__)

AUTO_LABEL = "AUTO"
INFINITY_LABEL = "∞"
NANOS_PER_SECOND = 1_000_000_000


class ProParameter(str, Enum):
    """Manual parameters that can be driven by the pro slider."""

    NONE = "none"
    ISO = "iso"
    SHUTTER_SPEED = "shutter_speed"
    WHITE_BALANCE = "white_balance"
    MANUAL_FOCUS = "manual_focus"
    EXPOSURE_COMP = "exposure_comp"

    @classmethod
    def parse(cls, name: str) -> "ProParameter":
        """
        Look up a parameter by value or member name, case-insensitively.

        Raises:
            InvalidParameterError: If the name matches no parameter
        """
        key = name.strip().lower()
        for member in cls:
            if key in (member.value, member.name.lower()):
                return member
        valid = ", ".join(m.value for m in cls if m is not cls.NONE)
        raise InvalidParameterError(f"Unknown pro parameter '{name}'. Must be one of: {valid}")


# Order used whenever every parameter is reverted at once
RESET_ORDER: Tuple[ProParameter, ...] = (
    ProParameter.ISO,
    ProParameter.SHUTTER_SPEED,
    ProParameter.WHITE_BALANCE,
    ProParameter.MANUAL_FOCUS,
    ProParameter.EXPOSURE_COMP,
)


@dataclass(frozen=True)
class ParameterValue:
    """Stored value of a pro parameter: automatic, or a manual slider value."""

    manual: Optional[float] = None

    @property
    def is_auto(self) -> bool:
        return self.manual is None

    @classmethod
    def of(cls, value: float) -> "ParameterValue":
        return cls(manual=float(value))

    def __str__(self) -> str:
        return AUTO_LABEL if self.manual is None else f"Manual({self.manual})"


AUTO = ParameterValue()


# ---------- Label formatting ----------

def _format_integer(value: float) -> str:
    return str(int(round(value)))


def _format_shutter(value: float) -> str:
    return f"1/{int(round(value))}"


def _format_kelvin(value: float) -> str:
    return f"{int(round(value))}K"


def _format_focus(value: float) -> str:
    if value == 0:
        return INFINITY_LABEL
    return f"{value:.1f}"


def _format_exposure_comp(value: float) -> str:
    value = value + 0.0  # normalise -0.0
    if value > 0:
        return f"+{value:.1f}"
    return f"{value:.1f}"


@dataclass(frozen=True)
class ParameterRange:
    """
    Immutable slider descriptor for one pro parameter.

    Attributes:
        parameter: The parameter this range belongs to
        title: Human readable slider caption
        min: Lowest slider value
        max: Highest slider value
        step: Slider quantum; every stored manual value is a multiple of it
        default: Slider position shown while the parameter is automatic
        decimals: Decimal places kept after quantization
        unit_format: Formats a slider value as a unit label
    """

    parameter: ProParameter
    title: str
    min: float
    max: float
    step: float
    default: float
    decimals: int
    unit_format: Callable[[float], str] = field(compare=False, repr=False)

    def clamp(self, value: float) -> float:
        return min(max(value, self.min), self.max)

    def quantize(self, raw_value: float) -> float:
        """
        Clamp a raw slider value into range and snap it to the nearest step.

        Args:
            raw_value: Unconstrained slider position

        Returns:
            float: Quantized value inside [min, max]

        Raises:
            InvalidParameterError: If raw_value is NaN or infinite
        """
        if not math.isfinite(raw_value):
            raise InvalidParameterError(
                f"{self.title} slider value must be finite (got {raw_value})"
            )
        steps = round((self.clamp(raw_value) - self.min) / self.step)
        quantized = self.clamp(self.min + steps * self.step)
        return round(quantized, self.decimals) + 0.0

    def label(self, value: float) -> str:
        return self.unit_format(value)


RANGES: Dict[ProParameter, ParameterRange] = {
    ProParameter.ISO: ParameterRange(
        parameter=ProParameter.ISO,
        title="ISO",
        min=100.0,
        max=3200.0,
        step=100.0,
        default=100.0,
        decimals=0,
        unit_format=_format_integer,
    ),
    ProParameter.SHUTTER_SPEED: ParameterRange(
        parameter=ProParameter.SHUTTER_SPEED,
        title="SHUTTER SPEED",
        min=1.0,
        max=1000.0,
        step=1.0,
        default=500.0,
        decimals=0,
        unit_format=_format_shutter,
    ),
    ProParameter.WHITE_BALANCE: ParameterRange(
        parameter=ProParameter.WHITE_BALANCE,
        title="WHITE BALANCE",
        min=2000.0,
        max=8000.0,
        step=100.0,
        default=5500.0,
        decimals=0,
        unit_format=_format_kelvin,
    ),
    ProParameter.MANUAL_FOCUS: ParameterRange(
        parameter=ProParameter.MANUAL_FOCUS,
        title="MANUAL FOCUS",
        min=0.0,
        max=10.0,
        step=0.1,
        default=0.0,
        decimals=1,
        unit_format=_format_focus,
    ),
    ProParameter.EXPOSURE_COMP: ParameterRange(
        parameter=ProParameter.EXPOSURE_COMP,
        title="EXPOSURE COMPENSATION",
        min=-2.0,
        max=2.0,
        step=0.1,
        default=0.0,
        decimals=1,
        unit_format=_format_exposure_comp,
    ),
}


def get_range(param: ProParameter) -> ParameterRange:
    """
    Return the slider range for a concrete parameter.

    Raises:
        InvalidParameterError: If param is NONE
    """
    try:
        return RANGES[param]
    except KeyError:
        raise InvalidParameterError(f"Parameter {param.value} has no slider range") from None


def auto_label(param: ProParameter) -> str:
    """Label shown while a parameter is automatic."""
    if param is ProParameter.EXPOSURE_COMP:
        return get_range(param).label(0.0)
    return AUTO_LABEL


def format_label(param: ProParameter, value: ParameterValue) -> str:
    """Forward mapping: stored value -> unit-formatted label."""
    if value.is_auto:
        return auto_label(param)
    return get_range(param).label(value.manual)


def parse_label(param: ProParameter, label: str) -> float:
    """
    Reverse mapping: label -> slider position.

    Exact inverse of format_label for every quantized value. "AUTO" and the
    infinity sentinel resolve to the range default, as does any label that
    cannot be read as a number.

    Args:
        param: Parameter the label belongs to
        label: Label previously produced by format_label

    Returns:
        float: Quantized slider position
    """
    rng = get_range(param)
    text = label.strip()
    if text in (AUTO_LABEL, INFINITY_LABEL, ""):
        return rng.default

    if param is ProParameter.SHUTTER_SPEED:
        text = text.removeprefix("1/")
    elif param is ProParameter.WHITE_BALANCE:
        text = text.removesuffix("K")

    try:
        return rng.quantize(float(text))
    except ValueError:
        logger.debug(f"Unreadable {param.value} label '{label}', using default {rng.default}")
        return rng.default


def exposure_time_ns(denominator: float) -> int:
    """
    Exposure time in nanoseconds for a shutter speed of 1/denominator s.

    Raises:
        InvalidParameterError: If denominator is below 1
    """
    speed = int(denominator)
    if speed < 1:
        raise InvalidParameterError(f"Shutter denominator must be >= 1 (got {denominator})")
    return NANOS_PER_SECOND // speed


def ev_index(value: float) -> int:
    """Exposure compensation index at half-stop granularity."""
    return int(round(value * 2))
