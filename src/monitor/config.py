"""Task configuration: operating mode, fit-quality switch and the fixed processing constants."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from spectrum.peak_counter import PeakSearchConfig

logger = logging.getLogger(__name__)


class Mode(Enum):
    """Operating mode, fixed for the lifetime of the task."""

    BASELINE = "physics"
    PEDESTAL = "pedestal"
    LED = "LED"


# parameter keys in the order they are evaluated; a later "on" wins
MODE_KEYS = (("pedestal", Mode.PEDESTAL), ("LED", Mode.LED), ("physics", Mode.BASELINE))
FIT_QUALITY_KEY = "chi2"


def _is_on(value: str) -> bool:
    return "on" in str(value)


@dataclass(frozen=True)
class MonitorConfig:
    """Settings read once at startup."""

    mode: Mode = Mode.BASELINE
    check_fit_quality: bool = False
    # low-gain amplitudes are scaled to the high-gain range
    gain_ratio: float = 16.0
    # amplitudes at or below this (ADC counts) do not enter occupancy maps
    occupancy_threshold: float = 10.0
    fit_quality_scale: float = 0.2
    peak_search: PeakSearchConfig = field(default_factory=PeakSearchConfig)

    def __post_init__(self) -> None:
        if not isinstance(self.mode, Mode):
            raise ValueError(f"Unknown mode {self.mode!r}")
        if self.gain_ratio <= 0:
            raise ValueError("gain_ratio must be positive")

    @classmethod
    def from_parameters(cls, params: Mapping[str, str], **overrides: object) -> "MonitorConfig":
        """
        Build a configuration from string task parameters.

        Recognised keys are ``pedestal``, ``LED``, ``physics`` and ``chi2``;
        a value containing ``"on"`` switches the option on.
        """
        mode = Mode.BASELINE
        for key, candidate in MODE_KEYS:
            if key in params:
                logger.info("Working in %s mode requested: %s", key, params[key])
                if _is_on(params[key]):
                    mode = candidate
        check_fit_quality = FIT_QUALITY_KEY in params and _is_on(params[FIT_QUALITY_KEY])
        if check_fit_quality:
            logger.info("Scan chi2 distributions")
        known = {key for key, _ in MODE_KEYS} | {FIT_QUALITY_KEY}
        for key in params:
            if key not in known:
                logger.debug("Ignoring unknown task parameter %s", key)
        return cls(mode=mode, check_fit_quality=check_fit_quality, **overrides)  # type: ignore[arg-type]
