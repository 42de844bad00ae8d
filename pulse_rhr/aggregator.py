"""Measurement window bookkeeping and RHR reduction."""

import logging
from dataclasses import dataclass, field

from .decoder import HeartRateReading

logger = logging.getLogger(__name__)

DEFAULT_DURATION_SECONDS = 60


@dataclass
class MeasurementWindow:
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    elapsed_seconds: int = 0
    readings: list[HeartRateReading] = field(default_factory=list)


@dataclass(frozen=True)
class AggregateResult:
    """Outcome of a finished window: an estimate, or empty if nothing arrived."""

    estimate: int | None
    sample_count: int

    @classmethod
    def empty(cls) -> "AggregateResult":
        return cls(estimate=None, sample_count=0)

    @property
    def is_empty(self) -> bool:
        return self.estimate is None


class SampleAggregator:
    """Accumulates readings for one window and reduces them to a mean bpm."""

    def __init__(self) -> None:
        self._window: MeasurementWindow | None = None
        self._result: AggregateResult | None = None

    @property
    def window(self) -> MeasurementWindow | None:
        return self._window

    @property
    def active(self) -> bool:
        """True while a window is open and not yet finalized."""
        return self._window is not None and self._result is None

    def reset(self, duration_seconds: int = DEFAULT_DURATION_SECONDS) -> None:
        """Open a fresh window, discarding any previous readings."""
        if duration_seconds <= 0:
            raise ValueError(f"Window duration must be positive, got {duration_seconds}")
        self._window = MeasurementWindow(duration_seconds=duration_seconds)
        self._result = None

    def record(self, reading: HeartRateReading) -> None:
        if not self.active:
            return
        self._window.readings.append(reading)

    def tick(self, elapsed_seconds: int) -> None:
        if not self.active:
            return
        self._window.elapsed_seconds = max(0, min(elapsed_seconds, self._window.duration_seconds))

    def finalize(self) -> AggregateResult:
        """Close the window and return the truncated mean bpm.

        Later calls return the same result until the next reset.
        """
        if self._result is not None:
            return self._result

        readings = self._window.readings if self._window else []
        if not readings:
            self._result = AggregateResult.empty()
        else:
            # bpm values are unsigned, so floor division truncates toward zero
            total = sum(r.bpm for r in readings)
            self._result = AggregateResult(estimate=total // len(readings), sample_count=len(readings))

        logger.debug("Window finalized: %s", self._result)
        return self._result

    def abort(self) -> None:
        """Discard the current window and its partial readings."""
        if self._window is not None:
            logger.debug("Window aborted with %d reading(s) discarded", len(self._window.readings))
        self._window = None
        self._result = None
