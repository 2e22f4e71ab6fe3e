from __future__ import annotations

import logging
from dataclasses import dataclass

from .pitch import HarmonicPosition

_LOGGER = logging.getLogger("tonalpull.dwell")


@dataclass
class DwellState:
    candidate_degree: int | None = None
    dwell_start_time: float = 0.0


class DwellDetector:
    """Turns a sustained in-key pitch into a single discrete note trigger.

    A degree fires once after it has been held for ``threshold_seconds``. The
    candidate is then cleared, so a held tone cannot re-fire until the signal
    leaves the degree and comes back.
    """

    def __init__(self, threshold_seconds: float = 0.2) -> None:
        if threshold_seconds < 0:
            raise ValueError(f"threshold_seconds must be >= 0, got {threshold_seconds}")
        self._threshold = threshold_seconds
        self._state = DwellState()
        self._fired_degree: int | None = None

    @property
    def state(self) -> DwellState:
        return self._state

    @property
    def threshold_seconds(self) -> float:
        return self._threshold

    def reset(self) -> None:
        self._state = DwellState()
        self._fired_degree = None

    def update(self, position: HarmonicPosition | None, now: float) -> int | None:
        degree = position.degree if position is not None else None
        if degree is None:
            self.reset()
            return None

        if degree == self._fired_degree:
            # Still holding the note that already fired.
            return None
        self._fired_degree = None

        if degree != self._state.candidate_degree:
            self._state = DwellState(candidate_degree=degree, dwell_start_time=now)
            if self._threshold > 0:
                return None

        if now - self._state.dwell_start_time >= self._threshold:
            _LOGGER.debug(
                "Dwell fired for degree %d after %.3fs",
                degree,
                now - self._state.dwell_start_time,
            )
            self._state = DwellState()
            self._fired_degree = degree
            return degree
        return None
