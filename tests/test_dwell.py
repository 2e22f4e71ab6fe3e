from __future__ import annotations

import pytest

from tonalpull.dwell import DwellDetector
from tonalpull.pitch import PitchMapper

_MAPPER = PitchMapper("c")
_TONIC = _MAPPER.map(261.63)
_FIFTH = _MAPPER.map(392.0)
_CHROMATIC = _MAPPER.map(277.18)


def _hold(detector: DwellDetector, position, start: float, end: float, step: float = 0.01):
    fired = []
    t = start
    while t <= end + 1e-9:
        result = detector.update(position, t)
        if result is not None:
            fired.append(result)
        t += step
    return fired


def test_short_hold_does_not_fire() -> None:
    detector = DwellDetector(0.2)
    assert _hold(detector, _TONIC, 0.0, 0.15) == []


def test_long_hold_fires_exactly_once() -> None:
    detector = DwellDetector(0.2)
    assert _hold(detector, _FIFTH, 0.0, 2.0) == [5]


def test_refire_requires_leaving_the_degree() -> None:
    detector = DwellDetector(0.2)
    assert _hold(detector, _TONIC, 0.0, 0.5) == [1]
    detector.update(_CHROMATIC, 0.51)
    assert _hold(detector, _TONIC, 0.52, 1.0) == [1]


def test_changing_degree_restarts_timer() -> None:
    detector = DwellDetector(0.2)
    detector.update(_TONIC, 0.0)
    detector.update(_TONIC, 0.15)
    assert detector.update(_FIFTH, 0.18) is None
    assert detector.state.candidate_degree == 5
    assert detector.state.dwell_start_time == pytest.approx(0.18)
    assert detector.update(_FIFTH, 0.30) is None
    assert detector.update(_FIFTH, 0.40) == 5


def test_chromatic_or_silent_clears_candidate() -> None:
    detector = DwellDetector(0.2)
    detector.update(_TONIC, 0.0)
    detector.update(_CHROMATIC, 0.1)
    assert detector.state.candidate_degree is None
    detector.update(_TONIC, 0.15)
    detector.update(None, 0.2)
    assert detector.state.candidate_degree is None
    assert detector.update(_TONIC, 0.3) is None


def test_zero_threshold_fires_immediately() -> None:
    detector = DwellDetector(0.0)
    assert detector.update(_TONIC, 0.0) == 1
    assert detector.update(_TONIC, 0.01) is None


def test_negative_threshold_rejected() -> None:
    with pytest.raises(ValueError):
        DwellDetector(-1.0)
