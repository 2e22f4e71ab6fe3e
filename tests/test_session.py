from __future__ import annotations

import numpy as np
import pytest

from tonalpull import harmony
from tonalpull.audio import PitchEstimate
from tonalpull.config import EngineConfig
from tonalpull.errors import InvalidConfigError, InvalidDegreeError
from tonalpull.session import Session
from tonalpull.tension import ResolutionEvent

LOUD = np.full(2048, 0.1, dtype=np.float32)
SILENT = np.zeros(2048, dtype=np.float32)


class FakePitch:
    def __init__(self, hz: float | None, clarity: float = 0.9) -> None:
        self.hz = hz
        self.clarity = clarity
        self.calls = 0

    def __call__(self, samples, sample_rate):
        self.calls += 1
        if self.hz is None:
            return None
        return PitchEstimate(hz=self.hz, clarity=self.clarity)


class FakeChroma:
    def __init__(self, *degrees: int) -> None:
        self.vector = np.zeros(12)
        for degree in degrees:
            self.vector[harmony.semitone_offset(degree)] = 1.0
        self.calls = 0

    def __call__(self, samples, sample_rate):
        self.calls += 1
        return self.vector


def _pitch_session(hz: float | None, **kwargs) -> tuple[Session, FakePitch]:
    estimator = FakePitch(hz, **kwargs)
    return Session(EngineConfig(), pitch_estimator=estimator), estimator


def test_silent_frame_is_gated() -> None:
    session, estimator = _pitch_session(440.0)
    output = session.process_frame(SILENT, 44_100, 0.0)
    assert output.silent is True
    assert output.degree is None
    assert output.chord_label is None
    assert output.rms == 0.0
    assert estimator.calls == 0


def test_held_pitch_fires_after_dwell() -> None:
    session, _ = _pitch_session(493.88)
    first = session.process_frame(LOUD, 44_100, 0.0)
    assert first.degree == 7
    assert first.activated_degree is None
    assert session.process_frame(LOUD, 44_100, 0.1).activated_degree is None
    fired = session.process_frame(LOUD, 44_100, 0.25)
    assert fired.activated_degree == 7
    assert fired.tension_snapshot == {7: pytest.approx(0.9)}
    assert fired.hz == pytest.approx(493.88)
    # Holding the same note does not fire again.
    assert session.process_frame(LOUD, 44_100, 0.6).activated_degree is None


def test_leading_tone_resolves_to_tonic() -> None:
    session, estimator = _pitch_session(493.88)
    for timestamp in (0.0, 0.25):
        session.process_frame(LOUD, 44_100, timestamp)
    estimator.hz = 261.63
    session.process_frame(LOUD, 44_100, 0.3)
    output = session.process_frame(LOUD, 44_100, 0.55)
    assert output.activated_degree == 1
    assert len(output.resolution_events) == 1
    event = output.resolution_events[0]
    assert (event.source, event.target) == (7, 1)
    assert event.amount == pytest.approx(0.9 - 0.15 * 0.3)
    assert output.tension_snapshot == {}


def test_unclear_pitch_clears_dwell() -> None:
    session, estimator = _pitch_session(493.88)
    session.process_frame(LOUD, 44_100, 0.0)
    estimator.clarity = 0.1
    unclear = session.process_frame(LOUD, 44_100, 0.1)
    assert unclear.degree is None
    assert unclear.hz is None
    assert session.dwell.state.candidate_degree is None


def test_out_of_band_pitch_is_ignored() -> None:
    session, _ = _pitch_session(1_200.0)
    output = session.process_frame(LOUD, 44_100, 0.0)
    assert output.hz is None
    assert output.position is None


def test_out_of_key_pitch_reports_position_without_degree() -> None:
    session, _ = _pitch_session(277.18)
    output = session.process_frame(LOUD, 44_100, 0.0)
    assert output.degree is None
    assert output.position is not None
    assert output.position.in_key is False
    assert output.position.adjacent_degrees == (1, 2)


def test_explicit_activation_and_hints() -> None:
    session = Session()
    events = session.activate_degree(4)
    assert events == []
    assert session.tension_state.tension_of(4) == pytest.approx(0.8)
    assert session.resolution_hints() == {3: pytest.approx(0.64)}
    resolved = session.activate_degree(3)
    assert resolved == [ResolutionEvent(source=4, target=3, amount=pytest.approx(0.64))]


def test_invalid_degree_is_rejected() -> None:
    with pytest.raises(InvalidDegreeError):
        Session().activate_degree(8)


def test_advance_decays_tension() -> None:
    session = Session()
    session.activate_degree(7)
    session.advance(2.0)
    assert session.tension_state.tension_of(7) == pytest.approx(0.6)
    assert session.tension_state.global_tension == pytest.approx(0.6 / 7)


def test_key_change_resets_state() -> None:
    session = Session()
    session.activate_degree(7)
    session.set_key("G")
    assert session.key == "g"
    assert session.tension_state.snapshot() == {}
    assert session.mapper.key == "g"
    assert session.classifier.key == "g"


def test_invalid_mode_is_rejected() -> None:
    with pytest.raises(InvalidConfigError):
        Session().set_mode("drums")  # type: ignore[arg-type]


def test_chord_mode_reports_established_chord() -> None:
    chroma = FakeChroma(4, 6, 1)
    session = Session(EngineConfig(mode="chord"), chroma_extractor=chroma)
    outputs = [session.process_frame(LOUD, 44_100, i * 0.05) for i in range(3)]
    assert [o.chord_label for o in outputs] == [None, None, "IV"]
    assert outputs[-1].quality == "major"
    assert outputs[-1].degree is None
    assert outputs[-1].chord is not None
    assert outputs[-1].chord.strategy == "template"


def test_silence_skips_chord_classification() -> None:
    chroma = FakeChroma(1, 3, 5)
    session = Session(EngineConfig(mode="chord"), chroma_extractor=chroma)
    for i in range(3):
        session.process_frame(LOUD, 44_100, i * 0.05)
    output = session.process_frame(SILENT, 44_100, 0.2)
    assert output.silent is True
    assert output.chord_label is None
    assert chroma.calls == 3
    assert session.classifier.state.current_chord == "I"


def test_switching_mode_resets_dwell() -> None:
    session, _ = _pitch_session(493.88)
    session.process_frame(LOUD, 44_100, 0.0)
    session.set_mode("chord")
    assert session.mode == "chord"
    assert session.dwell.state.candidate_degree is None
