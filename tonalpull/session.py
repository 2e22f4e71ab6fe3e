from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from . import tension as tension_engine
from .audio import (
    AudioNumbers,
    AutocorrelationPitchEstimator,
    ChromaExtractor,
    FftChromaExtractor,
    PitchEstimate,
    PitchEstimator,
    ensure_frame_contract,
    rms,
)
from .chords import ChordClassifier, ChordReading
from .config import ChordQuality, EngineConfig, InputMode, KeyName, normalize_key
from .dwell import DwellDetector
from .errors import InvalidConfigError
from .harmony import check_degree
from .models import ModelSlot
from .pitch import HarmonicPosition, PitchMapper
from .tension import ResolutionEvent, TensionState

_LOGGER = logging.getLogger("tonalpull.session")


@dataclass(frozen=True)
class FrameOutput:
    """Everything a renderer or synth needs from one tick."""

    degree: int | None
    chord_label: str | None
    quality: ChordQuality | None
    tension_snapshot: dict[int, float]
    global_tension: float
    resolution_events: tuple[ResolutionEvent, ...] = ()
    position: HarmonicPosition | None = None
    activated_degree: int | None = None
    hz: float | None = None
    rms: float = 0.0
    silent: bool = False
    chord: ChordReading | None = field(default=None, compare=False)


class Session:
    """Owns all mutable harmonic state for one listening session.

    One call to :meth:`process_frame` per analysis tick. Ticks must not
    overlap; nothing here is synchronised.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        pitch_estimator: PitchEstimator | None = None,
        chroma_extractor: ChromaExtractor | None = None,
        model_slot: ModelSlot | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        frame_cfg = self._config.frame
        self._pitch_estimator: PitchEstimator = pitch_estimator or AutocorrelationPitchEstimator(
            min_hz=frame_cfg.min_hz,
            max_hz=frame_cfg.max_hz,
        )
        self._chroma_extractor: ChromaExtractor = chroma_extractor or FftChromaExtractor()
        self._model_slot = model_slot
        self._mode: InputMode = self._config.mode
        self._last_timestamp: float | None = None
        self._build_key_state(self._config.key)

    def _build_key_state(self, key: KeyName) -> None:
        self.tension_state = TensionState()
        self._mapper = PitchMapper.from_config(key, self._config.pitch)
        self._dwell = DwellDetector(self._config.dwell.threshold_seconds)
        self._classifier = ChordClassifier(
            key,
            self._config.chords,
            model_slot=self._model_slot,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def key(self) -> KeyName:
        return self._config.key

    @property
    def mode(self) -> InputMode:
        return self._mode

    @property
    def mapper(self) -> PitchMapper:
        return self._mapper

    @property
    def dwell(self) -> DwellDetector:
        return self._dwell

    @property
    def classifier(self) -> ChordClassifier:
        return self._classifier

    def set_key(self, key: str) -> None:
        """Re-root the model; tension from the old key is discarded."""
        canonical = normalize_key(key)
        _LOGGER.info("Key changed %s -> %s; resetting harmonic state", self.key, canonical)
        self._config = self._config.with_key(canonical)
        self._build_key_state(canonical)

    def set_mode(self, mode: InputMode) -> None:
        if mode not in ("pitch", "chord"):
            raise InvalidConfigError(f"Unknown input mode: {mode!r}")
        if mode != self._mode:
            self._dwell.reset()
            self._classifier.reset()
        self._mode = mode

    def activate_degree(self, degree: int) -> list[ResolutionEvent]:
        """Play a degree now; dwell triggers and explicit requests share this path."""
        check_degree(degree)
        events = tension_engine.activate(
            self.tension_state,
            degree,
            epsilon=self._config.tension.epsilon,
        )
        for event in events:
            _LOGGER.debug(
                "Resolved %d -> %d (%.3f)", event.source, event.target, event.amount
            )
        return events

    def advance(self, delta_time: float) -> None:
        """Decay tension without processing audio (e.g. from a render loop)."""
        tension_engine.decay_with(self.tension_state, delta_time, self._config.tension)

    def resolution_hints(self) -> dict[int, float]:
        return tension_engine.resolution_hints(
            self.tension_state,
            min_tension=self._config.tension.hint_min_tension,
        )

    def _elapsed(self, timestamp: float) -> float:
        last = self._last_timestamp
        self._last_timestamp = timestamp
        if last is None:
            return 0.0
        return max(0.0, timestamp - last)

    def _accept_pitch(self, estimate: PitchEstimate | None) -> float | None:
        if estimate is None:
            return None
        frame_cfg = self._config.frame
        if estimate.clarity < frame_cfg.min_clarity:
            return None
        if not frame_cfg.min_hz <= estimate.hz <= frame_cfg.max_hz:
            return None
        return estimate.hz

    def _output(
        self,
        level: float,
        *,
        silent: bool = False,
        reading: ChordReading | None = None,
        position: HarmonicPosition | None = None,
        hz: float | None = None,
        fired: int | None = None,
        events: Sequence[ResolutionEvent] = (),
    ) -> FrameOutput:
        return FrameOutput(
            degree=position.degree if position is not None else None,
            chord_label=reading.label if reading is not None else None,
            quality=reading.quality if reading is not None else None,
            tension_snapshot=self.tension_state.snapshot(),
            global_tension=self.tension_state.global_tension,
            resolution_events=tuple(events),
            position=position,
            activated_degree=fired,
            hz=hz,
            rms=level,
            silent=silent,
            chord=reading,
        )

    def process_frame(
        self,
        samples: AudioNumbers,
        sample_rate: int,
        timestamp: float,
    ) -> FrameOutput:
        self.advance(self._elapsed(timestamp))
        frame = ensure_frame_contract(samples)
        level = rms(frame)

        if level < self._config.frame.noise_floor:
            self._dwell.update(None, timestamp)
            return self._output(level, silent=True)

        if self._mode == "chord":
            reading = self._classifier.classify(self._chroma_extractor(frame, sample_rate))
            return self._output(level, reading=reading)

        hz = self._accept_pitch(self._pitch_estimator(frame, sample_rate))
        if hz is None:
            self._dwell.update(None, timestamp)
            return self._output(level)

        position = self._mapper.map(hz)
        fired = self._dwell.update(position, timestamp)
        events = self.activate_degree(fired) if fired is not None else []
        return self._output(level, position=position, hz=hz, fired=fired, events=events)
