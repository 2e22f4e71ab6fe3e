"""Chord recognition from 12-bin pitch-class energy.

Two strategies produce a per-frame match: template scoring and a learned
degree-presence model. Either way the match goes through :class:`ChordTracker`,
a debounced filter that only switches the displayed chord after the new label
has persisted for several consecutive frames.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Mapping

import numpy as np
from numpy.typing import NDArray

from . import harmony
from .config import ChordConfig, ChordQuality, KeyName, normalize_key
from .models import ModelSlot

_LOGGER = logging.getLogger("tonalpull.chords")

FloatArray = NDArray[np.float64]
Strategy = Literal["template", "learned"]


@dataclass(frozen=True, slots=True)
class ChordTemplate:
    label: str
    quality: ChordQuality
    degrees: tuple[int, ...]

    @property
    def pitch_classes(self) -> tuple[int, ...]:
        return tuple(harmony.semitone_offset(degree) for degree in self.degrees)


CHORD_TEMPLATES: tuple[ChordTemplate, ...] = (
    ChordTemplate("I", "major", (1, 3, 5)),
    ChordTemplate("ii", "minor", (2, 4, 6)),
    ChordTemplate("iii", "minor", (3, 5, 7)),
    ChordTemplate("IV", "major", (4, 6, 1)),
    ChordTemplate("V", "major", (5, 7, 2)),
    ChordTemplate("vi", "minor", (6, 1, 3)),
    ChordTemplate("vii°", "dim", (7, 2, 4)),
    ChordTemplate("V7", "seventh", (5, 7, 2, 4)),
)

TEMPLATES_BY_LABEL: Mapping[str, ChordTemplate] = MappingProxyType(
    {template.label: template for template in CHORD_TEMPLATES}
)

_NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")
_QUALITY_SUFFIX: Mapping[ChordQuality, str] = MappingProxyType(
    {"major": "", "minor": "m", "dim": "dim", "seventh": "7", "sus": "sus", "unknown": "?"}
)


def chord_name(label: str, key: KeyName | str) -> str:
    """Absolute chord name for a template label, e.g. ``V7`` in g -> ``D7``."""
    template = TEMPLATES_BY_LABEL.get(label)
    if template is None:
        return label
    root_pc = (harmony.key_semitone(key) + harmony.semitone_offset(template.degrees[0])) % 12
    return f"{_NOTE_NAMES[root_pc]}{_QUALITY_SUFFIX[template.quality]}"


@dataclass(frozen=True, slots=True)
class ChordMatch:
    """A single frame's classification before hysteresis."""

    label: str
    quality: ChordQuality
    degrees: tuple[int, ...]
    score: float


@dataclass(frozen=True, slots=True)
class ChordReading:
    """The chord on display after hysteresis, plus what this frame saw."""

    label: str | None
    quality: ChordQuality | None
    degrees: tuple[int, ...] = ()
    strategy: Strategy = "template"
    frame_match: ChordMatch | None = None

    @property
    def is_empty(self) -> bool:
        return self.label is None


def prepare_chroma(chroma: Any, key: KeyName | str) -> FloatArray | None:
    """Validate, rotate to the key root and max-normalise a 12-bin vector.

    Returns None for anything that is not twelve finite, non-negative values
    with some energy in them.
    """
    try:
        vector = np.asarray(chroma, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError):
        return None
    if vector.shape[0] != 12 or not np.all(np.isfinite(vector)) or np.any(vector < 0):
        return None
    peak = float(np.max(vector))
    if peak <= 0.0:
        return None
    rotated = np.roll(vector, -harmony.key_semitone(key))
    return rotated / peak


def template_scores(
    rotated: FloatArray,
    *,
    outside_penalty: float = 0.3,
    current_label: str | None = None,
    hysteresis_bonus: float = 0.0,
) -> dict[str, float]:
    scores: dict[str, float] = {}
    all_bins = np.arange(12)
    for template in CHORD_TEMPLATES:
        inside = np.array(template.pitch_classes)
        outside = np.setdiff1d(all_bins, inside)
        chord_energy = float(np.mean(rotated[inside]))
        outside_energy = float(np.mean(rotated[outside]))
        score = chord_energy - outside_penalty * outside_energy
        if template.label == current_label:
            score += hysteresis_bonus
        scores[template.label] = score
    return scores


def match_template(
    rotated: FloatArray,
    *,
    outside_penalty: float = 0.3,
    score_floor: float = 0.15,
    current_label: str | None = None,
    hysteresis_bonus: float = 0.0,
) -> ChordMatch | None:
    scores = template_scores(
        rotated,
        outside_penalty=outside_penalty,
        current_label=current_label,
        hysteresis_bonus=hysteresis_bonus,
    )
    # First template wins ties, so I beats its relatives on equal evidence.
    best = max(CHORD_TEMPLATES, key=lambda template: scores[template.label])
    best_score = scores[best.label]
    if best_score < score_floor:
        return None
    return ChordMatch(best.label, best.quality, best.degrees, best_score)


def match_degree_set(
    detected: Sequence[int],
    *,
    match_threshold: float = 0.6,
) -> ChordMatch | None:
    """Match detected degrees to a template by averaged precision and recall."""
    found = frozenset(detected)
    if not found:
        return None
    best: ChordTemplate | None = None
    best_score = -1.0
    for template in CHORD_TEMPLATES:
        overlap = len(found & frozenset(template.degrees))
        precision = overlap / len(found)
        recall = overlap / len(template.degrees)
        score = (precision + recall) / 2.0
        if score > best_score:
            best, best_score = template, score
    ordered = tuple(sorted(found))
    if best is not None and best_score > match_threshold:
        return ChordMatch(best.label, best.quality, best.degrees, best_score)
    return ChordMatch("-".join(str(d) for d in ordered), "unknown", ordered, best_score)


@dataclass
class ChordClassificationState:
    current_chord: str | None = None
    current_quality: ChordQuality | None = None
    current_degrees: tuple[int, ...] = ()
    current_frames: int = 0
    candidate_chord: str | None = None
    candidate_quality: ChordQuality | None = None
    candidate_degrees: tuple[int, ...] = ()
    candidate_frames: int = 0
    degree_counters: dict[int, int] = field(
        default_factory=lambda: {degree: 0 for degree in harmony.DEGREES}
    )


class ChordTracker:
    """Debounced chord state machine shared by both strategies."""

    def __init__(
        self,
        *,
        establish_threshold: int = 3,
        hold_frames: int = 8,
        release_step: int = 2,
        state: ChordClassificationState | None = None,
    ) -> None:
        self._establish = establish_threshold
        self._hold = max(hold_frames, establish_threshold)
        self._release = release_step
        self.state = state or ChordClassificationState()

    @property
    def established(self) -> bool:
        return self.state.current_chord is not None

    def _clear_candidate(self) -> None:
        state = self.state
        state.candidate_chord = None
        state.candidate_quality = None
        state.candidate_degrees = ()
        state.candidate_frames = 0

    def _promote_candidate(self) -> None:
        state = self.state
        _LOGGER.debug("Chord established: %s", state.candidate_chord)
        state.current_chord = state.candidate_chord
        state.current_quality = state.candidate_quality
        state.current_degrees = state.candidate_degrees
        state.current_frames = self._establish
        self._clear_candidate()

    def _drop_current(self) -> None:
        state = self.state
        _LOGGER.debug("Chord released: %s", state.current_chord)
        state.current_chord = None
        state.current_quality = None
        state.current_degrees = ()
        state.current_frames = 0

    def update(self, match: ChordMatch | None) -> None:
        state = self.state
        if match is None:
            if state.candidate_chord is not None:
                state.candidate_frames -= 1
                if state.candidate_frames <= 0:
                    self._clear_candidate()
            if state.current_chord is not None:
                state.current_frames -= self._release
                if state.current_frames <= 0:
                    self._drop_current()
            return

        if match.label == state.current_chord:
            state.current_frames = min(state.current_frames + 1, self._hold)
            self._clear_candidate()
            return

        if match.label == state.candidate_chord:
            state.candidate_frames += 1
        else:
            state.candidate_chord = match.label
            state.candidate_quality = match.quality
            state.candidate_degrees = match.degrees
            state.candidate_frames = 1

        if state.candidate_frames >= self._establish:
            self._promote_candidate()

    def reset(self) -> None:
        self.state = ChordClassificationState()


class ChordClassifier:
    """Classifies chroma frames into diatonic chords for one key."""

    def __init__(
        self,
        key: KeyName | str = "c",
        config: ChordConfig | None = None,
        *,
        model_slot: ModelSlot | None = None,
    ) -> None:
        self._key = normalize_key(key)
        self._config = config or ChordConfig()
        self._model_slot = model_slot
        self._tracker = ChordTracker(
            establish_threshold=self._config.establish_threshold,
            hold_frames=self._config.hold_frames,
            release_step=self._config.release_step,
        )

    @property
    def key(self) -> KeyName:
        return self._key

    @property
    def state(self) -> ChordClassificationState:
        return self._tracker.state

    @property
    def strategy(self) -> Strategy:
        slot = self._model_slot
        return "learned" if slot is not None and slot.ready else "template"

    def set_key(self, key: KeyName | str) -> None:
        self._key = normalize_key(key)
        self.reset()

    def reset(self) -> None:
        self._tracker.reset()

    def _smooth_degrees(self, probabilities: FloatArray) -> tuple[int, ...]:
        cfg = self._config
        ceiling = cfg.activation_threshold + cfg.activation_margin
        counters = self._tracker.state.degree_counters
        detected: list[int] = []
        for degree, probability in zip(harmony.DEGREES, probabilities):
            step = 1 if probability >= cfg.probability_threshold else -1
            counters[degree] = min(ceiling, max(0, counters[degree] + step))
            if counters[degree] >= cfg.activation_threshold:
                detected.append(degree)
        return tuple(detected)

    def _decay_counters(self) -> None:
        counters = self._tracker.state.degree_counters
        for degree in counters:
            counters[degree] = max(0, counters[degree] - 1)

    def match_frame(self, chroma: Any) -> tuple[ChordMatch | None, Strategy]:
        """Classify one frame without updating the chord tracker.

        On the learned path this still steps the per-degree smoothing counters.
        """
        strategy = self.strategy
        rotated = prepare_chroma(chroma, self._key)
        if rotated is None:
            if strategy == "learned":
                self._decay_counters()
            return None, strategy

        cfg = self._config
        slot = self._model_slot
        model = slot.model if slot is not None else None
        if strategy == "learned" and model is not None:
            probabilities = model.predict(rotated)
            detected = self._smooth_degrees(probabilities)
            return match_degree_set(detected, match_threshold=cfg.match_threshold), strategy

        match = match_template(
            rotated,
            outside_penalty=cfg.outside_penalty,
            score_floor=cfg.score_floor,
            current_label=self._tracker.state.current_chord,
            hysteresis_bonus=cfg.hysteresis_bonus,
        )
        return match, "template"

    def classify(self, chroma: Any) -> ChordReading:
        match, strategy = self.match_frame(chroma)
        self._tracker.update(match)
        state = self._tracker.state
        return ChordReading(
            label=state.current_chord,
            quality=state.current_quality,
            degrees=state.current_degrees,
            strategy=strategy,
            frame_match=match,
        )
