from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from . import harmony
from .config import KeyName, PitchConfig, normalize_key

_LOGGER = logging.getLogger("tonalpull.pitch")

# Scale degrees sorted by their semitone offset within the octave.
_SCALE: tuple[tuple[int, int], ...] = tuple(
    sorted(((offset, degree) for degree, offset in harmony.SEMITONE_OFFSETS.items()))
)


@dataclass(frozen=True, slots=True)
class HarmonicPosition:
    """Where a frequency lands in the seven-degree model."""

    x: float
    y: float
    in_key: bool
    degree: int | None
    adjacent_degrees: tuple[int, ...] = ()
    t: float = 0.0
    cents_offset: float = 0.0

    @property
    def is_neutral(self) -> bool:
        return self.in_key and self.degree is None


def neutral_position() -> HarmonicPosition:
    x, y = harmony.position_of(1)
    return HarmonicPosition(x=x, y=y, in_key=True, degree=None)


def fold_to_octave(semitones: float, wrap_tolerance: float = 0.5) -> float:
    """Fold a semitone distance into [0, 12), snapping values just under 12 to 0."""
    folded = ((semitones % 12.0) + 12.0) % 12.0
    if 12.0 - folded < wrap_tolerance:
        folded = 0.0
    return folded


def bracket(octave_semitones: float) -> tuple[int, int, float, float]:
    """Return (lower, upper, distance-to-lower, gap) for a folded pitch."""
    lower_offset, lower = _SCALE[-1]
    upper_offset, upper = _SCALE[0]
    for index, (offset, degree) in enumerate(_SCALE):
        if offset <= octave_semitones:
            lower_offset, lower = offset, degree
            upper_offset, upper = _SCALE[(index + 1) % len(_SCALE)]
    gap = (upper_offset - lower_offset) % 12
    if gap <= 0:
        gap += 12
    distance = (octave_semitones - lower_offset) % 12.0
    return lower, upper, distance, float(gap)


class PitchMapper:
    """Maps frequencies in Hz onto the harmonic model of one key."""

    def __init__(
        self,
        key: KeyName | str = "c",
        *,
        in_key_threshold: float = 0.25,
        wrap_tolerance: float = 0.5,
    ) -> None:
        self._key = normalize_key(key)
        self._root_hz = harmony.ROOT_FREQUENCIES[self._key]
        self._in_key_threshold = in_key_threshold
        self._wrap_tolerance = wrap_tolerance

    @classmethod
    def from_config(cls, key: KeyName | str, config: PitchConfig) -> "PitchMapper":
        return cls(
            key,
            in_key_threshold=config.in_key_threshold,
            wrap_tolerance=config.wrap_tolerance,
        )

    @property
    def key(self) -> KeyName:
        return self._key

    @property
    def root_hz(self) -> float:
        return self._root_hz

    def semitones_from_root(self, hz: float) -> float | None:
        if not math.isfinite(hz) or hz <= 0:
            return None
        semitones = 12.0 * math.log2(hz / self._root_hz)
        if not math.isfinite(semitones):
            return None
        return semitones

    def map(self, hz: float) -> HarmonicPosition:
        semitones = self.semitones_from_root(hz)
        if semitones is None:
            _LOGGER.debug("Neutral fallback for frequency %r", hz)
            return neutral_position()

        octave = fold_to_octave(semitones, self._wrap_tolerance)
        lower, upper, distance, gap = bracket(octave)
        t = distance / gap
        to_upper = gap - distance
        dist_to_nearest = min(distance, to_upper)
        # Positive when the pitch sits above the nearest scale degree.
        cents = (distance if distance <= to_upper else -to_upper) * 100.0

        if dist_to_nearest < self._in_key_threshold:
            degree = lower if distance <= to_upper else upper
            x, y = harmony.position_of(degree)
            return HarmonicPosition(
                x=x,
                y=y,
                in_key=True,
                degree=degree,
                t=t,
                cents_offset=cents,
            )

        lower_x, lower_y = harmony.position_of(lower)
        upper_x, upper_y = harmony.position_of(upper)
        return HarmonicPosition(
            x=lower_x + (upper_x - lower_x) * t,
            y=lower_y + (upper_y - lower_y) * t,
            in_key=False,
            degree=None,
            adjacent_degrees=(lower, upper),
            t=t,
            cents_offset=cents,
        )
