"""Fixed seven-degree harmonic model.

Everything here is an immutable lookup table built once at import time and
indexed by degree. The tension engine, pitch mapper and chord classifier read
from these tables and never mutate them.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from .config import KEY_NAMES, KeyName, normalize_key
from .errors import InvalidDegreeError

DEGREES: tuple[int, ...] = (1, 2, 3, 4, 5, 6, 7)
TONIC_DEGREES: frozenset[int] = frozenset({1, 3, 5})


@dataclass(frozen=True, slots=True)
class DegreeProfile:
    degree: int
    inherent_stability: float


@dataclass(frozen=True, slots=True)
class ResolutionRule:
    source: int
    target: int
    pull_strength: float


DEGREE_PROFILES: tuple[DegreeProfile, ...] = (
    DegreeProfile(1, 1.0),
    DegreeProfile(2, 0.3),
    DegreeProfile(3, 0.8),
    DegreeProfile(4, 0.2),
    DegreeProfile(5, 0.7),
    DegreeProfile(6, 0.4),
    DegreeProfile(7, 0.1),
)

RESOLUTION_RULES: tuple[ResolutionRule, ...] = (
    ResolutionRule(7, 1, 1.0),
    ResolutionRule(4, 3, 0.8),
    ResolutionRule(2, 1, 0.5),
    ResolutionRule(2, 3, 0.4),
    ResolutionRule(6, 5, 0.5),
    ResolutionRule(6, 1, 0.3),
)

# Octave-4 root frequencies for the twelve chromatic keys.
ROOT_FREQUENCIES: Mapping[KeyName, float] = MappingProxyType(
    {
        "c": 261.63,
        "c#": 277.18,
        "d": 293.66,
        "d#": 311.13,
        "e": 329.63,
        "f": 349.23,
        "f#": 369.99,
        "g": 392.00,
        "g#": 415.30,
        "a": 440.00,
        "a#": 466.16,
        "b": 493.88,
    }
)

KEY_SEMITONES: Mapping[KeyName, int] = MappingProxyType(
    {name: index for index, name in enumerate(KEY_NAMES)}
)

SEMITONE_OFFSETS: Mapping[int, int] = MappingProxyType(
    {1: 0, 2: 2, 3: 4, 4: 5, 5: 7, 6: 9, 7: 11}
)

# Canonical spatial layout: tonic at the centre, stable degrees close by.
DEGREE_POSITIONS: Mapping[int, tuple[float, float]] = MappingProxyType(
    {
        1: (50.0, 50.0),
        3: (35.0, 45.0),
        5: (65.0, 45.0),
        2: (25.0, 30.0),
        4: (20.0, 60.0),
        6: (80.0, 60.0),
        7: (75.0, 25.0),
    }
)

_STABILITY: Mapping[int, float] = MappingProxyType(
    {profile.degree: profile.inherent_stability for profile in DEGREE_PROFILES}
)


def _index_rules(by_source: bool) -> Mapping[int, tuple[ResolutionRule, ...]]:
    index: dict[int, list[ResolutionRule]] = {degree: [] for degree in DEGREES}
    for rule in RESOLUTION_RULES:
        index[rule.source if by_source else rule.target].append(rule)
    return MappingProxyType({degree: tuple(rules) for degree, rules in index.items()})


_RULES_FROM: Mapping[int, tuple[ResolutionRule, ...]] = _index_rules(by_source=True)
_RULES_INTO: Mapping[int, tuple[ResolutionRule, ...]] = _index_rules(by_source=False)


def check_degree(degree: int) -> int:
    """Return the degree unchanged or fail fast on a contract violation."""
    if isinstance(degree, bool) or not isinstance(degree, int) or degree not in _STABILITY:
        raise InvalidDegreeError(f"Scale degree must be an int in 1..7, got {degree!r}")
    return degree


def stability_of(degree: int) -> float:
    return _STABILITY[check_degree(degree)]


def instability_of(degree: int) -> float:
    return 1.0 - stability_of(degree)


def resolution_targets_of(degree: int) -> frozenset[tuple[int, float]]:
    """Degrees that ``degree`` resolves to, with their pull strengths."""
    return frozenset(
        (rule.target, rule.pull_strength) for rule in _RULES_FROM[check_degree(degree)]
    )


def resolution_sources_of(degree: int) -> tuple[ResolutionRule, ...]:
    """Rules whose target is ``degree``, in table order."""
    return _RULES_INTO[check_degree(degree)]


def root_frequency(key: str) -> float:
    return ROOT_FREQUENCIES[normalize_key(key)]


def key_semitone(key: str) -> int:
    return KEY_SEMITONES[normalize_key(key)]


def semitone_offset(degree: int) -> int:
    return SEMITONE_OFFSETS[check_degree(degree)]


def position_of(degree: int) -> tuple[float, float]:
    return DEGREE_POSITIONS[check_degree(degree)]


def degree_frequency(degree: int, key: str) -> float:
    """Octave-4 frequency of a degree; the leading tone sits an octave lower."""
    freq = root_frequency(key) * 2.0 ** (semitone_offset(degree) / 12.0)
    if degree == 7:
        freq /= 2.0
    return freq
