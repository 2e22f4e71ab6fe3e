"""Harmonic tension/resolution state machine.

Playing an unstable degree adds tension to it; playing a degree that an
unstable degree resolves to releases part of that tension. Tension decays over
time and the global tension is re-derived from what is left.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from . import harmony
from .config import TensionConfig


@dataclass(frozen=True, slots=True)
class ResolutionEvent:
    source: int
    target: int
    amount: float


@dataclass
class TensionState:
    """Sparse per-degree tension plus the derived global tension."""

    unresolved_tensions: dict[int, float] = field(default_factory=dict)
    global_tension: float = 0.0

    def tension_of(self, degree: int) -> float:
        return self.unresolved_tensions.get(harmony.check_degree(degree), 0.0)

    def snapshot(self) -> dict[int, float]:
        return dict(self.unresolved_tensions)


def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def activate(
    state: TensionState,
    degree: int,
    *,
    epsilon: float = 0.0,
) -> list[ResolutionEvent]:
    """Play ``degree``: release tension it resolves, then add its own instability."""
    harmony.check_degree(degree)
    events: list[ResolutionEvent] = []

    for rule in harmony.resolution_sources_of(degree):
        unresolved = state.unresolved_tensions.get(rule.source, 0.0)
        if unresolved <= 0.0:
            continue
        released = unresolved * rule.pull_strength
        remaining = unresolved - released
        if remaining <= epsilon:
            del state.unresolved_tensions[rule.source]
        else:
            state.unresolved_tensions[rule.source] = remaining
        state.global_tension = _clamp01(state.global_tension - released)
        events.append(ResolutionEvent(source=rule.source, target=degree, amount=released))

    instability = harmony.instability_of(degree)
    if instability > 0.0:
        current = state.unresolved_tensions.get(degree, 0.0)
        state.unresolved_tensions[degree] = _clamp01(current + instability)
        state.global_tension = _clamp01(state.global_tension + instability)

    return events


def decay(
    state: TensionState,
    delta_time: float,
    *,
    decay_rate: float = 0.15,
    normalization: float = 7.0,
    epsilon: float = 1e-3,
) -> None:
    """Bleed tension linearly over ``delta_time`` seconds."""
    if delta_time < 0:
        raise ValueError(f"delta_time must be >= 0, got {delta_time}")
    if normalization <= 0:
        raise ValueError(f"normalization must be > 0, got {normalization}")

    amount = decay_rate * delta_time
    if amount > 0.0:
        for degree, tension in list(state.unresolved_tensions.items()):
            remaining = max(0.0, tension - amount)
            if remaining <= epsilon:
                del state.unresolved_tensions[degree]
            else:
                state.unresolved_tensions[degree] = remaining

    # Global tension is recomputed from the per-degree values even when dt is 0.
    total = sum(state.unresolved_tensions.values())
    state.global_tension = _clamp01(total / normalization)


def decay_with(state: TensionState, delta_time: float, config: TensionConfig) -> None:
    decay(
        state,
        delta_time,
        decay_rate=config.decay_rate,
        normalization=config.normalization,
        epsilon=config.epsilon,
    )


def resolution_hints(state: TensionState, *, min_tension: float = 0.05) -> dict[int, float]:
    """How strongly each degree is wanted as a resolution target right now."""
    hints: dict[int, float] = {}
    for degree, tension in state.unresolved_tensions.items():
        if tension <= min_tension:
            continue
        for target, pull in harmony.resolution_targets_of(degree):
            hints[target] = min(1.0, hints.get(target, 0.0) + tension * pull)
    return hints


def effective_stability(state: TensionState, degree: int) -> float:
    """Inherent stability scaled down by the degree's unresolved tension."""
    return harmony.stability_of(degree) * (1.0 - state.tension_of(degree))
