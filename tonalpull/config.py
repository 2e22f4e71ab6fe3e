from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal, Mapping, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("tonalpull.config")

KeyName = Literal["c", "c#", "d", "d#", "e", "f", "f#", "g", "g#", "a", "a#", "b"]
ChordQuality = Literal["major", "minor", "dim", "seventh", "sus", "unknown"]
InputMode = Literal["pitch", "chord"]

KEY_NAMES: tuple[KeyName, ...] = get_args(KeyName)
CHORD_QUALITIES: tuple[ChordQuality, ...] = get_args(ChordQuality)

_FLAT_ALIASES: Mapping[str, KeyName] = {
    "db": "c#",
    "eb": "d#",
    "gb": "f#",
    "ab": "g#",
    "bb": "a#",
}


def normalize_key(value: str) -> KeyName:
    """Accept 'C', 'f#', 'Bb' style spellings and return the canonical key name."""
    cleaned = value.strip().lower()
    cleaned = _FLAT_ALIASES.get(cleaned, cleaned)
    if cleaned not in KEY_NAMES:
        raise InvalidConfigError(f"Unknown key: {value!r}. Valid: {list(KEY_NAMES)}")
    return cleaned  # type: ignore[return-value]


class TensionConfig(BaseModel):
    """Tension accumulation and decay tunables."""

    decay_rate: float = Field(default=0.15, ge=0.0)
    # How many simultaneously tense degrees count as maximal unrest.
    normalization: float = Field(default=7.0, gt=0.0)
    epsilon: float = Field(default=1e-3, ge=0.0, lt=1.0)
    hint_min_tension: float = Field(default=0.05, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class PitchConfig(BaseModel):
    in_key_threshold: float = Field(default=0.25, gt=0.0, le=1.0)
    wrap_tolerance: float = Field(default=0.5, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class DwellConfig(BaseModel):
    threshold_seconds: float = Field(default=0.2, ge=0.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class ChordConfig(BaseModel):
    """Chord classifier scoring and hysteresis tunables."""

    establish_threshold: int = Field(default=3, ge=1)
    hold_frames: int = Field(default=8, ge=1)
    release_step: int = Field(default=2, ge=1)
    hysteresis_bonus: float = Field(default=0.1, ge=0.0)
    outside_penalty: float = Field(default=0.3, ge=0.0)
    score_floor: float = Field(default=0.15)
    probability_threshold: float = Field(default=0.65, gt=0.0, lt=1.0)
    match_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    activation_threshold: int = Field(default=2, ge=1)
    activation_margin: int = Field(default=2, ge=0)
    model_path: Path | None = None

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _hold_covers_establish(self) -> "ChordConfig":
        if self.hold_frames < self.establish_threshold:
            raise ValueError("hold_frames must be >= establish_threshold")
        return self


class FrameConfig(BaseModel):
    """Per-tick gating applied by the frame driver."""

    noise_floor: float = Field(default=0.002, ge=0.0)
    min_clarity: float = Field(default=0.3, ge=0.0, le=1.0)
    min_hz: float = Field(default=80.0, gt=0.0)
    max_hz: float = Field(default=600.0, gt=0.0)
    sample_rate: int = Field(default=44_100, gt=0)
    frame_size: int = Field(default=2048, ge=64)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _band_is_ordered(self) -> "FrameConfig":
        if self.min_hz >= self.max_hz:
            raise ValueError("min_hz must be below max_hz")
        return self


class EngineConfig(BaseModel):
    """Top-level configuration for a tonalpull session."""

    key: KeyName = "c"
    mode: InputMode = "pitch"
    tension: TensionConfig = Field(default_factory=TensionConfig)
    pitch: PitchConfig = Field(default_factory=PitchConfig)
    dwell: DwellConfig = Field(default_factory=DwellConfig)
    chords: ChordConfig = Field(default_factory=ChordConfig)
    frame: FrameConfig = Field(default_factory=FrameConfig)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _normalize_key(cls, data: object) -> object:
        if isinstance(data, Mapping) and isinstance(data.get("key"), str):
            merged: dict[str, Any] = dict(data)
            try:
                merged["key"] = normalize_key(merged["key"])
            except InvalidConfigError:
                return data
            return merged
        return data

    @classmethod
    def build(cls, **values: Any) -> "EngineConfig":
        """Validate keyword values, raising InvalidConfigError on failure."""
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise InvalidConfigError(str(exc)) from exc

    @classmethod
    def from_env(cls, **overrides: Any) -> "EngineConfig":
        """Build a config from TONALPULL_* environment variables plus explicit overrides."""
        values: dict[str, Any] = {}
        key = os.environ.get("TONALPULL_KEY", "").strip()
        if key:
            values["key"] = key

        tension: dict[str, Any] = {}
        decay_rate = _env_float("TONALPULL_DECAY_RATE")
        if decay_rate is not None:
            tension["decay_rate"] = decay_rate
        normalization = _env_float("TONALPULL_TENSION_NORMALIZATION")
        if normalization is not None:
            tension["normalization"] = normalization
        if tension:
            values["tension"] = tension

        dwell_seconds = _env_float("TONALPULL_DWELL_SECONDS")
        if dwell_seconds is not None:
            values["dwell"] = {"threshold_seconds": dwell_seconds}

        noise_floor = _env_float("TONALPULL_NOISE_FLOOR")
        if noise_floor is not None:
            values["frame"] = {"noise_floor": noise_floor}

        model_path = os.environ.get("TONALPULL_CHORD_MODEL", "").strip()
        if model_path:
            values["chords"] = {"model_path": Path(model_path).expanduser()}

        values.update(overrides)
        return cls.build(**values)

    def with_key(self, key: str) -> "EngineConfig":
        return self.model_copy(update={"key": normalize_key(key)})


def _env_float(name: str) -> float | None:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        _LOGGER.warning("Ignoring unparseable %s=%r", name, value)
        return None
