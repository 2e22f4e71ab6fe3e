from __future__ import annotations

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from tonalpull.config import EngineConfig, normalize_key
from tonalpull.errors import InvalidConfigError

_ENV_NAMES = (
    "TONALPULL_KEY",
    "TONALPULL_DECAY_RATE",
    "TONALPULL_TENSION_NORMALIZATION",
    "TONALPULL_DWELL_SECONDS",
    "TONALPULL_NOISE_FLOOR",
    "TONALPULL_CHORD_MODEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    config = EngineConfig()
    assert config.key == "c"
    assert config.mode == "pitch"
    assert config.tension.decay_rate == pytest.approx(0.15)
    assert config.tension.normalization == pytest.approx(7.0)
    assert config.dwell.threshold_seconds == pytest.approx(0.2)
    assert config.frame.noise_floor == pytest.approx(0.002)
    assert config.chords.establish_threshold == 3
    assert config.chords.model_path is None


@pytest.mark.parametrize(
    ("spelling", "expected"),
    [("C", "c"), (" f# ", "f#"), ("Bb", "a#"), ("eb", "d#")],
)
def test_key_spellings(spelling: str, expected: str) -> None:
    assert normalize_key(spelling) == expected
    assert EngineConfig.build(key=spelling).key == expected


def test_unknown_key() -> None:
    with pytest.raises(InvalidConfigError):
        normalize_key("h")
    with pytest.raises(InvalidConfigError):
        EngineConfig.build(key="h")


def test_hold_must_cover_establish() -> None:
    with pytest.raises(InvalidConfigError):
        EngineConfig.build(chords={"establish_threshold": 5, "hold_frames": 3})


def test_unknown_fields_are_rejected() -> None:
    with pytest.raises(InvalidConfigError):
        EngineConfig.build(tempo=120)


def test_config_is_frozen() -> None:
    config = EngineConfig()
    with pytest.raises(ValidationError):
        config.key = "d"  # type: ignore[misc]


def test_from_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TONALPULL_KEY", "G")
    monkeypatch.setenv("TONALPULL_DECAY_RATE", "0.3")
    monkeypatch.setenv("TONALPULL_DWELL_SECONDS", "0.5")
    monkeypatch.setenv("TONALPULL_NOISE_FLOOR", "0.01")
    monkeypatch.setenv("TONALPULL_CHORD_MODEL", str(tmp_path / "m.npz"))
    config = EngineConfig.from_env()
    assert config.key == "g"
    assert config.tension.decay_rate == pytest.approx(0.3)
    assert config.dwell.threshold_seconds == pytest.approx(0.5)
    assert config.frame.noise_floor == pytest.approx(0.01)
    assert config.chords.model_path == tmp_path / "m.npz"


def test_overrides_beat_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TONALPULL_KEY", "g")
    assert EngineConfig.from_env(key="d").key == "d"


def test_unparseable_env_is_ignored(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("TONALPULL_DECAY_RATE", "fast")
    with caplog.at_level(logging.WARNING, logger="tonalpull.config"):
        config = EngineConfig.from_env()
    assert config.tension.decay_rate == pytest.approx(0.15)
    assert "TONALPULL_DECAY_RATE" in caplog.text


def test_invalid_env_value_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TONALPULL_DECAY_RATE", "-1")
    with pytest.raises(InvalidConfigError):
        EngineConfig.from_env()


def test_with_key() -> None:
    config = EngineConfig(mode="chord").with_key("Eb")
    assert config.key == "d#"
    assert config.mode == "chord"
