from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

from tonalpull.audio import (
    AutocorrelationPitchEstimator,
    FftChromaExtractor,
    ensure_frame_contract,
    iter_frames,
    read_wav,
    rms,
)
from tonalpull.errors import InvalidConfigError

SR = 44_100


def _sine(hz: float, size: int = 2048, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(size) / SR
    return (amplitude * np.sin(2 * np.pi * hz * t)).astype(np.float32)


def test_frame_contract_flattens_and_cleans() -> None:
    frame = ensure_frame_contract([[0.5, np.nan], [np.inf, -0.25]])
    assert frame.dtype == np.float32
    assert frame.tolist() == [0.5, 0.0, 0.0, -0.25]


def test_rms() -> None:
    assert rms([3.0, -3.0]) == pytest.approx(3.0)
    assert rms([]) == 0.0


class TestAutocorrelation:
    @pytest.mark.parametrize("hz", [110.0, 220.0, 440.0])
    def test_sine_pitch(self, hz: float) -> None:
        estimate = AutocorrelationPitchEstimator()(_sine(hz), SR)
        assert estimate is not None
        assert estimate.hz == pytest.approx(hz, rel=0.02)
        assert estimate.clarity > 0.5

    def test_silence_has_no_pitch(self) -> None:
        assert AutocorrelationPitchEstimator()(np.zeros(2048, dtype=np.float32), SR) is None

    def test_noise_is_unclear(self) -> None:
        noise = np.random.default_rng(1).normal(scale=0.3, size=2048).astype(np.float32)
        estimate = AutocorrelationPitchEstimator()(noise, SR)
        assert estimate is None or estimate.clarity < 0.5

    def test_tiny_frame(self) -> None:
        assert AutocorrelationPitchEstimator()(np.ones(3, dtype=np.float32), SR) is None


def test_chroma_peaks_at_pitch_class() -> None:
    chroma = FftChromaExtractor()(_sine(440.0, size=4096), SR)
    assert chroma is not None
    assert chroma.shape == (12,)
    assert int(np.argmax(chroma)) == 9


def test_chroma_of_a_triad() -> None:
    frame = _sine(261.63, 8192) + _sine(329.63, 8192) + _sine(392.0, 8192)
    chroma = FftChromaExtractor()(frame, SR)
    assert chroma is not None
    assert set(np.argsort(chroma)[-3:].tolist()) == {0, 4, 7}


def test_read_wav_mixes_to_mono(tmp_path: Path) -> None:
    path = tmp_path / "stereo.wav"
    stereo = np.stack([np.full(100, 0.5), np.full(100, -0.25)], axis=1)
    sf.write(str(path), stereo, SR, subtype="FLOAT")
    samples, sample_rate = read_wav(path)
    assert sample_rate == SR
    assert samples.shape == (100,)
    assert samples[0] == pytest.approx(0.125)


def test_read_wav_missing_file(tmp_path: Path) -> None:
    with pytest.raises(InvalidConfigError):
        read_wav(tmp_path / "nope.wav")


def test_iter_frames() -> None:
    samples = np.arange(10, dtype=np.float32)
    frames = list(iter_frames(samples, 4))
    assert [f.tolist() for f in frames] == [[0, 1, 2, 3], [4, 5, 6, 7]]
    assert len(list(iter_frames(samples, 4, hop_size=2))) == 4
    with pytest.raises(InvalidConfigError):
        list(iter_frames(samples, 0))
