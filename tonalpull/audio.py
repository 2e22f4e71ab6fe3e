from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from scipy.signal import correlate  # type: ignore[import]

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("tonalpull.audio")

FloatArray = NDArray[np.float32]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[float] | FloatArray

SAMPLE_RATE = 44_100
_C4_HZ = 261.625565


@dataclass(frozen=True, slots=True)
class PitchEstimate:
    hz: float
    clarity: float


class PitchEstimator(Protocol):
    def __call__(self, samples: FloatArray, sample_rate: int) -> PitchEstimate | None: ...


class ChromaExtractor(Protocol):
    def __call__(self, samples: FloatArray, sample_rate: int) -> NDArray[np.float64] | None: ...


def ensure_frame_contract(frame: AudioNumbers) -> FloatArray:
    """Flatten to mono float32 and replace non-finite samples with silence."""

    mono: FloatArray = np.asarray(frame, dtype=np.float32).reshape(-1)
    if mono.size == 0:
        return mono
    if not np.all(np.isfinite(mono)):
        mono = np.nan_to_num(mono, nan=0.0, posinf=0.0, neginf=0.0)
    return mono


def rms(frame: AudioNumbers) -> float:
    mono = ensure_frame_contract(frame)
    if mono.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(mono, dtype=np.float64))))


def _parabolic_offset(left: float, centre: float, right: float) -> float:
    denom = left - 2.0 * centre + right
    if denom == 0.0:
        return 0.0
    return 0.5 * (left - right) / denom


class AutocorrelationPitchEstimator:
    """Time-domain autocorrelation pitch estimate within a frequency band.

    Clarity is the normalised autocorrelation at the chosen lag, so a clean
    periodic tone scores close to 1 and noise close to 0.
    """

    def __init__(
        self,
        *,
        min_hz: float = 80.0,
        max_hz: float = 600.0,
        peak_ratio: float = 0.3,
    ) -> None:
        self.min_hz = min_hz
        self.max_hz = max_hz
        self.peak_ratio = peak_ratio

    def __call__(self, samples: FloatArray, sample_rate: int) -> PitchEstimate | None:
        frame = ensure_frame_contract(samples).astype(np.float64)
        size = frame.size
        if size < 4 or sample_rate <= 0:
            return None
        frame = frame - float(np.mean(frame))
        corr = correlate(frame, frame, mode="full", method="fft")[size - 1 :]
        energy = float(corr[0])
        if energy <= 0.0:
            return None

        min_lag = max(1, int(sample_rate // self.max_hz))
        max_lag = min(int(sample_rate // self.min_hz), size - 2)
        if max_lag <= min_lag:
            return None

        window = corr[min_lag - 1 : max_lag + 2]
        centre = window[1:-1]
        is_peak = (centre > window[:-2]) & (centre > window[2:]) & (centre > energy * self.peak_ratio)
        peak_indexes = np.flatnonzero(is_peak)
        if peak_indexes.size == 0:
            return None

        best = int(peak_indexes[np.argmax(centre[peak_indexes])]) + min_lag
        offset = _parabolic_offset(float(corr[best - 1]), float(corr[best]), float(corr[best + 1]))
        lag = best + offset
        if lag <= 0:
            return None
        clarity = float(np.clip(corr[best] / energy, 0.0, 1.0))
        return PitchEstimate(hz=sample_rate / lag, clarity=clarity)


class FftChromaExtractor:
    """Fold a windowed magnitude spectrum into 12 pitch classes (index 0 = C)."""

    def __init__(self, *, min_hz: float = 60.0, max_hz: float = 5_000.0) -> None:
        self.min_hz = min_hz
        self.max_hz = max_hz

    def __call__(self, samples: FloatArray, sample_rate: int) -> NDArray[np.float64] | None:
        frame = ensure_frame_contract(samples).astype(np.float64)
        if frame.size < 16 or sample_rate <= 0:
            return None
        spectrum = np.abs(np.fft.rfft(frame * np.hanning(frame.size)))
        freqs = np.fft.rfftfreq(frame.size, d=1.0 / sample_rate)
        band = (freqs >= self.min_hz) & (freqs <= self.max_hz)
        if not np.any(band):
            return None
        pitch_classes = np.round(12.0 * np.log2(freqs[band] / _C4_HZ)).astype(int) % 12
        chroma = np.bincount(pitch_classes, weights=np.square(spectrum[band]), minlength=12)
        return chroma.astype(np.float64)


def read_wav(path: str | Path) -> tuple[FloatArray, int]:
    """Read an audio file as mono float32 samples plus its sample rate."""

    target = Path(path)
    if not target.exists():
        raise InvalidConfigError(f"Audio file not found: {target}")
    data, sample_rate = sf.read(str(target), dtype="float32", always_2d=True)
    mono: FloatArray = np.asarray(np.mean(data, axis=1), dtype=np.float32)
    _LOGGER.debug("Read %d samples at %d Hz from %s", mono.size, sample_rate, target)
    return mono, int(sample_rate)


def iter_frames(
    samples: AudioNumbers,
    frame_size: int,
    *,
    hop_size: int | None = None,
) -> Iterator[FloatArray]:
    """Yield consecutive full frames; a trailing partial frame is dropped."""

    if frame_size <= 0:
        raise InvalidConfigError("frame_size must be positive")
    hop = hop_size or frame_size
    if hop <= 0:
        raise InvalidConfigError("hop_size must be positive")
    mono = ensure_frame_contract(samples)
    for start in range(0, mono.size - frame_size + 1, hop):
        yield mono[start : start + frame_size]
