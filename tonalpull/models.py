from __future__ import annotations

import enum
import logging
import os
import threading
import zipfile
from collections.abc import Sequence
from pathlib import Path

import numpy as np
from numpy.typing import NDArray

from .errors import ModelNotAvailableError

_LOGGER = logging.getLogger("tonalpull.models")
_MODEL_ENV = "TONALPULL_CHORD_MODEL"
_MODEL_DIR_ENV = "TONALPULL_MODEL_DIR"
_DEFAULT_MODEL_FILE = "chord_presence.npz"

INPUT_SIZE = 12
OUTPUT_SIZE = 7

FloatArray = NDArray[np.float64]


def default_model_dir() -> Path:
    configured = os.environ.get(_MODEL_DIR_ENV, "").strip()
    if configured:
        return Path(configured).expanduser()
    return Path.home() / ".cache" / "tonalpull" / "models"


def default_model_path() -> Path:
    configured = os.environ.get(_MODEL_ENV, "").strip()
    if configured:
        return Path(configured).expanduser()
    return default_model_dir() / _DEFAULT_MODEL_FILE


def _sigmoid(values: FloatArray) -> FloatArray:
    return 1.0 / (1.0 + np.exp(-np.clip(values, -60.0, 60.0)))


class ChordPresenceModel:
    """Dense network mapping a 12-bin chroma vector to 7 degree-presence probabilities."""

    def __init__(self, layers: Sequence[tuple[FloatArray, FloatArray]]) -> None:
        if not layers:
            raise ModelNotAvailableError("Chord model has no layers")
        expected_in = INPUT_SIZE
        checked: list[tuple[FloatArray, FloatArray]] = []
        for index, (weights, bias) in enumerate(layers):
            try:
                w = np.asarray(weights, dtype=np.float64)
                b = np.asarray(bias, dtype=np.float64).reshape(-1)
            except (TypeError, ValueError) as exc:
                raise ModelNotAvailableError(f"Layer {index} is not numeric: {exc}") from exc
            if w.ndim != 2 or w.shape[0] != expected_in or w.shape[1] != b.shape[0]:
                raise ModelNotAvailableError(
                    f"Layer {index} has shape {w.shape}/{b.shape}, expected ({expected_in}, n)/(n,)"
                )
            if not (np.all(np.isfinite(w)) and np.all(np.isfinite(b))):
                raise ModelNotAvailableError(f"Layer {index} contains non-finite weights")
            checked.append((w, b))
            expected_in = w.shape[1]
        if expected_in != OUTPUT_SIZE:
            raise ModelNotAvailableError(
                f"Chord model outputs {expected_in} values, expected {OUTPUT_SIZE}"
            )
        self._layers = tuple(checked)

    @classmethod
    def load(cls, path: str | Path) -> "ChordPresenceModel":
        """Load weights from an ``.npz`` archive holding w0, b0, w1, b1, ..."""
        target = Path(path)
        if not target.exists():
            raise ModelNotAvailableError(f"Chord model not found at {target}")
        try:
            with np.load(target, allow_pickle=False) as archive:
                layers: list[tuple[FloatArray, FloatArray]] = []
                index = 0
                while f"w{index}" in archive.files:
                    if f"b{index}" not in archive.files:
                        raise ModelNotAvailableError(f"Chord model is missing b{index}")
                    layers.append((archive[f"w{index}"], archive[f"b{index}"]))
                    index += 1
        except (OSError, ValueError, zipfile.BadZipFile) as exc:
            raise ModelNotAvailableError(f"Failed to read chord model {target}: {exc}") from exc
        return cls(layers)

    def save(self, path: str | Path) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        arrays: dict[str, FloatArray] = {}
        for index, (weights, bias) in enumerate(self._layers):
            arrays[f"w{index}"] = weights
            arrays[f"b{index}"] = bias
        with target.open("wb") as handle:
            np.savez(handle, **arrays)
        return target

    def predict(self, features: FloatArray) -> FloatArray:
        activations = np.asarray(features, dtype=np.float64).reshape(-1)
        if activations.shape[0] != INPUT_SIZE:
            raise ValueError(f"Expected {INPUT_SIZE} features, got {activations.shape[0]}")
        last = len(self._layers) - 1
        for index, (weights, bias) in enumerate(self._layers):
            activations = activations @ weights + bias
            if index < last:
                activations = np.maximum(activations, 0.0)
        return _sigmoid(activations)


class ModelStatus(enum.Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ModelSlot:
    """Holds an optional chord model and its load state.

    Frame processing only ever calls :attr:`ready` and :attr:`model`; both are
    non-blocking, so a background load never stalls a tick.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path is not None else default_model_path()
        self._status = ModelStatus.UNLOADED
        self._model: ChordPresenceModel | None = None
        self._error: BaseException | None = None
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @classmethod
    def with_model(cls, model: ChordPresenceModel) -> "ModelSlot":
        slot = cls(path=Path("<memory>"))
        slot._model = model
        slot._status = ModelStatus.READY
        return slot

    @property
    def path(self) -> Path:
        return self._path

    @property
    def status(self) -> ModelStatus:
        return self._status

    @property
    def ready(self) -> bool:
        return self._status is ModelStatus.READY

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def model(self) -> ChordPresenceModel | None:
        return self._model if self.ready else None

    def _begin(self) -> bool:
        with self._lock:
            if self._status in (ModelStatus.LOADING, ModelStatus.READY):
                return False
            self._status = ModelStatus.LOADING
            self._error = None
            return True

    def _load(self) -> bool:
        try:
            model = ChordPresenceModel.load(self._path)
        except ModelNotAvailableError as exc:
            _LOGGER.warning("Chord model unavailable, using templates: %s", exc)
            with self._lock:
                self._error = exc
                self._status = ModelStatus.FAILED
            return False
        with self._lock:
            self._model = model
            self._status = ModelStatus.READY
        _LOGGER.info("Loaded chord model from %s", self._path)
        return True

    def load(self) -> bool:
        """Load synchronously; returns True when the model is ready."""
        if not self._begin():
            return self.ready
        return self._load()

    def load_async(self) -> None:
        """Start loading on a daemon thread and return immediately."""
        if not self._begin():
            return
        self._thread = threading.Thread(target=self._load, name="tonalpull-model", daemon=True)
        self._thread.start()

    def wait(self, timeout: float | None = None) -> bool:
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
        return self.ready
