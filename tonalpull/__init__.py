from __future__ import annotations

from .audio import (
    SAMPLE_RATE,
    AutocorrelationPitchEstimator,
    FftChromaExtractor,
    PitchEstimate,
    read_wav,
)
from .capture import FrameLoop, MicrophoneCapture
from .chords import (
    CHORD_TEMPLATES,
    ChordClassificationState,
    ChordClassifier,
    ChordMatch,
    ChordReading,
    ChordTemplate,
    ChordTracker,
    chord_name,
)
from .config import (
    ChordConfig,
    ChordQuality,
    DwellConfig,
    EngineConfig,
    FrameConfig,
    InputMode,
    KeyName,
    PitchConfig,
    TensionConfig,
)
from .dwell import DwellDetector, DwellState
from .errors import (
    CaptureError,
    InvalidConfigError,
    InvalidDegreeError,
    ModelNotAvailableError,
    TonalPullError,
)
from .harmony import (
    DEGREE_PROFILES,
    RESOLUTION_RULES,
    DegreeProfile,
    ResolutionRule,
    degree_frequency,
    resolution_targets_of,
    root_frequency,
    semitone_offset,
    stability_of,
)
from .logging_utils import configure_logging as _configure_logging
from .models import ChordPresenceModel, ModelSlot, ModelStatus
from .pitch import HarmonicPosition, PitchMapper
from .session import FrameOutput, Session
from .tension import (
    ResolutionEvent,
    TensionState,
    activate,
    decay,
    effective_stability,
    resolution_hints,
)

__all__ = [
    "SAMPLE_RATE",
    "AutocorrelationPitchEstimator",
    "CHORD_TEMPLATES",
    "CaptureError",
    "ChordClassificationState",
    "ChordClassifier",
    "ChordConfig",
    "ChordMatch",
    "ChordPresenceModel",
    "ChordQuality",
    "ChordReading",
    "ChordTemplate",
    "ChordTracker",
    "DEGREE_PROFILES",
    "DegreeProfile",
    "DwellConfig",
    "DwellDetector",
    "DwellState",
    "EngineConfig",
    "FftChromaExtractor",
    "FrameConfig",
    "FrameLoop",
    "FrameOutput",
    "HarmonicPosition",
    "InputMode",
    "InvalidConfigError",
    "InvalidDegreeError",
    "KeyName",
    "MicrophoneCapture",
    "ModelNotAvailableError",
    "ModelSlot",
    "ModelStatus",
    "PitchConfig",
    "PitchEstimate",
    "PitchMapper",
    "RESOLUTION_RULES",
    "ResolutionEvent",
    "ResolutionRule",
    "Session",
    "TensionConfig",
    "TensionState",
    "TonalPullError",
    "activate",
    "chord_name",
    "decay",
    "degree_frequency",
    "effective_stability",
    "read_wav",
    "resolution_hints",
    "resolution_targets_of",
    "root_frequency",
    "semitone_offset",
    "stability_of",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
