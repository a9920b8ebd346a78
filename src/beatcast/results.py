"""
Typed analysis results.

Each analysis pass fills exactly one result struct; ``AnalysisResults``
holds one optional slot per pass plus the always-known file facts. The
timeline builder consumes whichever slots are populated. An empty array in a
populated slot means the pass ran and found nothing ("no signal").

Per-frame arrays are indexed by analysis frame; frame ``i`` is centered at
``i * hop_size / sample_rate`` seconds. Matrices are ``(frames, dims)``.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np


def _empty() -> np.ndarray:
    return np.zeros(0, dtype=np.float64)


@dataclass
class RhythmResult:
    beat_times: np.ndarray = field(default_factory=_empty)
    beat_confidence: np.ndarray = field(default_factory=_empty)
    downbeat_times: np.ndarray = field(default_factory=_empty)
    downbeat_confidence: np.ndarray = field(default_factory=_empty)
    # Local tempo estimate per frame, in BPM
    tempo_curve: np.ndarray = field(default_factory=_empty)
    tempo_bpm: float = 0.0


@dataclass
class OnsetResult:
    onset_times: np.ndarray = field(default_factory=_empty)
    onset_strength: np.ndarray = field(default_factory=_empty)
    onset_rate: float = 0.0
    # Normalized onset-strength curve, one value per frame
    novelty: np.ndarray = field(default_factory=_empty)


@dataclass
class SilenceResult:
    """First and last non-silent frame, or None when the file is all silence."""
    start_frame: Optional[int] = None
    stop_frame: Optional[int] = None


@dataclass
class LoudnessResult:
    loudness: np.ndarray = field(default_factory=_empty)
    energy: np.ndarray = field(default_factory=_empty)
    rms_db: np.ndarray = field(default_factory=_empty)


@dataclass
class SpectralResult:
    """Outputs of the shared spectral pass. Branches that were not needed stay None."""
    centroid: Optional[np.ndarray] = None
    flux: Optional[np.ndarray] = None
    complexity: Optional[np.ndarray] = None
    contrast: Optional[np.ndarray] = None
    rolloff: Optional[np.ndarray] = None
    hfc: Optional[np.ndarray] = None
    mfcc: Optional[np.ndarray] = None
    bands_mel: Optional[np.ndarray] = None
    bands_bark: Optional[np.ndarray] = None
    bands_erb: Optional[np.ndarray] = None
    chroma: Optional[np.ndarray] = None
    key: Optional[str] = None
    scale: Optional[str] = None
    key_strength: float = 0.0
    chords: Optional[List[str]] = None
    chord_strength: Optional[np.ndarray] = None
    dissonance: Optional[np.ndarray] = None
    inharmonicity: Optional[np.ndarray] = None
    pitch: Optional[np.ndarray] = None
    pitch_confidence: Optional[np.ndarray] = None
    tuning_hz: Optional[float] = None


@dataclass
class MelodyResult:
    pitch: np.ndarray = field(default_factory=_empty)
    hop_size: int = 128


@dataclass
class EnvelopeResult:
    envelope: np.ndarray = field(default_factory=_empty)
    # (time, log10 attack seconds) per detected attack
    attacks: List[tuple] = field(default_factory=list)
    # (time, decay seconds) per detected decay
    decays: List[tuple] = field(default_factory=list)


@dataclass
class QualityResult:
    click_times: List[float] = field(default_factory=list)
    discontinuity_times: List[float] = field(default_factory=list)
    noise_burst_times: List[float] = field(default_factory=list)
    # (start time, duration) per clipped run
    saturation_runs: List[tuple] = field(default_factory=list)
    hum_hz: Optional[float] = None


@dataclass
class AnalysisResults:
    """Everything the timeline builder needs for one file.

    Attributes:
        filename: Source file path as given on input.
        duration: Duration in seconds; always known.
        sample_rate: Analysis sample rate.
        channels: Channel count of the source file.
        hop_size: Hop used by all frame-level passes except melody.
    """

    filename: str
    duration: float
    sample_rate: int
    channels: int
    hop_size: int
    rhythm: Optional[RhythmResult] = None
    onset: Optional[OnsetResult] = None
    silence: Optional[SilenceResult] = None
    loudness: Optional[LoudnessResult] = None
    spectral: Optional[SpectralResult] = None
    melody: Optional[MelodyResult] = None
    envelope: Optional[EnvelopeResult] = None
    quality: Optional[QualityResult] = None

    def frame_time(self, frame_index: int, hop_size: Optional[int] = None) -> float:
        hop = self.hop_size if hop_size is None else hop_size
        return float(frame_index) * hop / self.sample_rate
