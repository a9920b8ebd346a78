"""
Beatcast - Audio Feature Event Streaming

Analyzes an audio file offline and replays its musical features as a
real-time stream of timestamped events over UDP multicast, so visuals,
lighting and other receivers can follow the music as if it were playing.

This package provides tools for:
- Audio decoding and resampling (soundfile, librosa)
- Filter-driven feature extraction: rhythm, onsets, silence, loudness,
  spectral shape, bands, tonality, pitch, melody, envelope, quality
- Timeline assembly with throttled continuous sampling and derived events
- Real-time replay with pre-roll countdown and cooperative cancellation
- Multicast transport with optional unicast fallback
- Timeline export (CSV, Parquet, JSON lines)
"""

__version__ = "0.1.0"

from beatcast.analysis import AnalysisOrchestrator
from beatcast.cancellation import CancellationToken
from beatcast.config import EmitterConfig, load_config
from beatcast.emitter import EmitterState, RealtimeEmitter
from beatcast.envelope import Envelope
from beatcast.errors import (
    AnalysisCancelled,
    AnalysisError,
    AudioDecodeError,
    BeatcastError,
    ConfigError,
)
from beatcast.events import EventType, parse_filter
from beatcast.timeline import TimelineBuilder, TimelineEvent
from beatcast.transport import MulticastTransport

__all__ = [
    "AnalysisOrchestrator",
    "CancellationToken",
    "EmitterConfig",
    "load_config",
    "EmitterState",
    "RealtimeEmitter",
    "Envelope",
    "EventType",
    "parse_filter",
    "TimelineBuilder",
    "TimelineEvent",
    "MulticastTransport",
    # Errors
    "BeatcastError",
    "ConfigError",
    "AudioDecodeError",
    "AnalysisError",
    "AnalysisCancelled",
]
