"""
Wire envelope: one timestamped event per datagram.

Each payload variant is a small frozen dataclass bound to exactly one
:class:`~beatcast.events.EventType`. An :class:`Envelope` pairs a payload with
a file-relative timestamp and serializes to compact UTF-8 JSON::

    {"timestamp": 1.25, "type": "beat", "data": {"confidence": 0.8}}

Receivers discriminate on ``type``. Vector fields travel as JSON arrays and
come back as tuples.

Example:
    >>> env = Envelope(1.25, Beat(confidence=0.8))
    >>> Envelope.from_bytes(env.to_bytes()) == env
    True
"""

import json
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Dict, Tuple, Type

from beatcast.events import EventType

_PAYLOAD_TYPES: Dict[EventType, Type["Payload"]] = {}


@dataclass(frozen=True)
class Payload:
    """Base class for payload variants."""

    event_type: ClassVar[EventType]


def _payload(event_type: EventType):
    def register(cls):
        cls.event_type = event_type
        _PAYLOAD_TYPES[event_type] = cls
        return dataclass(frozen=True)(cls)
    return register


def payload_class(event_type: EventType) -> Type[Payload]:
    """Return the payload dataclass registered for ``event_type``."""
    return _PAYLOAD_TYPES[event_type]


# --- Transport ---

@_payload(EventType.TRACK_START)
class TrackStart(Payload):
    filename: str = ""
    duration: float = 0.0
    sample_rate: int = 0
    channels: int = 0


@_payload(EventType.TRACK_END)
class TrackEnd(Payload):
    pass


@_payload(EventType.TRACK_POSITION)
class TrackPosition(Payload):
    position: float = 0.0


@_payload(EventType.TRACK_ABORT)
class TrackAbort(Payload):
    reason: str = ""


@_payload(EventType.TRACK_PREPARE)
class TrackPrepare(Payload):
    filename: str = ""
    countdown: float = 0.0


# --- Rhythm ---

@_payload(EventType.BEAT)
class Beat(Payload):
    confidence: float = 0.0


@_payload(EventType.TEMPO_CHANGE)
class TempoChange(Payload):
    bpm: float = 0.0


@_payload(EventType.DOWNBEAT)
class Downbeat(Payload):
    confidence: float = 0.0


# --- Onset ---

@_payload(EventType.ONSET)
class Onset(Payload):
    strength: float = 0.0


@_payload(EventType.ONSET_RATE)
class OnsetRate(Payload):
    rate: float = 0.0


@_payload(EventType.NOVELTY)
class Novelty(Payload):
    value: float = 0.0


# --- Tonal ---

@_payload(EventType.KEY_CHANGE)
class KeyChange(Payload):
    key: str = ""
    scale: str = ""
    strength: float = 0.0


@_payload(EventType.CHORD_CHANGE)
class ChordChange(Payload):
    chord: str = ""
    strength: float = 0.0


@_payload(EventType.CHROMA)
class Chroma(Payload):
    values: Tuple[float, ...] = ()


@_payload(EventType.TUNING)
class Tuning(Payload):
    frequency: float = 0.0


@_payload(EventType.DISSONANCE)
class Dissonance(Payload):
    value: float = 0.0


@_payload(EventType.INHARMONICITY)
class Inharmonicity(Payload):
    value: float = 0.0


# --- Pitch / melody ---

@_payload(EventType.PITCH)
class Pitch(Payload):
    frequency: float = 0.0
    confidence: float = 0.0


@_payload(EventType.PITCH_CHANGE)
class PitchChange(Payload):
    from_hz: float = 0.0
    to_hz: float = 0.0


@_payload(EventType.MELODY)
class Melody(Payload):
    frequency: float = 0.0


# --- Loudness / energy ---

@_payload(EventType.LOUDNESS)
class Loudness(Payload):
    value: float = 0.0


@_payload(EventType.LOUDNESS_PEAK)
class LoudnessPeak(Payload):
    value: float = 0.0


@_payload(EventType.ENERGY)
class Energy(Payload):
    value: float = 0.0


@_payload(EventType.DYNAMIC_CHANGE)
class DynamicChange(Payload):
    magnitude: float = 0.0


# --- Silence ---

@_payload(EventType.SILENCE_START)
class SilenceStart(Payload):
    pass


@_payload(EventType.SILENCE_END)
class SilenceEnd(Payload):
    pass


@_payload(EventType.GAP)
class Gap(Payload):
    duration: float = 0.0


# --- Spectral ---

@_payload(EventType.SPECTRAL_CENTROID)
class SpectralCentroid(Payload):
    value: float = 0.0


@_payload(EventType.SPECTRAL_FLUX)
class SpectralFlux(Payload):
    value: float = 0.0


@_payload(EventType.SPECTRAL_COMPLEXITY)
class SpectralComplexity(Payload):
    value: float = 0.0


@_payload(EventType.SPECTRAL_CONTRAST)
class SpectralContrast(Payload):
    values: Tuple[float, ...] = ()


@_payload(EventType.SPECTRAL_ROLLOFF)
class SpectralRolloff(Payload):
    value: float = 0.0


@_payload(EventType.MFCC)
class Mfcc(Payload):
    values: Tuple[float, ...] = ()


@_payload(EventType.TIMBRE_CHANGE)
class TimbreChange(Payload):
    distance: float = 0.0


# --- Bands ---

@_payload(EventType.BANDS_MEL)
class BandsMel(Payload):
    values: Tuple[float, ...] = ()


@_payload(EventType.BANDS_BARK)
class BandsBark(Payload):
    values: Tuple[float, ...] = ()


@_payload(EventType.BANDS_ERB)
class BandsErb(Payload):
    values: Tuple[float, ...] = ()


@_payload(EventType.HFC)
class Hfc(Payload):
    value: float = 0.0


# --- Structure ---

@_payload(EventType.SEGMENT_BOUNDARY)
class SegmentBoundary(Payload):
    pass


@_payload(EventType.FADE_IN)
class FadeIn(Payload):
    end_time: float = 0.0


@_payload(EventType.FADE_OUT)
class FadeOut(Payload):
    start_time: float = 0.0


# --- Quality ---

@_payload(EventType.CLICK)
class Click(Payload):
    pass


@_payload(EventType.DISCONTINUITY)
class Discontinuity(Payload):
    pass


@_payload(EventType.NOISE_BURST)
class NoiseBurst(Payload):
    pass


@_payload(EventType.SATURATION)
class Saturation(Payload):
    duration: float = 0.0


@_payload(EventType.HUM)
class Hum(Payload):
    frequency: float = 0.0


# --- Envelope / transient ---

@_payload(EventType.ENVELOPE)
class AmplitudeEnvelope(Payload):
    value: float = 0.0


@_payload(EventType.ATTACK)
class Attack(Payload):
    log_attack_time: float = 0.0


@_payload(EventType.DECAY)
class Decay(Payload):
    value: float = 0.0


@dataclass(frozen=True)
class Envelope:
    """A payload stamped with seconds from the start of the file.

    Attributes:
        timestamp: File-relative time in seconds. Negative only for the
            pre-roll ``track.prepare`` notification.
        payload: Exactly one payload variant.
    """

    timestamp: float
    payload: Payload

    @property
    def event_type(self) -> EventType:
        return self.payload.event_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": float(self.timestamp),
            "type": self.payload.event_type.value,
            "data": asdict(self.payload),
        }

    def to_bytes(self) -> bytes:
        """Serialize to compact UTF-8 JSON.

        Raises:
            ValueError: If a field holds NaN or infinity.
        """
        return json.dumps(
            self.to_dict(), separators=(",", ":"), allow_nan=False
        ).encode("utf-8")

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "Envelope":
        event_type = EventType(obj["type"])
        payload_cls = _PAYLOAD_TYPES[event_type]
        known = {f.name for f in fields(payload_cls)}
        data = {
            key: tuple(value) if isinstance(value, list) else value
            for key, value in obj.get("data", {}).items()
            if key in known
        }
        return cls(float(obj["timestamp"]), payload_cls(**data))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Envelope":
        """Parse a datagram produced by :meth:`to_bytes`.

        Raises:
            ValueError: If the bytes are not a valid envelope.
        """
        try:
            obj = json.loads(data.decode("utf-8"))
            return cls.from_dict(obj)
        except (UnicodeDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Invalid envelope: {e}") from e
