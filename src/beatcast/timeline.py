"""
Timeline assembly.

This module provides the ``TimelineBuilder`` class, which turns typed
analysis results into one sorted list of ready-to-send events.

Assembly rules:
    - **Point events** (beats, downbeats, onsets, detected artifacts): one
      event per detection at its own time.
    - **Region boundaries** (silence): only the leading and trailing silent
      regions are reported.
    - **Throttled sampling** (loudness, spectral scalars and vectors, bands,
      pitch, melody, novelty, envelope): frames are walked in order and a
      sample is emitted only when at least ``continuous_interval`` seconds
      have passed since the previous sample of the same stream.
    - **Derived events**: peaks, changes and boundaries computed from the
      continuous arrays with the empirical thresholds below.
    - **Bookkeeping**: ``track.start`` at 0, ``track.position`` heartbeats,
      ``track.end`` at the file duration, regardless of the filter.

The result is stable-sorted by timestamp. Simultaneous events keep the
order in which they were produced, so ``track.start`` is always first and
``track.end`` always last.

Example:
    >>> timeline = TimelineBuilder(cfg).build(results)
    >>> timeline[0].event_type, timeline[-1].event_type
    (<EventType.TRACK_START: 'track.start'>, <EventType.TRACK_END: 'track.end'>)
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from beatcast import envelope as ev
from beatcast import operators
from beatcast.config import EmitterConfig
from beatcast.envelope import Envelope, Payload
from beatcast.events import EventType, is_transport, needs_any
from beatcast.results import (
    AnalysisResults,
    EnvelopeResult,
    LoudnessResult,
    MelodyResult,
    OnsetResult,
    QualityResult,
    RhythmResult,
    SilenceResult,
    SpectralResult,
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# Empirical thresholds, tunable.
MIN_SILENCE_GAP_S = 0.05
LOUDNESS_PEAK_RATIO = 0.9
DYNAMIC_CHANGE_RATIO = 0.3
TIMBRE_CHANGE_DISTANCE = 50.0
PITCH_CONFIDENCE_FLOOR = 0.3
PITCH_CHANGE_CONFIDENCE = 0.5
SEMITONE_UP = 1.06
SEMITONE_DOWN = 0.943
TEMPO_CHANGE_BPM = 3.0
SEGMENT_MIN_FRAMES = 10
SEGMENT_LENGTH_S = 30.0
FADE_MIN_S = 1.0
FADE_RANGE_DB = 40.0
FADE_FULL_DB = 6.0
FADE_SILENCE_DB = -60.0


def _finite(value) -> float:
    value = float(value)
    return value if np.isfinite(value) else 0.0


def _finite_tuple(values) -> Tuple[float, ...]:
    arr = np.nan_to_num(np.asarray(values, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    return tuple(float(v) for v in arr)


@dataclass(frozen=True)
class TimelineEvent:
    """One scheduled event and its serialized datagram.

    Attributes:
        timestamp: Seconds from the start of the file.
        payload: Typed payload variant.
        data: Wire bytes sent verbatim by the emitter.
    """

    timestamp: float
    payload: Payload
    data: bytes

    @property
    def event_type(self) -> EventType:
        return self.payload.event_type

    @classmethod
    def create(cls, timestamp: float, payload: Payload) -> "TimelineEvent":
        timestamp = float(timestamp)
        return cls(timestamp, payload, Envelope(timestamp, payload).to_bytes())


class _Throttle:
    """Minimum-spacing gate for one continuous stream."""

    def __init__(self, interval: float):
        self.interval = interval
        self.last = -interval

    def ready(self, t: float) -> bool:
        if t - self.last >= self.interval:
            self.last = t
            return True
        return False


class TimelineBuilder:
    """Build a sorted event timeline from analysis results.

    Attributes:
        cfg: Run configuration; only the filter and the two intervals are used.
    """

    def __init__(self, cfg: EmitterConfig):
        self.cfg = cfg
        self.event_filter = cfg.enabled_events
        self._events: List[TimelineEvent] = []
        self._results: Optional[AnalysisResults] = None

    def build(self, results: AnalysisResults) -> List[TimelineEvent]:
        """Assemble the timeline for one file.

        Returns:
            Events sorted ascending by timestamp, starting with
            ``track.start`` at 0 and ending with ``track.end`` at the
            file duration.
        """
        self._events = []
        self._results = results
        duration = results.duration

        self._add(0.0, ev.TrackStart(
            filename=results.filename,
            duration=duration,
            sample_rate=results.sample_rate,
            channels=results.channels,
        ))

        if results.rhythm is not None:
            self._rhythm_events(results.rhythm)
        if results.onset is not None:
            self._onset_events(results.onset)
        if results.silence is not None:
            self._silence_events(results.silence)
        if results.loudness is not None:
            self._loudness_events(results.loudness)
        if results.spectral is not None:
            self._spectral_events(results.spectral)
        if results.melody is not None:
            self._melody_events(results.melody)
        if results.envelope is not None:
            self._envelope_events(results.envelope)
        if results.quality is not None:
            self._quality_events(results.quality)

        interval = self.cfg.position_interval
        k = 1
        while k * interval < duration:
            self._add(k * interval, ev.TrackPosition(position=k * interval))
            k += 1

        self._add(duration, ev.TrackEnd())

        timeline = sorted(self._events, key=lambda e: e.timestamp)
        self._events = []
        self._log_summary(timeline, duration)
        return timeline

    # --- helpers ---

    def _wants(self, *event_types: EventType) -> bool:
        return needs_any(self.event_filter, event_types)

    def _add(self, timestamp: float, payload: Payload) -> None:
        if not is_transport(payload.event_type) and payload.event_type not in self.event_filter:
            return
        duration = self._results.duration
        if not 0.0 <= timestamp <= duration:
            logger.debug(
                "Dropping %s at %.3fs outside [0, %.3f]",
                payload.event_type.value, timestamp, duration,
            )
            return
        self._events.append(TimelineEvent.create(timestamp, payload))

    def _frames(self, n_frames: int, hop_size: Optional[int] = None) -> Iterator[Tuple[int, float]]:
        """Yield ``(index, time)`` for frames that start within the file."""
        results = self._results
        for i in range(n_frames):
            t = results.frame_time(i, hop_size)
            if t > results.duration:
                break
            yield i, t

    def _sample_scalar(self, values: Optional[np.ndarray], make, hop_size: Optional[int] = None) -> None:
        if values is None:
            return
        throttle = _Throttle(self.cfg.continuous_interval)
        for i, t in self._frames(len(values), hop_size):
            if throttle.ready(t):
                self._add(t, make(_finite(values[i])))

    def _sample_vector(self, matrix: Optional[np.ndarray], make) -> None:
        if matrix is None:
            return
        throttle = _Throttle(self.cfg.continuous_interval)
        for i, t in self._frames(matrix.shape[0]):
            if throttle.ready(t):
                self._add(t, make(_finite_tuple(matrix[i])))

    # --- per-category assembly ---

    def _rhythm_events(self, rhythm: RhythmResult) -> None:
        if self._wants(EventType.BEAT):
            for i, t in enumerate(rhythm.beat_times):
                conf = rhythm.beat_confidence[i] if i < len(rhythm.beat_confidence) else 0.0
                self._add(float(t), ev.Beat(confidence=_finite(conf)))

        if self._wants(EventType.DOWNBEAT):
            for i, t in enumerate(rhythm.downbeat_times):
                conf = rhythm.downbeat_confidence[i] if i < len(rhythm.downbeat_confidence) else 0.0
                self._add(float(t), ev.Downbeat(confidence=_finite(conf)))

        if self._wants(EventType.TEMPO_CHANGE) and len(rhythm.beat_times):
            first_beat = float(rhythm.beat_times[0])
            last_bpm = _finite(rhythm.tempo_bpm)
            self._add(first_beat, ev.TempoChange(bpm=last_bpm))
            for i, t in self._frames(len(rhythm.tempo_curve)):
                if t <= first_beat:
                    continue
                bpm = _finite(rhythm.tempo_curve[i])
                if abs(bpm - last_bpm) >= TEMPO_CHANGE_BPM:
                    self._add(t, ev.TempoChange(bpm=bpm))
                    last_bpm = bpm

    def _onset_events(self, onset: OnsetResult) -> None:
        if self._wants(EventType.ONSET):
            for i, t in enumerate(onset.onset_times):
                strength = onset.onset_strength[i] if i < len(onset.onset_strength) else 0.0
                self._add(float(t), ev.Onset(strength=_finite(strength)))
        if self._wants(EventType.ONSET_RATE):
            self._add(0.0, ev.OnsetRate(rate=_finite(onset.onset_rate)))
        if self._wants(EventType.NOVELTY):
            self._sample_scalar(onset.novelty, lambda v: ev.Novelty(value=v))

    def _silence_events(self, silence: SilenceResult) -> None:
        duration = self._results.duration
        if silence.start_frame is None or silence.stop_frame is None:
            # Nothing rises above the floor: one silent region spanning the file
            if duration > MIN_SILENCE_GAP_S:
                self._add(0.0, ev.SilenceStart())
                self._add(duration, ev.SilenceEnd())
                self._add(0.0, ev.Gap(duration=duration))
            return

        start = min(self._results.frame_time(silence.start_frame), duration)
        stop = min(self._results.frame_time(silence.stop_frame), duration)

        if start > MIN_SILENCE_GAP_S:
            self._add(0.0, ev.SilenceStart())
            self._add(start, ev.SilenceEnd())
            self._add(0.0, ev.Gap(duration=start))

        if stop < duration - MIN_SILENCE_GAP_S:
            self._add(stop, ev.SilenceStart())
            self._add(duration, ev.SilenceEnd())
            self._add(stop, ev.Gap(duration=duration - stop))

    def _loudness_events(self, loudness: LoudnessResult) -> None:
        values = loudness.loudness
        if self._wants(EventType.LOUDNESS):
            self._sample_scalar(values, lambda v: ev.Loudness(value=v))
        if self._wants(EventType.ENERGY):
            self._sample_scalar(loudness.energy, lambda v: ev.Energy(value=v))

        peak = float(np.max(values)) if len(values) else 0.0
        if self._wants(EventType.LOUDNESS_PEAK) and peak > 0:
            for i, t in self._frames(len(values)):
                if 0 < i < len(values) - 1:
                    v = values[i]
                    if v > values[i - 1] and v > values[i + 1] and v >= LOUDNESS_PEAK_RATIO * peak:
                        self._add(t, ev.LoudnessPeak(value=_finite(v)))

        if self._wants(EventType.DYNAMIC_CHANGE) and peak > 0:
            threshold = DYNAMIC_CHANGE_RATIO * peak
            for i, t in self._frames(len(values)):
                if i == 0:
                    continue
                delta = abs(float(values[i]) - float(values[i - 1]))
                if delta > threshold:
                    self._add(t, ev.DynamicChange(magnitude=_finite(delta)))

        if self._wants(EventType.FADE_IN, EventType.FADE_OUT):
            self._fade_events(loudness.rms_db)

    def _fade_events(self, rms_db: np.ndarray) -> None:
        """Detect a slow rise at the start and a slow fall at the end.

        A fade spans from where the level first (or last) comes within
        ``FADE_RANGE_DB`` of the loudest frame to where it reaches (or
        leaves) ``FADE_FULL_DB`` of it. ``fade.in`` is stamped at the start
        of the ramp and carries its end; ``fade.out`` is stamped at the end
        of the ramp and carries its start.
        """
        if len(rms_db) == 0:
            return
        top = float(np.max(rms_db))
        if top <= FADE_SILENCE_DB:
            return
        audible = np.flatnonzero(rms_db > top - FADE_RANGE_DB)
        full = np.flatnonzero(rms_db >= top - FADE_FULL_DB)
        frame_time = self._results.frame_time
        duration = self._results.duration

        fade_in_start = frame_time(audible[0])
        fade_in_end = min(frame_time(full[0]), duration)
        if self._wants(EventType.FADE_IN) and fade_in_end - fade_in_start >= FADE_MIN_S:
            self._add(fade_in_start, ev.FadeIn(end_time=fade_in_end))

        fade_out_start = frame_time(full[-1])
        fade_out_end = min(frame_time(audible[-1]), duration)
        if self._wants(EventType.FADE_OUT) and fade_out_end - fade_out_start >= FADE_MIN_S:
            self._add(fade_out_end, ev.FadeOut(start_time=fade_out_start))

    def _spectral_events(self, spectral: SpectralResult) -> None:
        f = self._wants
        if f(EventType.SPECTRAL_CENTROID):
            self._sample_scalar(spectral.centroid, lambda v: ev.SpectralCentroid(value=v))
        if f(EventType.SPECTRAL_FLUX):
            self._sample_scalar(spectral.flux, lambda v: ev.SpectralFlux(value=v))
        if f(EventType.SPECTRAL_COMPLEXITY):
            self._sample_scalar(spectral.complexity, lambda v: ev.SpectralComplexity(value=v))
        if f(EventType.SPECTRAL_ROLLOFF):
            self._sample_scalar(spectral.rolloff, lambda v: ev.SpectralRolloff(value=v))
        if f(EventType.HFC):
            self._sample_scalar(spectral.hfc, lambda v: ev.Hfc(value=v))
        if f(EventType.DISSONANCE):
            self._sample_scalar(spectral.dissonance, lambda v: ev.Dissonance(value=v))
        if f(EventType.INHARMONICITY):
            self._sample_scalar(spectral.inharmonicity, lambda v: ev.Inharmonicity(value=v))

        if f(EventType.SPECTRAL_CONTRAST):
            self._sample_vector(spectral.contrast, lambda v: ev.SpectralContrast(values=v))
        if f(EventType.MFCC):
            self._sample_vector(spectral.mfcc, lambda v: ev.Mfcc(values=v))
        if f(EventType.BANDS_MEL):
            self._sample_vector(spectral.bands_mel, lambda v: ev.BandsMel(values=v))
        if f(EventType.BANDS_BARK):
            self._sample_vector(spectral.bands_bark, lambda v: ev.BandsBark(values=v))
        if f(EventType.BANDS_ERB):
            self._sample_vector(spectral.bands_erb, lambda v: ev.BandsErb(values=v))
        if f(EventType.CHROMA):
            self._sample_vector(spectral.chroma, lambda v: ev.Chroma(values=v))

        # The key estimator only sees the whole file, so there is one event.
        if f(EventType.KEY_CHANGE) and spectral.key:
            self._add(0.0, ev.KeyChange(
                key=spectral.key,
                scale=spectral.scale or "",
                strength=_finite(spectral.key_strength),
            ))
        if f(EventType.TUNING) and spectral.tuning_hz is not None:
            self._add(0.0, ev.Tuning(frequency=_finite(spectral.tuning_hz)))

        if f(EventType.CHORD_CHANGE) and spectral.chords:
            self._chord_events(spectral.chords, spectral.chord_strength)
        if f(EventType.PITCH, EventType.PITCH_CHANGE) and spectral.pitch is not None:
            self._pitch_events(spectral.pitch, spectral.pitch_confidence)
        if spectral.mfcc is not None:
            if f(EventType.TIMBRE_CHANGE):
                self._timbre_events(spectral.mfcc)
            if f(EventType.SEGMENT_BOUNDARY):
                self._segment_events(spectral.mfcc)

    def _chord_events(self, chords: Sequence[str], strength: Optional[np.ndarray]) -> None:
        previous = None
        for i, t in self._frames(len(chords)):
            label = chords[i]
            if label != previous:
                value = strength[i] if strength is not None and i < len(strength) else 0.0
                self._add(t, ev.ChordChange(chord=label, strength=_finite(value)))
                previous = label

    def _pitch_events(self, pitch: np.ndarray, confidence: Optional[np.ndarray]) -> None:
        if confidence is None:
            confidence = np.zeros(len(pitch))
        emit_pitch = self._wants(EventType.PITCH)
        emit_change = self._wants(EventType.PITCH_CHANGE)
        throttle = _Throttle(self.cfg.continuous_interval)
        previous = 0.0
        for i, t in self._frames(min(len(pitch), len(confidence))):
            freq = _finite(pitch[i])
            conf = _finite(confidence[i])
            if freq <= 0:
                continue
            if emit_pitch and conf > PITCH_CONFIDENCE_FLOOR and throttle.ready(t):
                self._add(t, ev.Pitch(frequency=freq, confidence=conf))
            if emit_change and conf > PITCH_CHANGE_CONFIDENCE and previous > 0:
                ratio = freq / previous
                if ratio > SEMITONE_UP or ratio < SEMITONE_DOWN:
                    self._add(t, ev.PitchChange(from_hz=previous, to_hz=freq))
            if conf > PITCH_CONFIDENCE_FLOOR:
                previous = freq

    def _timbre_events(self, mfcc: np.ndarray) -> None:
        for i, t in self._frames(mfcc.shape[0]):
            if i == 0:
                continue
            distance = float(np.linalg.norm(mfcc[i] - mfcc[i - 1]))
            if distance > TIMBRE_CHANGE_DISTANCE:
                self._add(t, ev.TimbreChange(distance=_finite(distance)))

    def _segment_events(self, mfcc: np.ndarray) -> None:
        if mfcc.shape[0] < SEGMENT_MIN_FRAMES:
            return
        duration = self._results.duration
        n_segments = max(2, int(round(duration / SEGMENT_LENGTH_S)))
        boundaries = operators.segment_boundaries(np.nan_to_num(mfcc), n_segments)
        # First and last entries are the file edges, not transitions
        for frame in boundaries[1:-1]:
            t = self._results.frame_time(int(frame))
            if 0.0 < t < duration:
                self._add(t, ev.SegmentBoundary())

    def _melody_events(self, melody: MelodyResult) -> None:
        throttle = _Throttle(self.cfg.continuous_interval)
        for i, t in self._frames(len(melody.pitch), melody.hop_size):
            freq = _finite(melody.pitch[i])
            if freq > 0 and throttle.ready(t):
                self._add(t, ev.Melody(frequency=freq))

    def _envelope_events(self, envelope: EnvelopeResult) -> None:
        if self._wants(EventType.ENVELOPE):
            self._sample_scalar(envelope.envelope, lambda v: ev.AmplitudeEnvelope(value=v))
        if self._wants(EventType.ATTACK):
            for t, log_attack in envelope.attacks:
                self._add(float(t), ev.Attack(log_attack_time=_finite(log_attack)))
        if self._wants(EventType.DECAY):
            for t, decay in envelope.decays:
                self._add(float(t), ev.Decay(value=_finite(decay)))

    def _quality_events(self, quality: QualityResult) -> None:
        for t in quality.click_times:
            self._add(float(t), ev.Click())
        for t in quality.discontinuity_times:
            self._add(float(t), ev.Discontinuity())
        for t in quality.noise_burst_times:
            self._add(float(t), ev.NoiseBurst())
        for t, length in quality.saturation_runs:
            self._add(float(t), ev.Saturation(duration=_finite(length)))
        if quality.hum_hz is not None:
            self._add(0.0, ev.Hum(frequency=_finite(quality.hum_hz)))

    def _log_summary(self, timeline: List[TimelineEvent], duration: float) -> None:
        logger.info("Timeline: %d events over %.2fs", len(timeline), duration)
        if logger.isEnabledFor(logging.DEBUG):
            counts = Counter(e.event_type.value for e in timeline)
            for name, count in sorted(counts.items()):
                logger.debug("  %-20s %d", name, count)
