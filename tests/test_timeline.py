"""
Tests for timeline assembly.

Results are constructed directly with a 10 ms frame grid (hop 441 at
44.1 kHz) so expected timestamps are easy to read.
"""

import json

import numpy as np
import pytest

from beatcast.config import EmitterConfig
from beatcast.events import EventType, all_events, is_transport
from beatcast.results import (
    AnalysisResults,
    EnvelopeResult,
    LoudnessResult,
    OnsetResult,
    QualityResult,
    RhythmResult,
    SilenceResult,
    SpectralResult,
)
from beatcast.timeline import TimelineBuilder

SR = 44100
HOP = 441  # 10 ms frames


def make_cfg(*names, **kwargs):
    events = frozenset(EventType(n) for n in names) if names else all_events()
    return EmitterConfig(input_file="song.wav", enabled_events=events, **kwargs)


def make_results(duration=10.0, **slots):
    return AnalysisResults(
        filename="song.wav",
        duration=duration,
        sample_rate=SR,
        channels=2,
        hop_size=HOP,
        **slots,
    )


def of_type(timeline, event_type):
    return [e for e in timeline if e.event_type is event_type]


def non_transport(timeline):
    return [e for e in timeline if not is_transport(e.event_type)]


class TestBookkeeping:
    """Test track start, heartbeat and end events."""

    def test_silent_file_with_beat_filter(self):
        """No beats: only start, heartbeats at 1..9 and end."""
        timeline = TimelineBuilder(make_cfg("beat")).build(
            make_results(10.0, rhythm=RhythmResult())
        )
        types = [e.event_type for e in timeline]
        assert types[0] is EventType.TRACK_START
        assert types[-1] is EventType.TRACK_END
        assert [e.timestamp for e in of_type(timeline, EventType.TRACK_POSITION)] == [
            float(k) for k in range(1, 10)
        ]
        assert of_type(timeline, EventType.BEAT) == []
        assert len(timeline) == 11
        assert timeline[-1].timestamp == 10.0

    def test_track_start_metadata(self):
        timeline = TimelineBuilder(make_cfg("beat")).build(make_results(2.5))
        start = timeline[0]
        assert start.timestamp == 0.0
        assert json.loads(start.data)["data"] == {
            "filename": "song.wav",
            "duration": 2.5,
            "sample_rate": SR,
            "channels": 2,
        }
        positions = of_type(timeline, EventType.TRACK_POSITION)
        assert [p.payload.position for p in positions] == [1.0, 2.0]

    def test_position_interval(self):
        cfg = make_cfg("beat", position_interval=0.5)
        timeline = TimelineBuilder(cfg).build(make_results(2.0))
        assert [e.timestamp for e in of_type(timeline, EventType.TRACK_POSITION)] == [0.5, 1.0, 1.5]

    def test_sorted_and_bounded(self):
        rhythm = RhythmResult(
            beat_times=np.array([3.0, 1.0, 12.0]),
            beat_confidence=np.array([0.9, 0.8, 0.7]),
        )
        timeline = TimelineBuilder(make_cfg("beat")).build(make_results(10.0, rhythm=rhythm))
        stamps = [e.timestamp for e in timeline]
        assert stamps == sorted(stamps)
        assert all(0.0 <= t <= 10.0 for t in stamps)
        # Beyond the end of the file: dropped
        assert [e.timestamp for e in of_type(timeline, EventType.BEAT)] == [1.0, 3.0]

    def test_data_matches_payload(self):
        rhythm = RhythmResult(beat_times=np.array([1.0]), beat_confidence=np.array([0.5]))
        timeline = TimelineBuilder(make_cfg("beat")).build(make_results(2.0, rhythm=rhythm))
        beat = of_type(timeline, EventType.BEAT)[0]
        assert json.loads(beat.data) == {"timestamp": 1.0, "type": "beat", "data": {"confidence": 0.5}}


class TestFiltering:
    """Test that only selected event types reach the timeline."""

    def test_unselected_types_absent(self):
        results = make_results(
            5.0,
            rhythm=RhythmResult(beat_times=np.array([1.0, 2.0]), downbeat_times=np.array([1.0])),
            onset=OnsetResult(onset_times=np.array([0.5]), onset_strength=np.array([1.0])),
            loudness=LoudnessResult(
                loudness=np.ones(500), energy=np.ones(500), rms_db=np.zeros(500)
            ),
        )
        timeline = TimelineBuilder(make_cfg("beat")).build(results)
        assert {e.event_type for e in non_transport(timeline)} == {EventType.BEAT}

    def test_missing_confidence_defaults_to_zero(self):
        rhythm = RhythmResult(beat_times=np.array([1.0, 2.0]), beat_confidence=np.array([0.7]))
        timeline = TimelineBuilder(make_cfg("beat")).build(make_results(5.0, rhythm=rhythm))
        assert [b.payload.confidence for b in of_type(timeline, EventType.BEAT)] == [0.7, 0.0]


class TestSilence:
    """Test leading and trailing silence reporting."""

    def test_leading_and_trailing(self):
        """2 s of silence on both sides of a 10 s file."""
        cfg = make_cfg("silence.start", "silence.end", "gap")
        results = make_results(10.0, silence=SilenceResult(start_frame=200, stop_frame=800))
        timeline = non_transport(TimelineBuilder(cfg).build(results))

        got = [(e.event_type, e.timestamp) for e in timeline]
        assert got == [
            (EventType.SILENCE_START, 0.0),
            (EventType.GAP, 0.0),
            (EventType.SILENCE_END, 2.0),
            (EventType.SILENCE_START, 8.0),
            (EventType.GAP, 8.0),
            (EventType.SILENCE_END, 10.0),
        ]
        gaps = of_type(timeline, EventType.GAP)
        assert [g.payload.duration for g in gaps] == [pytest.approx(2.0), pytest.approx(2.0)]

    def test_short_gaps_ignored(self):
        cfg = make_cfg("silence.start", "silence.end", "gap")
        results = make_results(10.0, silence=SilenceResult(start_frame=3, stop_frame=998))
        assert non_transport(TimelineBuilder(cfg).build(results)) == []

    def test_all_silent(self):
        cfg = make_cfg("silence.start", "silence.end", "gap")
        timeline = non_transport(TimelineBuilder(cfg).build(make_results(4.0, silence=SilenceResult())))
        assert [(e.event_type, e.timestamp) for e in timeline] == [
            (EventType.SILENCE_START, 0.0),
            (EventType.GAP, 0.0),
            (EventType.SILENCE_END, 4.0),
        ]


class TestThrottling:
    """Test throttled sampling of continuous streams."""

    def test_spacing_at_least_interval(self):
        loud = np.linspace(0.1, 1.0, 1000)
        results = make_results(
            10.0, loudness=LoudnessResult(loudness=loud, energy=loud, rms_db=np.zeros(1000))
        )
        timeline = TimelineBuilder(make_cfg("loudness", "energy")).build(results)
        for event_type in (EventType.LOUDNESS, EventType.ENERGY):
            stamps = [e.timestamp for e in of_type(timeline, event_type)]
            assert stamps[0] == 0.0
            assert 80 <= len(stamps) <= 101
            assert all(b - a >= 0.1 for a, b in zip(stamps, stamps[1:]))

    def test_custom_interval(self):
        loud = np.ones(1000)
        results = make_results(
            10.0, loudness=LoudnessResult(loudness=loud, energy=loud, rms_db=np.zeros(1000))
        )
        timeline = TimelineBuilder(make_cfg("loudness", continuous_interval=1.0)).build(results)
        assert len(of_type(timeline, EventType.LOUDNESS)) == 10

    def test_frames_past_duration_dropped(self):
        loud = np.ones(1000)
        results = make_results(
            2.0, loudness=LoudnessResult(loudness=loud, energy=loud, rms_db=np.zeros(1000))
        )
        timeline = TimelineBuilder(make_cfg("loudness")).build(results)
        assert max(e.timestamp for e in of_type(timeline, EventType.LOUDNESS)) <= 2.0

    def test_vectors(self):
        mfcc = np.tile(np.arange(13, dtype=float), (100, 1))
        timeline = TimelineBuilder(make_cfg("mfcc")).build(
            make_results(1.0, spectral=SpectralResult(mfcc=mfcc))
        )
        events = of_type(timeline, EventType.MFCC)
        assert 9 <= len(events) <= 10
        assert events[0].payload.values == tuple(float(v) for v in range(13))

    def test_non_finite_values_sanitized(self):
        loud = np.array([np.nan, np.inf, 1.0] * 100)
        results = make_results(
            3.0, loudness=LoudnessResult(loudness=loud, energy=loud, rms_db=np.zeros(300))
        )
        timeline = TimelineBuilder(make_cfg("loudness", continuous_interval=0.01)).build(results)
        values = [e.payload.value for e in of_type(timeline, EventType.LOUDNESS)]
        assert values[:3] == [0.0, 0.0, 1.0]


class TestDerivedEvents:
    """Test events computed from continuous arrays."""

    def _loudness(self, values):
        values = np.asarray(values, dtype=float)
        return LoudnessResult(loudness=values, energy=values, rms_db=np.zeros(len(values)))

    def test_loudness_peak(self):
        results = make_results(1.0, loudness=self._loudness([0, 1.0, 0, 0.95, 0, 0.5, 0]))
        timeline = TimelineBuilder(make_cfg("loudness.peak")).build(results)
        peaks = of_type(timeline, EventType.LOUDNESS_PEAK)
        assert [p.timestamp for p in peaks] == [0.01, 0.03]

    def test_dynamic_change(self):
        results = make_results(1.0, loudness=self._loudness([0.0, 0.0, 1.0, 0.9, 0.8, 0.2]))
        timeline = TimelineBuilder(make_cfg("dynamic.change")).build(results)
        changes = of_type(timeline, EventType.DYNAMIC_CHANGE)
        assert [c.timestamp for c in changes] == [0.02, 0.05]
        assert changes[0].payload.magnitude == pytest.approx(1.0)

    def test_dynamic_change_needs_positive_max(self):
        results = make_results(1.0, loudness=self._loudness([0.0] * 10))
        timeline = TimelineBuilder(make_cfg("dynamic.change", "loudness.peak")).build(results)
        assert non_transport(timeline) == []

    def test_fades(self):
        rms_db = np.concatenate([
            np.linspace(-50.0, 0.0, 200),
            np.zeros(600),
            np.linspace(0.0, -50.0, 200),
        ])
        results = make_results(
            10.0, loudness=LoudnessResult(loudness=np.ones(1000), energy=np.ones(1000), rms_db=rms_db)
        )
        timeline = TimelineBuilder(make_cfg("fade.in", "fade.out")).build(results)
        fade_in = of_type(timeline, EventType.FADE_IN)
        fade_out = of_type(timeline, EventType.FADE_OUT)
        assert len(fade_in) == 1 and len(fade_out) == 1
        assert fade_in[0].timestamp < 1.0 < fade_in[0].payload.end_time < 2.0
        assert 8.0 < fade_out[0].payload.start_time < 9.0 < fade_out[0].timestamp

    def test_no_fade_for_abrupt_start(self):
        rms_db = np.zeros(1000)
        results = make_results(
            10.0, loudness=LoudnessResult(loudness=np.ones(1000), energy=np.ones(1000), rms_db=rms_db)
        )
        timeline = TimelineBuilder(make_cfg("fade.in", "fade.out")).build(results)
        assert non_transport(timeline) == []

    def test_pitch_change(self):
        spectral = SpectralResult(
            pitch=np.array([220.0, 220.0, 240.0, 240.0, 0.0, 300.0, 301.0]),
            pitch_confidence=np.array([0.9, 0.9, 0.9, 0.9, 0.0, 0.9, 0.9]),
        )
        timeline = TimelineBuilder(make_cfg("pitch.change")).build(make_results(1.0, spectral=spectral))
        changes = of_type(timeline, EventType.PITCH_CHANGE)
        assert [(c.timestamp, c.payload.from_hz, c.payload.to_hz) for c in changes] == [
            (0.02, 220.0, 240.0),
            (0.05, 240.0, 300.0),
        ]

    def test_pitch_needs_confidence(self):
        spectral = SpectralResult(
            pitch=np.array([220.0, 330.0, 440.0]),
            pitch_confidence=np.array([0.9, 0.2, 0.4]),
        )
        timeline = TimelineBuilder(make_cfg("pitch", "pitch.change", continuous_interval=0.01)).build(
            make_results(1.0, spectral=spectral)
        )
        pitches = of_type(timeline, EventType.PITCH)
        assert [p.payload.frequency for p in pitches] == [220.0, 440.0]
        # 0.4 is voiced but below the change floor
        assert of_type(timeline, EventType.PITCH_CHANGE) == []

    def test_single_key_event(self):
        spectral = SpectralResult(key="A", scale="minor", key_strength=0.8)
        timeline = TimelineBuilder(make_cfg("key.change")).build(make_results(5.0, spectral=spectral))
        keys = of_type(timeline, EventType.KEY_CHANGE)
        assert len(keys) == 1
        assert keys[0].timestamp == 0.0
        assert (keys[0].payload.key, keys[0].payload.scale) == ("A", "minor")

    def test_chord_run_length(self):
        spectral = SpectralResult(
            chords=["C", "C", "Am", "Am", "C"],
            chord_strength=np.array([0.9, 0.8, 0.7, 0.6, 0.5]),
        )
        timeline = TimelineBuilder(make_cfg("chord.change")).build(make_results(1.0, spectral=spectral))
        chords = of_type(timeline, EventType.CHORD_CHANGE)
        assert [(c.timestamp, c.payload.chord, c.payload.strength) for c in chords] == [
            (0.0, "C", 0.9),
            (0.02, "Am", 0.7),
            (0.04, "C", 0.5),
        ]

    def test_timbre_change(self):
        mfcc = np.zeros((6, 13))
        mfcc[3:, 0] = 100.0
        timeline = TimelineBuilder(make_cfg("timbre.change")).build(
            make_results(1.0, spectral=SpectralResult(mfcc=mfcc))
        )
        changes = of_type(timeline, EventType.TIMBRE_CHANGE)
        assert [c.timestamp for c in changes] == [0.03]
        assert changes[0].payload.distance == pytest.approx(100.0)

    def test_segment_boundaries_interior_only(self):
        rng = np.random.default_rng(1)
        blocks = [np.full((40, 13), level) for level in (0.0, 50.0, 0.0)]
        mfcc = np.vstack(blocks) + rng.normal(0, 0.1, (120, 13))
        duration = 1.2
        timeline = TimelineBuilder(make_cfg("segment.boundary")).build(
            make_results(duration, spectral=SpectralResult(mfcc=mfcc))
        )
        bounds = of_type(timeline, EventType.SEGMENT_BOUNDARY)
        assert len(bounds) == 1
        assert 0.0 < bounds[0].timestamp < duration

    def test_segments_need_ten_frames(self):
        timeline = TimelineBuilder(make_cfg("segment.boundary")).build(
            make_results(1.0, spectral=SpectralResult(mfcc=np.zeros((9, 13))))
        )
        assert non_transport(timeline) == []

    def test_tempo_change(self):
        curve = np.concatenate([np.full(500, 120.0), np.full(500, 130.0)])
        rhythm = RhythmResult(
            beat_times=np.arange(0.5, 10.0, 0.5), tempo_curve=curve, tempo_bpm=120.0
        )
        timeline = TimelineBuilder(make_cfg("tempo.change")).build(make_results(10.0, rhythm=rhythm))
        changes = of_type(timeline, EventType.TEMPO_CHANGE)
        assert [(c.timestamp, c.payload.bpm) for c in changes] == [(0.5, 120.0), (5.0, 130.0)]

    def test_whole_file_scalars(self):
        results = make_results(
            3.0,
            onset=OnsetResult(onset_rate=2.5),
            spectral=SpectralResult(tuning_hz=442.0),
            quality=QualityResult(hum_hz=50.0),
        )
        timeline = TimelineBuilder(make_cfg("onset.rate", "tuning", "hum")).build(results)
        got = {e.event_type: (e.timestamp, e.payload) for e in non_transport(timeline)}
        assert got[EventType.ONSET_RATE][1].rate == 2.5
        assert got[EventType.TUNING][1].frequency == 442.0
        assert got[EventType.HUM][1].frequency == 50.0
        assert all(ts == 0.0 for ts, _ in got.values())

    def test_quality_and_envelope_points(self):
        results = make_results(
            3.0,
            quality=QualityResult(
                click_times=[0.5],
                discontinuity_times=[1.0],
                noise_burst_times=[1.5],
                saturation_runs=[(2.0, 0.01)],
            ),
            envelope=EnvelopeResult(
                envelope=np.zeros(0), attacks=[(0.2, -1.5)], decays=[(0.3, 0.4)]
            ),
        )
        cfg = make_cfg("click", "discontinuity", "noise.burst", "saturation", "attack", "decay")
        timeline = non_transport(TimelineBuilder(cfg).build(results))
        assert [(e.event_type, e.timestamp) for e in timeline] == [
            (EventType.ATTACK, 0.2),
            (EventType.DECAY, 0.3),
            (EventType.CLICK, 0.5),
            (EventType.DISCONTINUITY, 1.0),
            (EventType.NOISE_BURST, 1.5),
            (EventType.SATURATION, 2.0),
        ]
        assert timeline[0].payload.log_attack_time == -1.5
