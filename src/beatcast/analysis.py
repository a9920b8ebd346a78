"""
Analysis orchestration.

This module provides the ``AnalysisOrchestrator`` class, which decides from
the active event filter which extraction passes are needed, runs only those
over the decoded file, and collects their outputs into one
:class:`~beatcast.results.AnalysisResults`.

Passes:
    - **rhythm**: beat ticks, beat confidence, local tempo, downbeats
    - **onset**: onset times and strengths, onset rate, novelty curve
    - **silence**: first and last frame above a fixed -60 dB floor
    - **loudness**: per-frame loudness, energy and RMS level
    - **spectral**: one STFT fanned out to only the requested branches
      (MFCC, bands, spectral shape, chroma/key/chords, fundamental frequency,
      tuning), with flux, complexity, HFC, Bark/ERB bands, dissonance and
      inharmonicity computed by Essentia when it is installed
    - **melody**: predominant f0 at its own, finer hop
    - **envelope**: amplitude envelope with attack and decay segments
    - **quality**: clipping, discontinuities, clicks, noise bursts, mains hum

Duration is always known: it comes from the decoded sample count whether or
not any pass runs.

Passes are independent and write disjoint result slots, so with
``workers > 1`` they run on a thread pool; results are joined before the
timeline is built. Cancellation is checked before each pass.

Example:
    >>> cfg = EmitterConfig(input_file="song.wav", enabled_events=tier1_events())
    >>> results = AnalysisOrchestrator(cfg).run()
    >>> print(f"{results.duration:.1f}s, {len(results.rhythm.beat_times)} beats")

See Also:
    - :mod:`beatcast.timeline` for turning results into events
    - :mod:`beatcast.operators` for key, chord and segment estimation
    - :mod:`beatcast.essentia_features` for the Essentia descriptors
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

import librosa
import numpy as np

from beatcast import operators
from beatcast.cancellation import CancellationToken
from beatcast.config import EmitterConfig
from beatcast.errors import AnalysisCancelled, AnalysisError
from beatcast.essentia_features import extract_frame_features
from beatcast.events import EventType, event_name, needs_any
from beatcast.ingestion import AudioIngester, DecodedAudio
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

SILENCE_THRESHOLD_DB = -60.0
PEAK_MIN_FREQUENCY_HZ = 20.0
N_MFCC = 13
N_MEL_BANDS = 24
CHORD_WINDOW_S = 2.0
PITCH_FMIN_HZ = 65.41   # C2
PITCH_FMAX_HZ = 2093.0  # C7
MELODY_FMIN_HZ = 80.0
MELODY_FMAX_HZ = 1000.0

# Heuristic detector settings for the envelope and quality passes.
# Empirical and tunable.
ENVELOPE_PEAK_RATIO = 0.25
ENVELOPE_MIN_RISE = 1.41  # about 3 dB
SATURATION_LEVEL = 0.99
SATURATION_MIN_SAMPLES = 3
DISCONTINUITY_JUMP = 0.5
CLICK_RATIO = 8.0
CLICK_CONTEXT_FRAMES = 10
NOISE_FLATNESS = 0.5
NOISE_MIN_DB = -30.0
HUM_CANDIDATES_HZ = (50.0, 60.0)
HUM_RATIO = 10.0
EVENT_DEDUP_S = 0.05

PASS_TRIGGERS: Dict[str, frozenset] = {
    "rhythm": frozenset({EventType.BEAT, EventType.TEMPO_CHANGE, EventType.DOWNBEAT}),
    "onset": frozenset({EventType.ONSET, EventType.ONSET_RATE, EventType.NOVELTY}),
    "silence": frozenset({EventType.SILENCE_START, EventType.SILENCE_END, EventType.GAP}),
    "loudness": frozenset({
        EventType.LOUDNESS,
        EventType.LOUDNESS_PEAK,
        EventType.ENERGY,
        EventType.DYNAMIC_CHANGE,
        EventType.FADE_IN,
        EventType.FADE_OUT,
    }),
    "spectral": frozenset({
        EventType.SPECTRAL_CENTROID,
        EventType.SPECTRAL_FLUX,
        EventType.SPECTRAL_COMPLEXITY,
        EventType.SPECTRAL_CONTRAST,
        EventType.SPECTRAL_ROLLOFF,
        EventType.MFCC,
        EventType.TIMBRE_CHANGE,
        EventType.BANDS_MEL,
        EventType.BANDS_BARK,
        EventType.BANDS_ERB,
        EventType.HFC,
        EventType.CHROMA,
        EventType.KEY_CHANGE,
        EventType.CHORD_CHANGE,
        EventType.TUNING,
        EventType.DISSONANCE,
        EventType.INHARMONICITY,
        EventType.PITCH,
        EventType.PITCH_CHANGE,
        EventType.SEGMENT_BOUNDARY,
    }),
    "melody": frozenset({EventType.MELODY}),
    "envelope": frozenset({EventType.ENVELOPE, EventType.ATTACK, EventType.DECAY}),
    "quality": frozenset({
        EventType.CLICK,
        EventType.DISCONTINUITY,
        EventType.NOISE_BURST,
        EventType.SATURATION,
        EventType.HUM,
    }),
}

# Spectral branches computed by Essentia -> SpectralResult field
ESSENTIA_BRANCHES: Dict[EventType, str] = {
    EventType.SPECTRAL_FLUX: "flux",
    EventType.SPECTRAL_COMPLEXITY: "complexity",
    EventType.HFC: "hfc",
    EventType.BANDS_BARK: "bands_bark",
    EventType.BANDS_ERB: "bands_erb",
    EventType.DISSONANCE: "dissonance",
    EventType.INHARMONICITY: "inharmonicity",
}

PASS_ORDER = ("rhythm", "onset", "silence", "loudness", "spectral", "melody",
              "envelope", "quality")


def required_passes(event_filter) -> List[str]:
    """Names of the passes the filter needs, in execution order."""
    return [name for name in PASS_ORDER if needs_any(event_filter, PASS_TRIGGERS[name])]


def _to_db(amplitude: np.ndarray) -> np.ndarray:
    return 20.0 * np.log10(np.maximum(amplitude, 1e-10))


def _dedupe_times(times: np.ndarray, min_gap: float) -> List[float]:
    kept: List[float] = []
    for t in times:
        if not kept or t - kept[-1] >= min_gap:
            kept.append(float(t))
    return kept


class _AnalysisStep:
    """Lightweight context manager to log pass start/completion with duration."""

    def __init__(self, log: logging.Logger, name: str, timings: Optional[Dict[str, float]] = None):
        self.log = log
        self.name = name
        self.start_time = 0.0
        self.timings = timings

    def __enter__(self) -> "_AnalysisStep":
        self.start_time = time.time()
        self.log.info("Analyzing %s...", self.name)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        duration = time.time() - self.start_time
        if self.timings is not None:
            self.timings[self.name] = round(duration, 3)
        if exc_type is None:
            self.log.info("%s pass completed in %.2fs", self.name, duration)
        else:
            self.log.error("%s pass failed after %.2fs", self.name, duration)
        return False


class AnalysisOrchestrator:
    """Run the extraction passes an event filter needs.

    Attributes:
        cfg: Run configuration (sample rate, frame/hop sizes, filter).
        token: Cancellation token polled before each pass.
        step_timings: Seconds spent per pass in the last :meth:`run`.
    """

    def __init__(
        self,
        cfg: EmitterConfig,
        token: Optional[CancellationToken] = None,
        ingester: Optional[AudioIngester] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.cfg = cfg
        self.token = token or CancellationToken()
        self.ingester = ingester or AudioIngester(sample_rate=cfg.sample_rate)
        self.logger = logger or logging.getLogger(__name__)
        self.step_timings: Dict[str, float] = {}

    @property
    def event_filter(self) -> frozenset:
        return self.cfg.enabled_events

    def required_passes(self) -> List[str]:
        return required_passes(self.event_filter)

    def run(self) -> AnalysisResults:
        """Decode the input and run every required pass.

        Returns:
            Populated results; slots of passes that did not run stay None.

        Raises:
            AudioDecodeError: If the input cannot be decoded. Raised before
                any pass runs.
            AnalysisError: If an operator rejects its configuration.
            AnalysisCancelled: If the token is set before a pass starts.
        """
        self.step_timings.clear()
        decoded = self.ingester.load(self.cfg.input_file)
        return self.analyze(decoded)

    def analyze(self, decoded: DecodedAudio) -> AnalysisResults:
        """Run the required passes over already decoded audio."""
        cfg = self.cfg
        results = AnalysisResults(
            filename=str(cfg.input_file),
            duration=decoded.duration,
            sample_rate=decoded.sample_rate,
            channels=decoded.channels,
            hop_size=cfg.hop_size,
        )

        passes = self.required_passes()
        if not passes:
            self.logger.info("No analysis passes needed; duration only (%.2fs)", results.duration)
            return results
        self.logger.info("Running %d pass(es): %s", len(passes), ", ".join(passes))

        runners: Dict[str, Callable[[np.ndarray], object]] = {
            "rhythm": self._run_rhythm,
            "onset": self._run_onset,
            "silence": self._run_silence,
            "loudness": self._run_loudness,
            "spectral": self._run_spectral,
            "melody": self._run_melody,
            "envelope": self._run_envelope,
            "quality": self._run_quality,
        }
        y = decoded.samples

        if cfg.workers > 1 and len(passes) > 1:
            with ThreadPoolExecutor(max_workers=cfg.workers) as pool:
                futures = {
                    name: pool.submit(self._run_pass, name, runners[name], y)
                    for name in passes
                }
                for name, future in futures.items():
                    setattr(results, name, future.result())
        else:
            for name in passes:
                setattr(results, name, self._run_pass(name, runners[name], y))

        return results

    def _run_pass(self, name: str, runner: Callable[[np.ndarray], object], y: np.ndarray):
        if self.token.cancelled:
            raise AnalysisCancelled(f"cancelled before {name} pass")
        with _AnalysisStep(self.logger, name, self.step_timings):
            try:
                return runner(y)
            except librosa.util.exceptions.ParameterError as e:
                raise AnalysisError(f"{name} pass misconfigured: {e}") from e

    # --- Passes ---

    def _run_rhythm(self, y: np.ndarray) -> RhythmResult:
        sr, hop = self.cfg.sample_rate, self.cfg.hop_size
        onset_env = librosa.onset.onset_strength(y=y, sr=sr, hop_length=hop)
        tempo, beat_frames = librosa.beat.beat_track(
            onset_envelope=onset_env, sr=sr, hop_length=hop
        )
        beat_frames = np.asarray(beat_frames, dtype=int)
        beat_times = librosa.frames_to_time(beat_frames, sr=sr, hop_length=hop)

        peak = float(onset_env.max()) if onset_env.size else 0.0
        if peak > 0 and beat_frames.size:
            confidence = onset_env[beat_frames] / peak
        else:
            confidence = np.zeros(len(beat_frames))

        tempo_curve = librosa.feature.tempo(
            onset_envelope=onset_env, sr=sr, hop_length=hop, aggregate=None
        )

        # Select every Nth beat as bar boundary
        n = self.cfg.beats_per_bar
        result = RhythmResult(
            beat_times=beat_times,
            beat_confidence=confidence,
            downbeat_times=beat_times[::n],
            downbeat_confidence=confidence[::n],
            tempo_curve=np.asarray(tempo_curve, dtype=np.float64),
            tempo_bpm=float(np.atleast_1d(tempo)[0]) if beat_frames.size else 0.0,
        )
        self.logger.info("  %d beats, tempo %.1f BPM", len(beat_times), result.tempo_bpm)
        return result

    def _run_onset(self, y: np.ndarray) -> OnsetResult:
        sr, hop = self.cfg.sample_rate, self.cfg.hop_size
        onset_env = librosa.onset.onset_strength(y=y, sr=sr, hop_length=hop)
        onset_frames = librosa.onset.onset_detect(
            onset_envelope=onset_env, sr=sr, hop_length=hop
        )
        onset_frames = np.asarray(onset_frames, dtype=int)
        onset_times = librosa.frames_to_time(onset_frames, sr=sr, hop_length=hop)

        peak = float(onset_env.max()) if onset_env.size else 0.0
        novelty = onset_env / peak if peak > 0 else np.zeros_like(onset_env)
        duration = len(y) / sr
        result = OnsetResult(
            onset_times=onset_times,
            onset_strength=novelty[onset_frames] if onset_frames.size else np.zeros(0),
            onset_rate=len(onset_times) / duration if duration > 0 else 0.0,
            novelty=novelty,
        )
        self.logger.info("  %d onsets (%.2f/s)", len(onset_times), result.onset_rate)
        return result

    def _frame_rms(self, y: np.ndarray) -> np.ndarray:
        return librosa.feature.rms(
            y=y, frame_length=self.cfg.frame_size, hop_length=self.cfg.hop_size, center=True
        )[0]

    def _run_silence(self, y: np.ndarray) -> SilenceResult:
        level_db = _to_db(self._frame_rms(y))
        sounding = np.flatnonzero(level_db > SILENCE_THRESHOLD_DB)
        if sounding.size == 0:
            self.logger.info("  file is silent below %.0f dB", SILENCE_THRESHOLD_DB)
            return SilenceResult()
        result = SilenceResult(start_frame=int(sounding[0]), stop_frame=int(sounding[-1]))
        self.logger.info("  sound from frame %d to %d", result.start_frame, result.stop_frame)
        return result

    def _run_loudness(self, y: np.ndarray) -> LoudnessResult:
        rms = self._frame_rms(y)
        energy = rms ** 2 * self.cfg.frame_size
        # Stevens' power law
        loudness = energy ** 0.67
        return LoudnessResult(loudness=loudness, energy=energy, rms_db=_to_db(rms))

    def _run_spectral(self, y: np.ndarray) -> SpectralResult:
        f = self.event_filter
        sr, n_fft, hop = self.cfg.sample_rate, self.cfg.frame_size, self.cfg.hop_size
        S = np.abs(librosa.stft(y, n_fft=n_fft, hop_length=hop, window="hann", center=True))
        power = S ** 2
        result = SpectralResult()

        if EventType.SPECTRAL_CENTROID in f:
            result.centroid = librosa.feature.spectral_centroid(S=S, sr=sr, n_fft=n_fft)[0]
        if EventType.SPECTRAL_CONTRAST in f:
            n_bands = 6
            while n_bands > 1 and 200.0 * 2.0 ** n_bands >= sr / 2.0:
                n_bands -= 1
            result.contrast = librosa.feature.spectral_contrast(
                S=S, sr=sr, n_fft=n_fft, n_bands=n_bands
            ).T
        if EventType.SPECTRAL_ROLLOFF in f:
            result.rolloff = librosa.feature.spectral_rolloff(S=S, sr=sr, n_fft=n_fft)[0]

        if needs_any(f, {EventType.MFCC, EventType.TIMBRE_CHANGE, EventType.SEGMENT_BOUNDARY}):
            mel_power = librosa.feature.melspectrogram(S=power, sr=sr)
            result.mfcc = librosa.feature.mfcc(
                S=librosa.power_to_db(mel_power), n_mfcc=N_MFCC
            ).T

        if EventType.BANDS_MEL in f:
            result.bands_mel = librosa.feature.melspectrogram(
                S=power, sr=sr, n_mels=N_MEL_BANDS
            ).T

        if needs_any(f, {EventType.CHROMA, EventType.KEY_CHANGE, EventType.CHORD_CHANGE}):
            chroma = librosa.feature.chroma_stft(S=power, sr=sr)
            if EventType.CHROMA in f:
                result.chroma = chroma.T
            if EventType.KEY_CHANGE in f:
                result.key, result.scale, result.key_strength = operators.estimate_key(chroma)
                self.logger.info("  key: %s %s", result.key, result.scale)
            if EventType.CHORD_CHANGE in f:
                result.chords, result.chord_strength = operators.estimate_chords(
                    chroma, sr, hop, window_s=CHORD_WINDOW_S
                )

        if EventType.TUNING in f:
            deviation = float(librosa.estimate_tuning(S=S, sr=sr, n_fft=n_fft))
            result.tuning_hz = 440.0 * 2.0 ** (deviation / 12.0)

        wanted = {name: et for et, name in ESSENTIA_BRANCHES.items() if et in f}
        if wanted:
            features = extract_frame_features(
                S, sr, n_fft, wanted, min_peak_frequency=PEAK_MIN_FREQUENCY_HZ
            )
            if features["available"]:
                for name in wanted:
                    setattr(result, name, features[name])
            else:
                self.logger.warning(
                    "%s; skipping %s",
                    features["error"],
                    ", ".join(sorted(event_name(et) for et in wanted.values())),
                )

        if needs_any(f, {EventType.PITCH, EventType.PITCH_CHANGE}):
            f0, _, voiced_prob = librosa.pyin(
                y, fmin=PITCH_FMIN_HZ, fmax=PITCH_FMAX_HZ, sr=sr,
                frame_length=n_fft, hop_length=hop, center=True,
            )
            result.pitch = np.nan_to_num(f0, nan=0.0)
            result.pitch_confidence = np.nan_to_num(voiced_prob, nan=0.0)

        return result

    def _run_melody(self, y: np.ndarray) -> MelodyResult:
        hop = self.cfg.melody_hop_size
        f0, voiced, _ = librosa.pyin(
            y, fmin=MELODY_FMIN_HZ, fmax=MELODY_FMAX_HZ, sr=self.cfg.sample_rate,
            frame_length=self.cfg.frame_size, hop_length=hop, center=True,
        )
        pitch = np.where(voiced & np.isfinite(f0), f0, 0.0)
        self.logger.info("  %d voiced melody frames", int(np.count_nonzero(pitch)))
        return MelodyResult(pitch=pitch, hop_size=hop)

    def _run_envelope(self, y: np.ndarray) -> EnvelopeResult:
        env = self._frame_rms(y)
        result = EnvelopeResult(envelope=env)
        if env.size < 3 or env.max() <= 0:
            return result

        frame_s = self.cfg.hop_size / self.cfg.sample_rate
        floor = ENVELOPE_PEAK_RATIO * env.max()
        for p in np.flatnonzero(librosa.util.localmax(env) & (env >= floor)):
            start = p
            while start > 0 and env[start - 1] < env[start]:
                start -= 1
            end = p
            while end < env.size - 1 and env[end + 1] < env[end]:
                end += 1
            if env[p] < ENVELOPE_MIN_RISE * max(env[start], 1e-10):
                continue
            attack_s = max((p - start) * frame_s, frame_s)
            result.attacks.append((start * frame_s, float(np.log10(attack_s))))
            result.decays.append((p * frame_s, (end - p) * frame_s))
        return result

    def _run_quality(self, y: np.ndarray) -> QualityResult:
        sr, n_fft, hop = self.cfg.sample_rate, self.cfg.frame_size, self.cfg.hop_size
        result = QualityResult()

        # Saturation: runs of samples at full scale
        clipped = np.concatenate(([False], np.abs(y) >= SATURATION_LEVEL, [False]))
        edges = np.flatnonzero(np.diff(clipped.astype(np.int8)))
        for start, stop in zip(edges[::2], edges[1::2]):
            if stop - start >= SATURATION_MIN_SAMPLES:
                result.saturation_runs.append((start / sr, (stop - start) / sr))

        # Discontinuities: large second differences
        if y.size >= 3:
            curvature = np.abs(y[2:] - 2.0 * y[1:-1] + y[:-2])
            jumps = (np.flatnonzero(curvature > DISCONTINUITY_JUMP) + 1) / sr
            result.discontinuity_times = _dedupe_times(jumps, EVENT_DEDUP_S)

        # Clicks: frames whose high-passed level spikes above local context
        hp_rms = librosa.feature.rms(
            y=np.diff(y, prepend=y[:1]), frame_length=n_fft, hop_length=hop, center=True
        )[0]
        width = 2 * CLICK_CONTEXT_FRAMES + 1
        if hp_rms.size >= width:
            padded = np.pad(hp_rms, CLICK_CONTEXT_FRAMES, mode="edge")
            context = np.median(np.lib.stride_tricks.sliding_window_view(padded, width), axis=1)
            spikes = (hp_rms > CLICK_RATIO * np.maximum(context, 1e-6)) & (_to_db(hp_rms) > -50.0)
            times = librosa.frames_to_time(np.flatnonzero(spikes), sr=sr, hop_length=hop)
            result.click_times = _dedupe_times(times, EVENT_DEDUP_S)

        # Noise bursts: loud, spectrally flat regions (rising edges only)
        flatness = librosa.feature.spectral_flatness(y=y, n_fft=n_fft, hop_length=hop)[0]
        noisy = (flatness > NOISE_FLATNESS) & (_to_db(self._frame_rms(y))[: flatness.size] > NOISE_MIN_DB)
        rising = np.flatnonzero(np.diff(np.concatenate(([False], noisy)).astype(np.int8)) > 0)
        result.noise_burst_times = [float(t) for t in
                                    librosa.frames_to_time(rising, sr=sr, hop_length=hop)]

        # Mains hum: narrow long-term spectral peak at 50 or 60 Hz
        hum_fft = 1 << int(np.floor(np.log2(sr)))
        if y.size >= hum_fft:
            spectrum = np.abs(librosa.stft(y, n_fft=hum_fft, hop_length=hum_fft // 2)).mean(axis=1)
            freqs = librosa.fft_frequencies(sr=sr, n_fft=hum_fft)
            best_ratio = HUM_RATIO
            for candidate in HUM_CANDIDATES_HZ:
                k = int(np.argmin(np.abs(freqs - candidate)))
                neighbours = np.concatenate((spectrum[max(0, k - 12):max(0, k - 2)],
                                             spectrum[k + 3:k + 13]))
                if neighbours.size == 0:
                    continue
                ratio = spectrum[k] / max(float(np.median(neighbours)), 1e-10)
                if ratio >= best_ratio:
                    best_ratio = ratio
                    result.hum_hz = candidate

        return result
