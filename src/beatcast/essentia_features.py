"""
Essentia spectral features.

This module computes the frame-wise descriptors librosa does not provide,
using Essentia's standard-mode algorithms over a magnitude spectrogram the
caller has already computed (one STFT is shared by every spectral branch).

Features:
    - ``flux``: :class:`Flux`, L2 norm of the frame-to-frame difference
    - ``complexity``: :class:`SpectralComplexity`, number of spectral peaks
    - ``hfc``: :class:`HFC`, high frequency content
    - ``bands_bark``: :class:`BarkBands`, energy in 27 Bark critical bands
    - ``bands_erb``: :class:`ERBBands`, energy in 40 ERB-spaced bands
    - ``dissonance``: :class:`Dissonance` over :class:`SpectralPeaks`
    - ``inharmonicity``: :class:`Inharmonicity` over the same peaks

Optional Dependency:
    Essentia is optional and must be installed separately::

        pip install essentia

    If Essentia is not installed, :func:`extract_frame_features` returns a
    dict with ``available=False`` instead of raising.

Example:
    >>> S = np.abs(librosa.stft(y, n_fft=2048, hop_length=1024))
    >>> features = extract_frame_features(S, 44100, 2048, ["bands_bark"])
    >>> if features["available"]:
    ...     print(features["bands_bark"].shape)  # (frames, 27)

See Also:
    - :mod:`beatcast.analysis` for the spectral pass that calls this
"""

from typing import Any, Dict, Iterable

import librosa
import numpy as np

from beatcast.errors import AnalysisError

FEATURE_NAMES = (
    "flux",
    "complexity",
    "hfc",
    "bands_bark",
    "bands_erb",
    "dissonance",
    "inharmonicity",
)
PEAK_FEATURES = frozenset({"dissonance", "inharmonicity"})

N_BARK_BANDS = 27
N_ERB_BANDS = 40
ERB_LOW_HZ = 50.0
COMPLEXITY_THRESHOLD = 0.005
MAX_PEAKS = 100

_BAND_WIDTHS = {"bands_bark": N_BARK_BANDS, "bands_erb": N_ERB_BANDS}


def _check_request(S: np.ndarray, n_fft: int, wanted: set) -> None:
    unknown = sorted(wanted - set(FEATURE_NAMES))
    if unknown:
        raise AnalysisError(f"Unknown Essentia feature(s): {', '.join(unknown)}")
    if S.ndim != 2 or S.shape[0] != n_fft // 2 + 1:
        raise AnalysisError(
            f"spectrogram has shape {S.shape}, expected ({n_fft // 2 + 1}, frames) "
            f"for n_fft={n_fft}"
        )


def _build_algorithms(es, wanted: set, sr: int, n_fft: int, min_peak_frequency: float) -> Dict[str, Any]:
    algorithms: Dict[str, Any] = {}
    if "flux" in wanted:
        algorithms["flux"] = es.Flux(norm="L2", halfRectify=False)
    if "complexity" in wanted:
        algorithms["complexity"] = es.SpectralComplexity(
            magnitudeThreshold=COMPLEXITY_THRESHOLD, sampleRate=sr
        )
    if "hfc" in wanted:
        algorithms["hfc"] = es.HFC(sampleRate=sr)
    if "bands_bark" in wanted:
        algorithms["bands_bark"] = es.BarkBands(numberBands=N_BARK_BANDS, sampleRate=sr)
    if "bands_erb" in wanted:
        algorithms["bands_erb"] = es.ERBBands(
            inputSize=n_fft // 2 + 1,
            numberBands=N_ERB_BANDS,
            lowFrequencyBound=ERB_LOW_HZ,
            highFrequencyBound=sr / 2.0,
            sampleRate=sr,
        )
    if wanted & PEAK_FEATURES:
        # A positive floor keeps 0 Hz out of the ratio-based descriptors
        algorithms["peaks"] = es.SpectralPeaks(
            sampleRate=sr,
            minFrequency=min_peak_frequency,
            maxFrequency=sr / 2.0,
            maxPeaks=MAX_PEAKS,
            orderBy="frequency",
        )
    if "dissonance" in wanted:
        algorithms["dissonance"] = es.Dissonance()
    if "inharmonicity" in wanted:
        algorithms["inharmonicity"] = es.Inharmonicity()
    return algorithms


def extract_frame_features(
    S: np.ndarray,
    sr: int,
    n_fft: int,
    features: Iterable[str],
    min_peak_frequency: float = 20.0,
) -> Dict[str, Any]:
    """Compute Essentia descriptors for every frame of a spectrogram.

    Args:
        S: Magnitude spectrogram from ``librosa.stft`` with a Hann window,
            shaped ``(n_fft // 2 + 1, frames)``.
        sr: Sample rate of the analyzed audio.
        n_fft: FFT size used for ``S``.
        features: Names from :data:`FEATURE_NAMES` to compute.
        min_peak_frequency: Lowest spectral peak passed to dissonance and
            inharmonicity.

    Returns:
        Dictionary with either:

        If Essentia is available:
            - ``available``: True
            - one entry per requested feature: a ``(frames,)`` array for
              scalar descriptors, ``(frames, bands)`` for band energies

        If Essentia is unavailable:
            - ``available``: False
            - ``error``: Description of the problem

    Raises:
        AnalysisError: For an unknown feature name, a spectrogram that does
            not match ``n_fft``, or an Essentia algorithm failure.

    Note:
        Magnitudes are rescaled to Essentia's normalized-window convention
        (window summing to 2) so magnitude thresholds keep their meaning.
    """
    wanted = set(features)
    _check_request(S, n_fft, wanted)

    try:
        import essentia.standard as es
    except ImportError:
        return {
            "available": False,
            "error": "Essentia is not installed. Install with: pip install essentia",
        }

    n_frames = S.shape[1]
    scale = 2.0 / float(np.sum(librosa.filters.get_window("hann", n_fft)))
    frames = np.ascontiguousarray((S * scale).T, dtype=np.float32)
    values: Dict[str, list] = {name: [] for name in wanted}

    try:
        algorithms = _build_algorithms(es, wanted, sr, n_fft, min_peak_frequency)
        for spectrum in frames:
            for name in wanted - PEAK_FEATURES:
                values[name].append(algorithms[name](spectrum))
            if wanted & PEAK_FEATURES:
                freqs, mags = algorithms["peaks"](spectrum)
                if "dissonance" in wanted:
                    values["dissonance"].append(
                        algorithms["dissonance"](freqs, mags) if len(freqs) > 1 else 0.0
                    )
                if "inharmonicity" in wanted:
                    values["inharmonicity"].append(
                        algorithms["inharmonicity"](freqs, mags) if len(freqs) else 0.0
                    )
    except RuntimeError as e:
        raise AnalysisError(f"Essentia feature extraction failed: {e}") from e

    result: Dict[str, Any] = {"available": True}
    for name, per_frame in values.items():
        if name in _BAND_WIDTHS:
            result[name] = np.asarray(per_frame, dtype=np.float64).reshape(
                n_frames, _BAND_WIDTHS[name]
            )
        else:
            result[name] = np.asarray(per_frame, dtype=np.float64)
    return result
