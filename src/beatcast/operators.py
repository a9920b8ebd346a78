"""
Tonal and structural operators over librosa features.

Key and chord estimation take a ``(12, frames)`` chroma matrix from
``librosa.feature.chroma_stft``; segmentation wraps librosa's constrained
agglomerative clustering. Key profiles are after Krumhansl & Kessler.
"""

from typing import List, Tuple

import librosa
import numpy as np

from beatcast.errors import AnalysisError

PITCH_CLASSES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

_MAJOR_PROFILE = np.array(
    [6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88]
)
_MINOR_PROFILE = np.array(
    [6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17]
)


def estimate_key(chroma: np.ndarray) -> Tuple[str, str, float]:
    """Whole-file key from the mean chroma vector.

    Correlates the mean pitch-class profile against the 24 rotated
    Krumhansl-Kessler profiles.

    Returns:
        ``(key, scale, strength)`` with ``scale`` in ``{"major", "minor"}``
        and ``strength`` the winning correlation clipped to ``[0, 1]``.
        An all-zero profile yields ``("C", "major", 0.0)``.
    """
    if chroma.ndim != 2 or chroma.shape[0] != 12:
        raise AnalysisError(f"expected a (12, frames) chroma matrix, got shape {chroma.shape}")
    profile = chroma.mean(axis=1) if chroma.shape[1] else np.zeros(12)
    if not np.any(profile > 0) or np.allclose(profile, profile[0]):
        return PITCH_CLASSES[0], "major", 0.0

    best = (PITCH_CLASSES[0], "major", -np.inf)
    for scale, template in (("major", _MAJOR_PROFILE), ("minor", _MINOR_PROFILE)):
        for tonic in range(12):
            r = np.corrcoef(profile, np.roll(template, tonic))[0, 1]
            if r > best[2]:
                best = (PITCH_CLASSES[tonic], scale, r)
    return best[0], best[1], float(np.clip(best[2], 0.0, 1.0))


def _chord_templates() -> Tuple[List[str], np.ndarray]:
    names = []
    templates = []
    for root in range(12):
        for suffix, third in (("", 4), ("m", 3)):
            t = np.zeros(12)
            t[[root, (root + third) % 12, (root + 7) % 12]] = 1.0
            names.append(PITCH_CLASSES[root] + suffix)
            templates.append(t / np.linalg.norm(t))
    return names, np.array(templates)


def estimate_chords(
    chroma: np.ndarray,
    sr: int,
    hop_size: int,
    window_s: float = 2.0,
) -> Tuple[List[str], np.ndarray]:
    """Per-frame major/minor triad labels from chroma averaged over a window.

    Args:
        chroma: ``(12, frames)`` chroma matrix.
        sr: Sample rate.
        hop_size: Hop between chroma frames.
        window_s: Length of the centered averaging window.

    Returns:
        ``(labels, strengths)``: one label per frame, and the cosine
        similarity of the winning template.
    """
    if chroma.ndim != 2 or chroma.shape[0] != 12:
        raise AnalysisError(f"expected a (12, frames) chroma matrix, got shape {chroma.shape}")
    n_frames = chroma.shape[1]
    if n_frames == 0:
        return [], np.zeros(0)

    width = max(1, int(round(window_s * sr / hop_size)))
    kernel = np.ones(width) / width
    smoothed = np.vstack([np.convolve(row, kernel, mode="same") for row in chroma])
    norms = np.linalg.norm(smoothed, axis=0)
    norms[norms == 0] = 1.0
    unit = smoothed / norms

    names, templates = _chord_templates()
    scores = templates @ unit
    best = np.argmax(scores, axis=0)
    labels = [names[i] for i in best]
    strengths = scores[best, np.arange(n_frames)]
    return labels, np.clip(strengths, 0.0, 1.0)


def segment_boundaries(features: np.ndarray, n_segments: int) -> np.ndarray:
    """Structural boundaries over a ``(frames, dims)`` feature matrix.

    Uses librosa's constrained agglomerative clustering.

    Returns:
        Frame indices of segment starts, with the last frame index appended,
        so the first and last entries mark the file edges.
    """
    n_frames = features.shape[0]
    if n_frames < 2:
        return np.array([0, max(0, n_frames - 1)], dtype=int)
    k = int(np.clip(n_segments, 1, n_frames))
    starts = librosa.segment.agglomerative(features.T, k)
    return np.append(np.asarray(starts, dtype=int), n_frames - 1)
