"""
Tests for the tonal and structural operators.
"""

import numpy as np
import pytest

from beatcast import operators
from beatcast.errors import AnalysisError


def major_triad_chroma(root, frames=20):
    chroma = np.full((12, frames), 0.05)
    for interval in (0, 4, 7):
        chroma[(root + interval) % 12] = 1.0
    return chroma


class TestTonal:
    """Test key and chord estimation."""

    def test_key_of_triad(self):
        key, scale, strength = operators.estimate_key(major_triad_chroma(7))
        assert (key, scale) == ("G", "major")
        assert 0.0 < strength <= 1.0

    def test_key_of_flat_profile(self):
        assert operators.estimate_key(np.zeros((12, 5))) == ("C", "major", 0.0)

    def test_key_rejects_bad_shape(self):
        with pytest.raises(AnalysisError):
            operators.estimate_key(np.zeros((10, 5)))

    def test_chords_follow_harmony(self):
        a_minor = np.full((12, 100), 0.05)
        a_minor[[9, 0, 4]] = 1.0
        chroma = np.hstack([major_triad_chroma(0, 100), a_minor])
        labels, strengths = operators.estimate_chords(chroma, sr=22050, hop_size=512, window_s=0.2)
        assert labels[10] == "C"
        assert labels[-10] == "Am"
        assert len(strengths) == 200
        assert np.all((strengths >= 0) & (strengths <= 1))


class TestSegmentation:
    """Test structural boundaries."""

    def test_edges_included(self):
        features = np.vstack([np.zeros((30, 4)), np.full((30, 4), 10.0)])
        bounds = operators.segment_boundaries(features, 2)
        assert bounds[0] == 0
        assert bounds[-1] == 59
        assert bounds[1] == 30
