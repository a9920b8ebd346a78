"""Pytest configuration.

We add the ``src`` folder to sys.path so tests can import ``beatcast``
without requiring the package to be installed.

Shared helpers build synthetic audio files and analysis results so tests
do not depend on external fixtures.
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf

_REPO_ROOT = Path(__file__).resolve().parents[1]
_SRC = _REPO_ROOT / "src"
for _path in (_SRC, _REPO_ROOT):
    if str(_path) not in sys.path:
        sys.path.insert(0, str(_path))


def sine(duration: float, sr: int, freq: float = 440.0, amplitude: float = 0.5) -> np.ndarray:
    t = np.arange(int(round(duration * sr))) / sr
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def click_track(duration: float, sr: int, bpm: float = 120.0) -> np.ndarray:
    """Short decaying noise bursts on every beat."""
    audio = np.zeros(int(round(duration * sr)), dtype=np.float32)
    rng = np.random.default_rng(0)
    burst = (rng.standard_normal(int(0.03 * sr)) * np.exp(-np.linspace(0, 8, int(0.03 * sr))))
    period = 60.0 / bpm
    t = 0.0
    while t < duration:
        start = int(t * sr)
        stop = min(start + len(burst), len(audio))
        audio[start:stop] += 0.8 * burst[: stop - start]
        t += period
    return np.clip(audio, -1.0, 1.0)


@pytest.fixture
def write_wav(tmp_path):
    """Write mono or multichannel float audio to a temporary WAV file."""

    def _write(audio: np.ndarray, sr: int, name: str = "test.wav") -> Path:
        path = tmp_path / name
        sf.write(path, audio, sr)
        return path

    return _write


@pytest.fixture
def no_essentia(monkeypatch):
    """Make ``import essentia.standard`` fail as if Essentia were not installed."""
    monkeypatch.setitem(sys.modules, "essentia", None)
    monkeypatch.setitem(sys.modules, "essentia.standard", None)
