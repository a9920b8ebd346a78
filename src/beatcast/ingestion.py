"""
Audio ingestion module.

This module provides the ``AudioIngester`` class for decoding, validating,
and resampling the input file. Decoding happens once per run, before any
analysis pass: an unreadable or undecodable file is fatal and is reported
before the network is touched.

Key Features:
    - Decode any format libsndfile understands (WAV, FLAC, OGG, MP3, ...)
    - Downmix to mono by averaging channels
    - Resample to the analysis sample rate
    - Validation of decoded samples (NaN/Inf detection, empty files)

Example:
    >>> ingester = AudioIngester(sample_rate=44100)
    >>> decoded = ingester.load("song.wav")
    >>> print(f"{decoded.duration:.2f}s, {decoded.channels} source channel(s)")

See Also:
    - :mod:`beatcast.analysis` for the passes that consume the samples
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import librosa
import numpy as np
import soundfile as sf

from beatcast.errors import AudioDecodeError

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


@dataclass(frozen=True)
class DecodedAudio:
    """Mono samples at the analysis rate plus source metadata.

    Attributes:
        path: Resolved path of the source file.
        samples: 1D float32 mono samples.
        sample_rate: Sample rate of ``samples`` in Hz.
        channels: Channel count of the source file.
        native_sample_rate: Sample rate of the source file.
    """

    path: Path
    samples: np.ndarray
    sample_rate: int
    channels: int
    native_sample_rate: int

    @property
    def duration(self) -> float:
        """Duration in seconds: sample count / sample rate."""
        return float(len(self.samples)) / self.sample_rate


class AudioIngester:
    """Decode and validate audio files for analysis.

    Attributes:
        sample_rate: Target sample rate for resampling.
    """

    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate

    def load(self, file_path: Union[str, Path]) -> DecodedAudio:
        """Decode a file into mono float32 samples at ``sample_rate``.

        Args:
            file_path: Path to the audio file.

        Returns:
            The decoded audio and its source metadata.

        Raises:
            AudioDecodeError: If the file is missing, unreadable, corrupt, in
                an unsupported format, or contains no valid samples.
        """
        file_path = Path(file_path)
        if not file_path.exists():
            raise AudioDecodeError(f"Audio file not found: {file_path}")
        if not file_path.is_file():
            raise AudioDecodeError(f"Not a regular file: {file_path}")

        try:
            t0 = time.time()
            audio, native_sr = sf.read(str(file_path), dtype="float32", always_2d=True)
            logger.debug("soundfile.read took %.3fs for %s", time.time() - t0, file_path.name)
        except sf.LibsndfileError as e:
            # Corrupt or unsupported audio format
            raise AudioDecodeError(
                f"Corrupt or invalid audio file {file_path}: {e}. "
                f"Check that the file is a valid audio format."
            ) from e
        except PermissionError as e:
            raise AudioDecodeError(
                f"Permission denied reading audio file {file_path}."
            ) from e
        except (OSError, RuntimeError) as e:
            raise AudioDecodeError(f"I/O error reading audio file {file_path}: {e}") from e

        channels = int(audio.shape[1])
        # soundfile returns (samples, channels)
        mono = np.mean(audio, axis=1).astype(np.float32)

        if native_sr != self.sample_rate and mono.size > 0:
            t0 = time.time()
            mono = librosa.resample(mono, orig_sr=native_sr, target_sr=self.sample_rate)
            mono = mono.astype(np.float32)
            logger.debug(
                "Resampling %dHz -> %dHz took %.3fs",
                native_sr,
                self.sample_rate,
                time.time() - t0,
            )

        if not self.validate(mono, self.sample_rate):
            raise AudioDecodeError(
                f"Audio file {file_path} decoded to no usable samples "
                f"(empty, or containing NaN/Inf values)"
            )

        decoded = DecodedAudio(
            path=file_path.resolve(),
            samples=mono,
            sample_rate=self.sample_rate,
            channels=channels,
            native_sample_rate=int(native_sr),
        )
        logger.info(
            "Decoded %s: %.2fs, %d channel(s), %d Hz (analysis at %d Hz)",
            file_path.name,
            decoded.duration,
            channels,
            native_sr,
            self.sample_rate,
        )
        return decoded

    def validate(self, audio: np.ndarray, sample_rate: int) -> bool:
        """Check that decoded samples are suitable for analysis.

        Returns False (never raises) for None, non-arrays, empty arrays,
        non-float dtypes, NaN/Inf values, or a non-positive sample rate.
        """
        if audio is None or not isinstance(audio, np.ndarray):
            return False
        if audio.size == 0:
            return False
        if sample_rate <= 0:
            return False
        if not np.issubdtype(audio.dtype, np.floating):
            return False
        if np.any(np.isnan(audio)) or np.any(np.isinf(audio)):
            return False
        return True
