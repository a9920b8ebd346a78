"""
Tests for audio decoding.
"""

import numpy as np
import pytest

from beatcast.errors import AudioDecodeError
from beatcast.ingestion import AudioIngester
from conftest import sine


class TestAudioIngester:
    """Test decoding, downmixing and resampling."""

    def test_mono_at_target_rate(self, write_wav):
        path = write_wav(sine(1.0, 22050), 22050)
        decoded = AudioIngester(sample_rate=22050).load(path)
        assert decoded.samples.ndim == 1
        assert decoded.samples.dtype == np.float32
        assert decoded.channels == 1
        assert decoded.duration == pytest.approx(1.0)

    def test_stereo_downmix_keeps_channel_count(self, write_wav):
        left = sine(0.5, 22050, 440.0)
        stereo = np.stack([left, left], axis=1)
        decoded = AudioIngester(sample_rate=22050).load(write_wav(stereo, 22050))
        assert decoded.channels == 2
        assert decoded.samples.shape == (len(left),)
        np.testing.assert_allclose(decoded.samples, left, atol=1e-4)

    def test_resample(self, write_wav):
        path = write_wav(sine(2.0, 22050), 22050)
        decoded = AudioIngester(sample_rate=44100).load(path)
        assert decoded.native_sample_rate == 22050
        assert decoded.sample_rate == 44100
        assert decoded.duration == pytest.approx(2.0, abs=1e-3)

    def test_missing_file(self, tmp_path):
        with pytest.raises(AudioDecodeError, match="not found"):
            AudioIngester(sample_rate=22050).load(tmp_path / "missing.wav")

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "corrupt.wav"
        path.write_bytes(b"RIFF\x00\x00garbage")
        with pytest.raises(AudioDecodeError):
            AudioIngester(sample_rate=22050).load(path)

    def test_empty_file(self, write_wav):
        path = write_wav(np.zeros(0, dtype=np.float32), 22050)
        with pytest.raises(AudioDecodeError, match="no usable samples"):
            AudioIngester(sample_rate=22050).load(path)

    def test_decode_error_is_io_error(self, tmp_path):
        with pytest.raises(IOError):
            AudioIngester(sample_rate=22050).load(tmp_path / "missing.wav")

    def test_validate(self):
        ingester = AudioIngester(sample_rate=22050)
        assert ingester.validate(np.zeros(10, dtype=np.float32), 22050)
        assert not ingester.validate(np.array([], dtype=np.float32), 22050)
        assert not ingester.validate(np.array([np.nan], dtype=np.float32), 22050)
        assert not ingester.validate(np.zeros(10, dtype=np.int16), 22050)
        assert not ingester.validate(np.zeros(10, dtype=np.float32), 0)
