import struct
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf  # type: ignore[import]

from gapsong.audio import (
    WAV_HEADER_BYTES,
    encode_wav,
    ensure_channels,
    quantize_pcm16,
    read_wav,
    wav_info,
    write_wav,
)
from gapsong.errors import InvalidAudioError


def test_header_fields() -> None:
    data = encode_wav([[0.0] * 10, [0.0] * 10], 44_100)
    assert len(data) == WAV_HEADER_BYTES + 10 * 2 * 2
    assert data[0:4] == b"RIFF"
    assert data[8:16] == b"WAVEfmt "
    assert data[36:40] == b"data"
    riff_size, = struct.unpack_from("<I", data, 4)
    fmt_size, fmt, channels, rate, byte_rate, align, bits = struct.unpack_from("<IHHIIHH", data, 16)
    data_size, = struct.unpack_from("<I", data, 40)
    assert riff_size == len(data) - 8
    assert (fmt_size, fmt, channels, rate) == (16, 1, 2, 44_100)
    assert (byte_rate, align, bits) == (44_100 * 4, 4, 16)
    assert data_size == 40


def test_asymmetric_quantization() -> None:
    values = quantize_pcm16(np.array([[-1.0, 1.0, 0.5, -0.5, 0.0, 2.0, -3.0]]))
    assert values.tolist() == [[-32768, 32767, 16383, -16384, 0, 32767, -32768]]


def test_nan_becomes_silence() -> None:
    assert quantize_pcm16(np.array([[np.nan]])).tolist() == [[0]]


def test_channels_are_interleaved() -> None:
    data = encode_wav([[0.5, -1.0], [1.0, 0.0]], 8_000)
    samples = np.frombuffer(data[WAV_HEADER_BYTES:], dtype="<i2")
    assert samples.tolist() == [16383, 32767, -32768, 0]


def test_mono_array_is_one_channel() -> None:
    assert ensure_channels(np.zeros(5)).shape == (1, 5)


@pytest.mark.parametrize(
    "audio",
    [
        [],
        [[]],
        [[0.0, 0.1], [0.0]],
        "abc",
        np.zeros((1, 2, 3)),
    ],
)
def test_invalid_buffers_are_rejected(audio: object) -> None:
    with pytest.raises(InvalidAudioError):
        encode_wav(audio, 44_100)  # type: ignore[arg-type]


def test_non_positive_sample_rate_is_rejected() -> None:
    with pytest.raises(InvalidAudioError):
        encode_wav([[0.0]], 0)


def test_soundfile_decodes_encoded_bytes() -> None:
    rng = np.random.default_rng(3)
    audio = rng.uniform(-1.0, 1.0, size=(2, 300))
    data = encode_wav(audio, 22_050)

    info = wav_info(data)
    assert (info.channels, info.sample_rate, info.frames) == (2, 22_050, 300)
    assert info.subtype == "PCM_16"

    decoded, rate = read_wav(data)
    assert rate == 22_050
    assert decoded.shape == (2, 300)
    assert np.allclose(decoded, audio, atol=1.0 / 16_000)


def test_write_wav_creates_file(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "out.wav"
    written = write_wav(target, [[0.0, 0.1, -0.1, 0.0]], sample_rate=22_050)
    assert written == target
    assert target.stat().st_size == WAV_HEADER_BYTES + 8
    data, rate = sf.read(target, dtype="int16")
    assert rate == 22_050
    assert data.tolist() == [0, 3276, -3276, 0]
    assert not list(tmp_path.glob("nested/*.part"))
