from __future__ import annotations

import io
import os
import struct
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf  # type: ignore[import]
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .config import SAMPLE_RATE
from .errors import InvalidAudioError

FloatArray = NDArray[np.float64]
AudioNumbers = NDArray[np.floating[Any]] | Sequence[Sequence[float]] | Sequence[NDArray[Any]]

WAV_HEADER_BYTES = 44
BITS_PER_SAMPLE = 16
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


class WavInfo(BaseModel):
    channels: int
    sample_rate: int
    frames: int
    subtype: str

    model_config = ConfigDict(frozen=True, extra="forbid")


def ensure_channels(audio: AudioNumbers) -> FloatArray:
    """Normalize a buffer to a ``(channels, frames)`` float64 array.

    Accepts an array shaped ``(channels, frames)`` or a sequence of
    equal-length per-channel arrays. A 1-D array is one channel.
    """
    match audio:
        case np.ndarray() if audio.ndim == 1:
            channels = audio.reshape(1, -1)
        case np.ndarray() if audio.ndim == 2:
            channels = audio
        case np.ndarray():
            raise InvalidAudioError(f"expected a 1-D or 2-D buffer, got {audio.ndim}-D")
        case str() | bytes():
            raise InvalidAudioError("audio must be a channel list, not text")
        case Sequence():
            if len(audio) == 0:
                raise InvalidAudioError("audio needs at least one channel")
            lengths = {len(channel) for channel in audio}
            if len(lengths) != 1:
                raise InvalidAudioError(f"channels differ in length: {sorted(lengths)}")
            channels = np.asarray(audio, dtype=np.float64)
        case _:
            raise InvalidAudioError("audio must be an array or a sequence of channels")

    if channels.shape[0] == 0:
        raise InvalidAudioError("audio needs at least one channel")
    if channels.shape[1] == 0:
        raise InvalidAudioError("audio needs at least one frame")
    return np.asarray(channels, dtype=np.float64)


def quantize_pcm16(channels: FloatArray) -> NDArray[np.int16]:
    """Clamp to [-1, 1] and scale negatives by 32768, the rest by 32767.

    NaN becomes silence. Scaled values are truncated toward zero.
    """
    clean = np.nan_to_num(channels, nan=0.0, posinf=1.0, neginf=-1.0)
    clipped = np.clip(clean, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32_768.0, clipped * 32_767.0)
    return np.trunc(scaled).astype(np.int16)


def wav_header(*, channels: int, sample_rate: int, frames: int) -> bytes:
    data_bytes = frames * channels * 2
    return _HEADER.pack(
        b"RIFF",
        WAV_HEADER_BYTES + data_bytes - 8,
        b"WAVE",
        b"fmt ",
        16,
        1,
        channels,
        sample_rate,
        sample_rate * 2 * channels,
        channels * 2,
        BITS_PER_SAMPLE,
        b"data",
        data_bytes,
    )


def encode_wav(audio: AudioNumbers, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Serialize a multi-channel buffer as canonical 16-bit PCM WAV bytes."""
    if sample_rate <= 0:
        raise InvalidAudioError(f"sample_rate must be positive, got {sample_rate}")
    channels = ensure_channels(audio)
    count, frames = channels.shape
    interleaved = quantize_pcm16(channels).T.reshape(-1)
    header = wav_header(channels=count, sample_rate=sample_rate, frames=frames)
    return header + interleaved.astype("<i2").tobytes()


def read_wav(source: str | Path | bytes) -> tuple[FloatArray, int]:
    """Decode a WAV file or byte string to ``(channels, frames)`` and sample rate."""
    handle: str | Path | io.BytesIO = io.BytesIO(source) if isinstance(source, bytes) else source
    data, sample_rate = sf.read(handle, dtype="float64", always_2d=True)
    return np.asarray(data, dtype=np.float64).T, int(sample_rate)


def wav_info(source: str | Path | bytes) -> WavInfo:
    handle: str | Path | io.BytesIO = io.BytesIO(source) if isinstance(source, bytes) else source
    info = sf.info(handle)
    return WavInfo(
        channels=int(info.channels),
        sample_rate=int(info.samplerate),
        frames=int(info.frames),
        subtype=str(info.subtype),
    )


def write_bytes_atomic(path: str | Path, data: bytes) -> Path:
    """Write via a temporary sibling so readers never see a partial file."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    # Use temp file to avoid partial writes
    with tempfile.NamedTemporaryFile(
        dir=target.parent, prefix=f".{target.name}.", suffix=".part", delete=False
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        except BaseException:
            tmp.close()
            tmp_path.unlink(missing_ok=True)
            raise
    try:
        os.replace(tmp_path, target)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return target


def write_wav(path: str | Path, audio: AudioNumbers, *, sample_rate: int = SAMPLE_RATE) -> Path:
    return write_bytes_atomic(path, encode_wav(audio, sample_rate))
