from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict

from .config import SonificationConfig, coerce_sonification
from .errors import AudioUnavailableError, PlaybackError
from .graph import MixBus, VoiceSet, reverb_impulse

_LOGGER = logging.getLogger("gapsong.engine")

RenderCallback = Callable[[int], NDArray[np.float32]]
# (render, sample_rate, channels, block_size) -> closer
StartStream = Callable[[RenderCallback, int, int, int], Callable[[], None]]


class OutputBackend(BaseModel):
    name: str
    start: StartStream

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


def _load_sounddevice() -> OutputBackend | None:
    try:
        import sounddevice as sd_module  # type: ignore[import]
    except (ImportError, OSError) as exc:
        _LOGGER.info("sounddevice not available: %s", exc, exc_info=True)
        return None
    sd: Any = sd_module

    def _start(
        render: RenderCallback,
        sample_rate: int,
        channels: int,
        block_size: int,
    ) -> Callable[[], None]:
        def _callback(outdata: Any, frames: int, time_info: Any, status: Any) -> None:
            _ = time_info
            if status:
                _LOGGER.debug("Output stream status: %s", status)
            outdata[:] = render(frames)

        stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=channels,
            dtype="float32",
            blocksize=block_size,
            callback=_callback,
        )
        stream.start()

        def _close() -> None:
            stream.stop()
            stream.close()

        return _close

    return OutputBackend(name="sounddevice", start=_start)


def resolve_backend() -> OutputBackend:
    backend = _load_sounddevice()
    if backend is None:
        raise AudioUnavailableError(
            "Live playback requires sounddevice and a working PortAudio output. "
            "Install it with `pip install gapsong[playback]` (or use export instead)."
        )
    return backend


class AudioEngine:
    """Explicitly owned live audio context.

    Holds the output stream and the permanent mix bus (master gain, reverb,
    wet/dry). Voice sets are attached per playback session. ``open`` acquires
    the device at most once until ``close``; the device callback pulls blocks
    through :meth:`pull`, which shares a lock with every graph mutation.
    """

    def __init__(
        self,
        config: SonificationConfig | dict[str, object] | None = None,
        *,
        backend: OutputBackend | None = None,
        rng: np.random.Generator | None = None,
        wall_time: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = coerce_sonification(config)
        self._backend = backend
        self._rng = rng
        self._lock = threading.RLock()
        self._bus: MixBus | None = None
        self._voices: list[VoiceSet] = []
        self._frames = 0
        self._wall_time = wall_time
        self._pulled_at: float | None = None
        self._pulled_span = 0.0
        self._close_stream: Callable[[], None] | None = None

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def is_open(self) -> bool:
        return self._bus is not None

    @property
    def sample_rate(self) -> int:
        return self.config.sample_rate

    @property
    def current_time(self) -> float:
        return self._frames / self.config.sample_rate

    @property
    def schedule_time(self) -> float:
        """Graph time for events scheduled now.

        ``current_time`` only moves a block at a time; the wall-clock time
        since the last pull, capped at one block, is added so live events do
        not snap to block boundaries.
        """
        with self._lock:
            base = self.current_time
            if self._pulled_at is None:
                return base
            elapsed = self._wall_time() - self._pulled_at
            return base + min(max(elapsed, 0.0), self._pulled_span)

    @property
    def bus(self) -> MixBus:
        if self._bus is None:
            raise PlaybackError("Audio engine is not open")
        return self._bus

    @property
    def voices(self) -> tuple[VoiceSet, ...]:
        with self._lock:
            return tuple(self._voices)

    def open(self) -> bool:
        """Acquire the output device. Returns False when already open."""
        with self._lock:
            if self._bus is not None:
                return False
            backend = self._backend or resolve_backend()
            cfg = self.config
            self._bus = MixBus(reverb_impulse(cfg, self._rng), cfg)
            self._frames = 0
            self._pulled_at = None
            try:
                self._close_stream = backend.start(
                    self.pull, cfg.sample_rate, cfg.channels, cfg.block_size
                )
            except Exception as exc:
                self._bus = None
                _LOGGER.warning("Failed to open %s output: %s", backend.name, exc, exc_info=True)
                raise AudioUnavailableError(
                    f"Could not open audio output via {backend.name}: {exc}"
                ) from exc
            _LOGGER.info(
                "Opened %s output (%d Hz, %d channels)",
                backend.name,
                cfg.sample_rate,
                cfg.channels,
            )
            return True

    def close(self) -> None:
        with self._lock:
            closer = self._close_stream
            self._close_stream = None
            self._bus = None
            self._voices.clear()
        # stopping the stream waits for the callback, which needs the lock
        if closer is not None:
            closer()
            _LOGGER.info("Closed audio output")

    def attach(self, voices: VoiceSet) -> None:
        with self._lock:
            self._voices.append(voices)

    def detach(self, voices: VoiceSet) -> None:
        with self._lock:
            if voices in self._voices:
                self._voices.remove(voices)

    def pull(self, frames: int) -> NDArray[np.float32]:
        """Render the next ``frames`` as a ``(frames, channels)`` float32 block."""
        channels = self.config.channels
        with self._lock:
            if self._bus is None:
                return np.zeros((frames, channels), dtype=np.float32)
            start = self.current_time
            send = np.zeros(frames, dtype=np.float64)
            for voices in self._voices:
                send += voices.render(start, frames)
            block = self._bus.process(send, start)
            self._frames += frames
            self._pulled_at = self._wall_time()
            self._pulled_span = frames / self.config.sample_rate
            self._voices = [v for v in self._voices if not v.is_finished(self.current_time)]
        return np.clip(block.T, -1.0, 1.0).astype(np.float32)

    def __enter__(self) -> "AudioEngine":
        self.open()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()
