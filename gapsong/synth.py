# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false

"""
Architecture:

1. Pitch: scale-degree to frequency mapping
2. Parameters: sample-accurate automation timelines
3. Sources and processors: oscillators, resonant low-pass, convolution reverb

Everything here is block-oriented and keeps its own state between blocks, so
the same objects serve a live device callback and an offline render loop.
"""

from __future__ import annotations

import bisect
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Literal, TypeAlias

import numpy as np
from numpy.typing import NDArray
from scipy.signal import fftconvolve, lfilter  # type: ignore[import]

from .config import SAMPLE_RATE, SCALE_FREQS, Waveform

FloatArray: TypeAlias = NDArray[np.float64]
WaveFn: TypeAlias = Callable[[FloatArray], FloatArray]

# Convolver impulse normalization, as browsers apply it
GAIN_CALIBRATION = 0.00125
GAIN_CALIBRATION_SAMPLE_RATE = 44_100.0
MIN_IMPULSE_POWER = 0.000125


# =============================================================================
# PITCH
# =============================================================================


def scale_frequency(
    index: float,
    scale: Sequence[float] = SCALE_FREQS,
    *,
    fallback: float = 220.0,
) -> float:
    """Map a (possibly fractional or negative) scale index to Hz.

    The degree is ``floor(index) mod len(scale)`` and the octave is
    ``floor(index / len(scale))``, so ``index + len(scale)`` is exactly one
    octave up. Non-finite input or results give ``fallback``.
    """
    if not math.isfinite(index):
        return fallback
    size = len(scale)
    degree = math.floor(index) % size
    octave = math.floor(index / size)
    try:
        freq = scale[degree] * (2.0**octave)
    except OverflowError:
        return fallback
    return freq if math.isfinite(freq) and freq > 0.0 else fallback


# =============================================================================
# WAVEFORMS (phase in cycles, [0, 1))
# =============================================================================


def sine_wave(phase: FloatArray) -> FloatArray:
    return np.sin(2 * np.pi * phase)


def triangle_wave(phase: FloatArray) -> FloatArray:
    """Starts at zero and rises, like a sine."""
    return 4.0 * np.abs(((phase - 0.25) % 1.0) - 0.5) - 1.0


def square_wave(phase: FloatArray) -> FloatArray:
    return np.where(phase < 0.5, 1.0, -1.0)


WAVEFORMS: Mapping[Waveform, WaveFn] = MappingProxyType(
    {
        "sine": sine_wave,
        "triangle": triangle_wave,
        "square": square_wave,
    }
)


# =============================================================================
# AUTOMATION
# =============================================================================

EventKind = Literal["set", "linear", "exponential", "target"]


@dataclass(frozen=True, slots=True)
class _Event:
    kind: EventKind
    time: float
    value: float
    time_constant: float = 0.0


def _hold_or_decay(
    times: FloatArray,
    anchor_time: float,
    anchor_value: float,
    decay: tuple[float, float] | None,
) -> FloatArray:
    if decay is None:
        return np.full(times.shape, anchor_value, dtype=np.float64)
    target, tau = decay
    return target + (anchor_value - target) * np.exp(-(times - anchor_time) / tau)


_Anchor: TypeAlias = tuple[float, float, tuple[float, float] | None]


def _settle(event: _Event, anchor: _Anchor) -> _Anchor:
    """State (time, value, decay) in force once ``event`` has happened."""
    anchor_time, anchor_value, decay = anchor
    if event.kind == "target":
        start = _hold_or_decay(np.array([event.time]), anchor_time, anchor_value, decay)
        return event.time, float(start[0]), (event.value, event.time_constant)
    return event.time, event.value, None


class Automation:
    """Sample-accurate timeline for one parameter.

    Supports step changes, linear and exponential ramps that end at the event
    time, and exponential approach toward a target starting at the event time.
    Ramps start from the value held at the previous event.
    """

    def __init__(self, value: float = 0.0) -> None:
        # state left by events already folded in by prune()
        self._anchor: _Anchor = (0.0, float(value), None)
        self._events: list[_Event] = []
        self._times: list[float] = []

    def __len__(self) -> int:
        return len(self._events)

    def _insert(self, event: _Event) -> None:
        index = bisect.bisect_right(self._times, event.time)
        self._times.insert(index, event.time)
        self._events.insert(index, event)

    def set_value(self, value: float, at: float) -> None:
        self._insert(_Event("set", at, float(value)))

    def linear_ramp(self, value: float, at: float) -> None:
        self._insert(_Event("linear", at, float(value)))

    def exponential_ramp(self, value: float, at: float) -> None:
        self._insert(_Event("exponential", at, float(value)))

    def set_target(self, target: float, at: float, time_constant: float) -> None:
        if time_constant <= 0.0:
            self.set_value(target, at)
            return
        self._insert(_Event("target", at, float(target), float(time_constant)))

    def cancel(self, at: float) -> None:
        """Drop every event scheduled at or after ``at``."""
        index = bisect.bisect_left(self._times, at)
        del self._times[index:]
        del self._events[index:]

    def prune(self, before: float) -> int:
        """Fold events at or before ``before`` into the anchor state.

        Rendering from ``before`` onward is unchanged; earlier times can no
        longer be rendered exactly. Returns how many events were folded.
        """
        index = bisect.bisect_right(self._times, before)
        for event in self._events[:index]:
            self._anchor = _settle(event, self._anchor)
        del self._times[:index]
        del self._events[:index]
        return index

    def value_at(self, time: float) -> float:
        return float(self.render(time, 1, 1)[0])

    def render(self, start_time: float, frames: int, sample_rate: int) -> FloatArray:
        times = start_time + np.arange(frames, dtype=np.float64) / sample_rate
        out = np.empty(frames, dtype=np.float64)
        cursor = 0
        anchor = self._anchor

        for event in self._events:
            end = int(np.searchsorted(times, event.time, side="left"))
            anchor_time, anchor_value, decay = anchor
            if end > cursor:
                segment = times[cursor:end]
                span = event.time - anchor_time
                if event.kind == "linear" and span > 0.0:
                    frac = np.clip((segment - anchor_time) / span, 0.0, 1.0)
                    out[cursor:end] = anchor_value + (event.value - anchor_value) * frac
                elif event.kind == "exponential" and span > 0.0 and anchor_value * event.value > 0:
                    frac = np.clip((segment - anchor_time) / span, 0.0, 1.0)
                    out[cursor:end] = anchor_value * (event.value / anchor_value) ** frac
                else:
                    out[cursor:end] = _hold_or_decay(segment, anchor_time, anchor_value, decay)
                cursor = end

            anchor = _settle(event, anchor)

        if cursor < frames:
            out[cursor:] = _hold_or_decay(times[cursor:], *anchor)
        return out


# =============================================================================
# SOURCES AND PROCESSORS
# =============================================================================


class Oscillator:
    """Phase-continuous oscillator with an automatable frequency."""

    def __init__(
        self,
        waveform: Waveform,
        frequency: float,
        *,
        sample_rate: int = SAMPLE_RATE,
    ) -> None:
        self.waveform = waveform
        self.frequency = Automation(frequency)
        self._wave = WAVEFORMS[waveform]
        self._sample_rate = sample_rate
        self._phase = 0.0
        self._start = math.inf
        self._stop = math.inf

    @property
    def stopped_at(self) -> float:
        return self._stop

    def start(self, at: float = 0.0) -> None:
        self._start = at

    def stop(self, at: float) -> None:
        self._stop = min(self._stop, at)

    def render(self, start_time: float, frames: int) -> FloatArray:
        sr = self._sample_rate
        if frames <= 0:
            return np.zeros(0, dtype=np.float64)
        self.frequency.prune(start_time)
        times = start_time + np.arange(frames, dtype=np.float64) / sr
        active = (times >= self._start) & (times < self._stop)
        if not active.any():
            return np.zeros(frames, dtype=np.float64)
        freq = self.frequency.render(start_time, frames, sr)
        increments = np.where(active, freq / sr, 0.0)
        phase = self._phase + np.cumsum(increments) - increments
        self._phase = float((phase[-1] + increments[-1]) % 1.0)
        return np.where(active, self._wave(phase % 1.0), 0.0)


def _quantize(value: float, step: float = 1e-5) -> float:
    return round(value / step) * step


@lru_cache(maxsize=256)
def _lowpass_cached(
    normalized_cutoff: float, q: float
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    w0 = math.pi * normalized_cutoff
    alpha = math.sin(w0) / (2.0 * q)
    cos_w0 = math.cos(w0)
    b = np.array([(1.0 - cos_w0) / 2.0, 1.0 - cos_w0, (1.0 - cos_w0) / 2.0])
    a = np.array([1.0 + alpha, -2.0 * cos_w0, 1.0 - alpha])
    return b / a[0], a / a[0]


class ResonantLowpass:
    """Second-order resonant low-pass (RBJ biquad) with state kept across blocks."""

    def __init__(self, cutoff: float, q: float, *, sample_rate: int = SAMPLE_RATE) -> None:
        nyquist = sample_rate / 2
        normalized = min(max(cutoff / nyquist, 0.001), 0.99)
        self.cutoff = normalized * nyquist
        self.q = q
        self._b, self._a = _lowpass_cached(_quantize(normalized), q)
        self._zi = np.zeros(2, dtype=np.float64)

    def process(self, signal: FloatArray) -> FloatArray:
        if signal.size == 0:
            return signal
        filtered, self._zi = lfilter(self._b, self._a, signal, zi=self._zi)
        return np.asarray(filtered, dtype=np.float64)


def decaying_noise(
    seconds: float,
    *,
    channels: int = 2,
    sample_rate: int = SAMPLE_RATE,
    rng: np.random.Generator | None = None,
) -> FloatArray:
    """``uniform(-1, 1) * (1 - j/length)**3`` per channel."""
    local_rng = rng or np.random.default_rng()
    length = max(1, int(sample_rate * seconds))
    envelope = (1.0 - np.arange(length, dtype=np.float64) / length) ** 3
    noise = local_rng.uniform(-1.0, 1.0, size=(channels, length))
    return noise * envelope


def normalize_impulse(impulse: FloatArray, *, sample_rate: int = SAMPLE_RATE) -> FloatArray:
    """Scale an impulse response to a calibrated loudness."""
    power = math.sqrt(float(np.sum(impulse**2)) / max(1, impulse.size))
    if not math.isfinite(power) or power < MIN_IMPULSE_POWER:
        power = MIN_IMPULSE_POWER
    scale = GAIN_CALIBRATION / power * (GAIN_CALIBRATION_SAMPLE_RATE / sample_rate)
    return impulse * scale


class Convolver:
    """Overlap-add convolution of a mono input against a multi-channel impulse."""

    def __init__(self, impulse: FloatArray) -> None:
        ir = np.atleast_2d(np.asarray(impulse, dtype=np.float64))
        self._impulse = ir
        self._tail = np.zeros((ir.shape[0], ir.shape[1] - 1), dtype=np.float64)

    @property
    def channels(self) -> int:
        return int(self._impulse.shape[0])

    def process(self, signal: FloatArray) -> FloatArray:
        size = signal.size
        if size == 0:
            return np.zeros((self.channels, 0), dtype=np.float64)
        full = np.stack([fftconvolve(signal, ir, mode="full") for ir in self._impulse])
        tail_len = self._tail.shape[1]
        full[:, :tail_len] += self._tail
        self._tail = full[:, size:].copy()
        return full[:, :size]
