"""
Declarative voice graph for a gap.

``plan_gap`` turns a :class:`~gapsong.models.Gap` into a frozen :class:`GapPlan`
(every frequency, gain, tempo and note the soundscape needs). ``VoiceSet`` and
``MixBus`` realize a plan as stateful block processors. The live scheduler and
the offline renderer both drive these same objects; they differ only in where
event times come from.
"""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass

import numpy as np

from .config import SonificationConfig, Waveform, coerce_sonification
from .models import Gap
from .synth import (
    Automation,
    Convolver,
    FloatArray,
    Oscillator,
    ResonantLowpass,
    decaying_noise,
    normalize_impulse,
    scale_frequency,
)

_LOGGER = logging.getLogger("gapsong.graph")


@dataclass(frozen=True, slots=True)
class BassPlan:
    frequency: float
    waveform: Waveform
    peak: float
    ramp: float


@dataclass(frozen=True, slots=True)
class HarmonyPlan:
    frequency: float
    waveform: Waveform
    gain: float
    lfo_rate: float
    lfo_depth: float


@dataclass(frozen=True, slots=True)
class MelodyPlan:
    waveform: Waveform
    cutoff: float
    resonance: float
    notes: tuple[float, ...]
    peak: float
    attack: float
    floor: float
    decay: float
    glide: float


@dataclass(frozen=True, slots=True)
class GapPlan:
    gap_id: str
    seed: str
    similarity: float
    distance: float
    tempo: float
    step_time: float
    half_step: float
    jitter_cap: float
    duration: float
    bass: BassPlan
    harmony: HarmonyPlan
    melody: MelodyPlan

    @property
    def steps(self) -> int:
        return len(self.melody.notes)

    def next_delay(self, rng: np.random.Generator) -> float:
        """Half a beat, nudged by up to ``jitter_cap`` either way."""
        return self.half_step + float(rng.uniform(-self.jitter_cap, self.jitter_cap))

    def onsets(self, rng: np.random.Generator) -> tuple[tuple[float, ...], float]:
        """Analytic step times and the time the sequence ends."""
        times: list[float] = []
        now = 0.0
        for _ in range(self.steps):
            times.append(now)
            now += self.next_delay(rng)
        return tuple(times), now


def _finite_or(value: float, default: float) -> float:
    return value if math.isfinite(value) else default


def utf16_units(text: str) -> tuple[int, ...]:
    """UTF-16 code units, so astral characters count as two surrogate halves."""
    data = text.encode("utf-16-le", errors="surrogatepass")
    return tuple(int.from_bytes(data[i : i + 2], "little") for i in range(0, len(data), 2))


def melody_seed(gap: Gap) -> str:
    return "".join(gap.shared_links) or gap.id


def step_index(seed: str, step: int, *, span: int = 16, base: int = 16) -> int:
    units = utf16_units(seed)
    code = units[step % len(units)] if units else 0
    return (code + step) % span + base


def gap_rng(gap: Gap) -> np.random.Generator:
    """A generator seeded from the gap id, for reproducible renders."""
    digest = hashlib.sha256(gap.id.encode("utf-8")).digest()
    return np.random.default_rng(int.from_bytes(digest[:8], "little"))


def plan_gap(
    gap: Gap, config: SonificationConfig | dict[str, object] | None = None
) -> GapPlan:
    cfg = coerce_sonification(config)
    similarity = _finite_or(gap.semantic_similarity, cfg.default_similarity)
    distance = _finite_or(gap.distance, cfg.default_distance)
    center_x = _finite_or(gap.center[0], 0.0)
    center_y = _finite_or(gap.center[1], 0.0)
    if not gap.is_finite:
        _LOGGER.info("Gap %s has non-finite values; using defaults", gap.id)

    def freq(index: float) -> float:
        return scale_frequency(index, cfg.scale, fallback=cfg.fallback_frequency)

    tempo = cfg.base_tempo + similarity * cfg.tempo_span
    step_time = 60.0 / tempo
    half_step = step_time / 2
    elasticity = min(cfg.max_elasticity, distance / cfg.elasticity_distance)
    seed = melody_seed(gap)
    notes = tuple(freq(step_index(seed, step)) for step in range(cfg.steps))
    nyquist = cfg.sample_rate / 2

    return GapPlan(
        gap_id=gap.id,
        seed=seed,
        similarity=similarity,
        distance=distance,
        tempo=tempo,
        step_time=step_time,
        half_step=half_step,
        jitter_cap=elasticity * half_step,
        duration=step_time * cfg.export_steps,
        bass=BassPlan(
            frequency=freq(center_x) / 2,
            waveform=cfg.bass_waveform,
            peak=cfg.bass_peak,
            ramp=cfg.bass_ramp,
        ),
        harmony=HarmonyPlan(
            frequency=freq(center_y + cfg.harmony_offset),
            waveform=cfg.harmony_waveform,
            gain=cfg.harmony_gain,
            lfo_rate=cfg.harmony_lfo_base + abs(center_y),
            lfo_depth=cfg.harmony_depth,
        ),
        melody=MelodyPlan(
            waveform=cfg.melody_waveform,
            cutoff=min(cfg.cutoff_base + similarity * cfg.cutoff_span, nyquist * 0.99),
            resonance=cfg.resonance,
            notes=notes,
            peak=cfg.note_peak,
            attack=cfg.note_attack,
            floor=cfg.note_floor,
            decay=cfg.note_decay,
            glide=cfg.note_glide,
        ),
    )


class VoiceSet:
    """The three per-gap voices, summed to one mono send."""

    def __init__(self, plan: GapPlan, *, sample_rate: int) -> None:
        self.plan = plan
        self._sample_rate = sample_rate

        self.bass = Oscillator(plan.bass.waveform, plan.bass.frequency, sample_rate=sample_rate)
        self.bass_gain = Automation(0.0)

        self.harmony = Oscillator(
            plan.harmony.waveform, plan.harmony.frequency, sample_rate=sample_rate
        )
        self.lfo = Oscillator("sine", plan.harmony.lfo_rate, sample_rate=sample_rate)
        self.harmony_gain = Automation(plan.harmony.gain)

        melody = plan.melody
        first = melody.notes[0] if melody.notes else 0.0
        self.melody = Oscillator(melody.waveform, first, sample_rate=sample_rate)
        self.filter = ResonantLowpass(melody.cutoff, melody.resonance, sample_rate=sample_rate)
        self.melody_gain = Automation(0.0)

    @property
    def oscillators(self) -> tuple[Oscillator, ...]:
        return (self.bass, self.harmony, self.lfo, self.melody)

    def start(self, at: float) -> None:
        bass = self.plan.bass
        self.bass_gain.set_value(0.0, at)
        self.bass_gain.linear_ramp(bass.peak, at + bass.ramp)
        self.harmony_gain.set_value(self.plan.harmony.gain, at)
        for oscillator in self.oscillators:
            oscillator.start(at)

    def trigger_step(self, step: int, at: float) -> float:
        """Schedule one melody note at ``at`` and return its frequency."""
        melody = self.plan.melody
        freq = melody.notes[step % len(melody.notes)]
        self.melody.frequency.set_target(freq, at, melody.glide)
        self.melody_gain.cancel(at)
        self.melody_gain.set_value(0.0, at)
        self.melody_gain.linear_ramp(melody.peak, at + melody.attack)
        self.melody_gain.exponential_ramp(melody.floor, at + self.plan.half_step * melody.decay)
        return freq

    def stop(self, at: float) -> None:
        for oscillator in self.oscillators:
            oscillator.stop(at)

    def is_finished(self, time: float) -> bool:
        return all(oscillator.stopped_at <= time for oscillator in self.oscillators)

    def render(self, start_time: float, frames: int) -> FloatArray:
        sr = self._sample_rate
        for gain in (self.bass_gain, self.harmony_gain, self.melody_gain):
            gain.prune(start_time)
        bass = self.bass.render(start_time, frames) * self.bass_gain.render(start_time, frames, sr)

        lfo = self.lfo.render(start_time, frames) * self.plan.harmony.lfo_depth
        harmony_gain = self.harmony_gain.render(start_time, frames, sr) + lfo
        harmony = self.harmony.render(start_time, frames) * harmony_gain

        melody = self.filter.process(self.melody.render(start_time, frames))
        melody = melody * self.melody_gain.render(start_time, frames, sr)
        return bass + harmony + melody


def reverb_impulse(
    config: SonificationConfig,
    rng: np.random.Generator | None = None,
) -> FloatArray:
    impulse = decaying_noise(
        config.reverb_seconds,
        channels=config.channels,
        sample_rate=config.sample_rate,
        rng=rng,
    )
    if config.normalize_reverb:
        impulse = normalize_impulse(impulse, sample_rate=config.sample_rate)
    return impulse


class MixBus:
    """Master gain feeding a wet convolution path and a dry path."""

    def __init__(self, impulse: FloatArray, config: SonificationConfig) -> None:
        self._config = config
        self._sample_rate = config.sample_rate
        self.master = Automation(config.master_level)
        self.reverb = Convolver(impulse)

    @property
    def channels(self) -> int:
        return self.reverb.channels

    def fade_in(self, at: float) -> None:
        self.master.cancel(at)
        self.master.set_value(0.0, at)
        self.master.linear_ramp(self._config.master_level, at + self._config.fade_in)

    def release(self, at: float, time_constant: float) -> None:
        self.master.cancel(at)
        self.master.set_target(0.0, at, time_constant)

    def process(self, send: FloatArray, start_time: float) -> FloatArray:
        """Mix a mono send into a ``(channels, frames)`` block.

        Master events before ``start_time`` are folded away, so blocks must
        arrive in time order.
        """
        self.master.prune(start_time)
        bus = send * self.master.render(start_time, send.size, self._sample_rate)
        wet = self.reverb.process(bus) * self._config.wet
        return wet + bus[np.newaxis, :] * self._config.dry
