from __future__ import annotations

import numpy as np
from pydantic import BaseModel, ConfigDict

from .config import SonificationConfig, coerce_sonification
from .graph import GapPlan, MixBus, VoiceSet, gap_rng, plan_gap, reverb_impulse
from .logging_utils import gap_logger
from .models import Gap
from .synth import FloatArray


class RenderedAudio(BaseModel):
    samples: FloatArray  # (channels, frames)
    sample_rate: int
    plan: GapPlan
    onsets: tuple[float, ...]

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frames(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / self.sample_rate


def render_gap(
    gap: Gap,
    config: SonificationConfig | dict[str, object] | None = None,
    *,
    rng: np.random.Generator | None = None,
) -> RenderedAudio:
    """Render the full soundscape for ``gap`` against a virtual clock.

    Step times are computed up front with the same jitter rule the live
    scheduler uses, so pitches, envelopes and tempo match a live run while
    micro-timing differs unless ``rng`` (or ``config.reproducible``) pins it.
    """
    cfg = coerce_sonification(config)
    local_rng = rng or (gap_rng(gap) if cfg.reproducible else np.random.default_rng())
    plan = plan_gap(gap, cfg)
    sr = cfg.sample_rate
    frames = int(sr * plan.duration)

    bus = MixBus(reverb_impulse(cfg, local_rng), cfg)
    voices = VoiceSet(plan, sample_rate=sr)
    bus.fade_in(0.0)
    voices.start(0.0)

    onsets, end_time = plan.onsets(local_rng)
    for step, at in enumerate(onsets):
        voices.trigger_step(step, at)
    bus.release(end_time, cfg.export_release)

    output = np.zeros((bus.channels, frames), dtype=np.float64)
    for offset in range(0, frames, cfg.block_size):
        size = min(cfg.block_size, frames - offset)
        start_time = offset / sr
        send = voices.render(start_time, size)
        output[:, offset : offset + size] = bus.process(send, start_time)

    gap_logger("gapsong.render", gap.id).debug(
        "Rendered %d frames, tempo %.1f BPM, %d steps", frames, plan.tempo, len(onsets)
    )
    return RenderedAudio(samples=output, sample_rate=sr, plan=plan, onsets=onsets)
