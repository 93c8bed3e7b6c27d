from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import InvalidConfigError

_LOGGER = logging.getLogger("gapsong.config")

LayoutUpdate = Literal["sequential", "synchronous"]
Waveform = Literal["sine", "triangle", "square"]

SAMPLE_RATE = 44_100

# A3 B3 C4 D4 E4 G4 A4 B4
SCALE_FREQS: tuple[float, ...] = (220.00, 246.94, 261.63, 293.66, 329.63, 392.00, 440.00, 493.88)


class LayoutConfig(BaseModel):
    """Force layout constants.

    Pairwise distances are driven toward ``spring_length * (1 - similarity)``.
    ``update="sequential"`` moves each point in place during a pass, so later
    points react to earlier points' new positions; ``"synchronous"`` snapshots
    positions at the start of every pass.
    """

    spring_length: float = Field(default=6.0, gt=0.0)
    seed_radius: float = Field(default=3.0, gt=0.0)
    iterations: int = Field(default=50, ge=0)
    stiffness: float = Field(default=0.1, gt=0.0)
    min_distance: float = Field(default=0.1, gt=0.0)
    update: LayoutUpdate = "sequential"

    model_config = ConfigDict(frozen=True, extra="forbid")


class SonificationConfig(BaseModel):
    """Constants shared by live playback and offline export."""

    sample_rate: int = Field(default=SAMPLE_RATE, ge=8_000, le=192_000)
    channels: int = Field(default=2, ge=1, le=8)
    steps: int = Field(default=32, ge=1)
    scale: tuple[float, ...] = SCALE_FREQS
    fallback_frequency: float = Field(default=220.0, gt=0.0)

    # tempo = base_tempo + similarity * tempo_span
    base_tempo: float = Field(default=90.0, gt=0.0)
    tempo_span: float = Field(default=120.0, ge=0.0)
    max_elasticity: float = Field(default=0.4, ge=0.0)
    elasticity_distance: float = Field(default=20.0, gt=0.0)
    export_steps: float = Field(default=17.0, gt=0.0)

    # non-finite gap values resolve to these
    default_similarity: float = 0.1
    default_distance: float = 1.0

    bass_waveform: Waveform = "sine"
    bass_peak: float = 0.4
    bass_ramp: float = Field(default=1.0, gt=0.0)

    harmony_waveform: Waveform = "triangle"
    harmony_offset: float = 4.0
    harmony_gain: float = 0.1
    harmony_depth: float = 0.15
    harmony_lfo_base: float = Field(default=0.5, ge=0.0)

    melody_waveform: Waveform = "square"
    cutoff_base: float = Field(default=800.0, gt=0.0)
    cutoff_span: float = Field(default=4000.0, ge=0.0)
    resonance: float = Field(default=5.0, gt=0.0)
    note_peak: float = 0.25
    note_attack: float = Field(default=0.005, gt=0.0)
    note_floor: float = Field(default=0.001, gt=0.0)
    note_decay: float = Field(default=0.7, gt=0.0)
    note_glide: float = Field(default=0.01, gt=0.0)

    master_level: float = Field(default=1.0, ge=0.0)
    fade_in: float = Field(default=0.1, gt=0.0)
    stop_fade: float = Field(default=0.05, gt=0.0)
    export_release: float = Field(default=0.5, gt=0.0)
    wet: float = Field(default=0.6, ge=0.0)
    dry: float = Field(default=0.4, ge=0.0)
    reverb_seconds: float = Field(default=2.0, gt=0.0)
    normalize_reverb: bool = True

    block_size: int = Field(default=2048, ge=64)
    reproducible: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("scale")
    @classmethod
    def _validate_scale(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if not value:
            raise ValueError("scale must contain at least one frequency")
        if any(freq <= 0.0 for freq in value):
            raise ValueError("scale frequencies must be positive")
        return value

    @model_validator(mode="after")
    def _validate_cutoff(self) -> "SonificationConfig":
        nyquist = self.sample_rate / 2
        if self.cutoff_base >= nyquist:
            raise ValueError(f"cutoff_base {self.cutoff_base} is above nyquist {nyquist}")
        return self


def coerce_sonification(
    config: SonificationConfig | dict[str, object] | None,
) -> SonificationConfig:
    match config:
        case None:
            return SonificationConfig()
        case SonificationConfig():
            return config
        case dict():
            try:
                return SonificationConfig.model_validate(config)
            except ValueError as exc:
                _LOGGER.warning("Invalid sonification config: %s", exc)
                raise InvalidConfigError(str(exc)) from exc
        case _:
            raise InvalidConfigError("config must be a SonificationConfig, dict, or None")


def coerce_layout(config: LayoutConfig | dict[str, object] | None) -> LayoutConfig:
    match config:
        case None:
            return LayoutConfig()
        case LayoutConfig():
            return config
        case dict():
            try:
                return LayoutConfig.model_validate(config)
            except ValueError as exc:
                _LOGGER.warning("Invalid layout config: %s", exc)
                raise InvalidConfigError(str(exc)) from exc
        case _:
            raise InvalidConfigError("config must be a LayoutConfig, dict, or None")
