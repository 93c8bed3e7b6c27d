from __future__ import annotations

from .audio import encode_wav, read_wav, wav_info, write_wav
from .clock import Clock, ManualClock, ThreadingClock
from .config import SAMPLE_RATE, LayoutConfig, SonificationConfig
from .engine import AudioEngine, OutputBackend
from .errors import (
    AudioUnavailableError,
    ExportError,
    GapSongError,
    InvalidAudioError,
    InvalidConfigError,
    PlaybackError,
)
from .export import export_bytes, export_filename, export_gap
from .gap import build_gap, compose_voices
from .graph import GapPlan, plan_gap
from .layout import layout_points, relax, seed_positions
from .logging_utils import configure_logging as _configure_logging
from .models import Gap, Point, SessionState, VoiceDescriptor, VoiceRole
from .render import RenderedAudio, render_gap
from .scheduler import AudioSession, GapScheduler, PlaybackHooks
from .similarity import jaccard, similarity_edges, similarity_matrix
from .synth import scale_frequency

__all__ = [
    "SAMPLE_RATE",
    "AudioEngine",
    "AudioSession",
    "AudioUnavailableError",
    "Clock",
    "ExportError",
    "Gap",
    "GapPlan",
    "GapScheduler",
    "GapSongError",
    "InvalidAudioError",
    "InvalidConfigError",
    "LayoutConfig",
    "ManualClock",
    "OutputBackend",
    "PlaybackError",
    "PlaybackHooks",
    "Point",
    "RenderedAudio",
    "SessionState",
    "SonificationConfig",
    "ThreadingClock",
    "VoiceDescriptor",
    "VoiceRole",
    "build_gap",
    "compose_voices",
    "encode_wav",
    "export_bytes",
    "export_filename",
    "export_gap",
    "jaccard",
    "layout_points",
    "plan_gap",
    "read_wav",
    "relax",
    "render_gap",
    "scale_frequency",
    "seed_positions",
    "similarity_edges",
    "similarity_matrix",
    "wav_info",
    "write_wav",
]

__version__ = "0.1.0"

_configure_logging()
del _configure_logging
