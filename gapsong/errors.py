from __future__ import annotations


class GapSongError(Exception):
    """Base error for the gapsong library."""


class InvalidConfigError(GapSongError):
    """Raised when a config or point set cannot be parsed or validated."""


class InvalidAudioError(GapSongError):
    """Raised when a sample buffer does not satisfy the audio contract."""


class PlaybackError(GapSongError):
    """Raised when live playback cannot proceed."""


class AudioUnavailableError(PlaybackError):
    """Raised when no audio output device can be acquired on this host."""


class ExportError(GapSongError):
    """Raised when rendering or encoding a gap for export fails."""
