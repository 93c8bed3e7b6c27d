from __future__ import annotations

import re
from pathlib import Path

import numpy as np

from .audio import encode_wav, write_bytes_atomic
from .config import SonificationConfig
from .errors import ExportError
from .logging_utils import gap_logger, log_exception
from .models import Gap
from .render import render_gap

_UNSAFE_FILENAME = re.compile(r"[/\\\x00]")


def export_filename(gap: Gap) -> str:
    name = f"Gap_{gap.origin.title}_to_{gap.target.title}.wav"
    return _UNSAFE_FILENAME.sub("_", name)


def export_bytes(
    gap: Gap,
    config: SonificationConfig | dict[str, object] | None = None,
    *,
    rng: np.random.Generator | None = None,
) -> bytes:
    """Render and encode ``gap``; raises ExportError and never returns partial data."""
    log = gap_logger("gapsong.export", gap.id)
    try:
        rendered = render_gap(gap, config, rng=rng)
        return encode_wav(rendered.samples, rendered.sample_rate)
    except Exception as exc:
        log.warning("Export failed: %s", exc, exc_info=True)
        log_exception(
            "export",
            exc,
            gap_id=gap.id,
            details={"similarity": gap.semantic_similarity, "distance": gap.distance},
        )
        raise ExportError(f"Failed to export gap {gap.id}: {exc}") from exc


def export_gap(
    gap: Gap,
    directory: str | Path = ".",
    config: SonificationConfig | dict[str, object] | None = None,
    *,
    filename: str | None = None,
    rng: np.random.Generator | None = None,
) -> Path:
    """Write the gap's WAV into ``directory`` and return its path."""
    data = export_bytes(gap, config, rng=rng)
    log = gap_logger("gapsong.export", gap.id)
    target = Path(directory) / (filename or export_filename(gap))
    try:
        written = write_bytes_atomic(target, data)
    except OSError as exc:
        log.warning("Writing %s failed: %s", target, exc, exc_info=True)
        log_exception("export", exc, gap_id=gap.id, details={"target": str(target)})
        raise ExportError(f"Failed to write {target}: {exc}") from exc
    log.info("Exported to %s (%d bytes)", written, len(data))
    return written
