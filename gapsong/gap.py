from __future__ import annotations

import math

from .models import Gap, Point, VoiceDescriptor
from .similarity import jaccard


def build_gap(origin: Point, target: Point) -> Gap:
    """Derive the relational record between two positioned points.

    Shared links follow ``origin``'s link order. Callers are expected to
    reject ``origin == target`` before asking for a gap.
    """
    target_links = target.link_set
    shared = tuple(link for link in origin.links if link in target_links)
    (ox, oy), (tx, ty) = origin.position, target.position
    return Gap(
        id=f"{origin.id}-{target.id}",
        origin=origin,
        target=target,
        center=((ox + tx) / 2, (oy + ty) / 2),
        distance=math.hypot(ox - tx, oy - ty),
        semantic_similarity=jaccard(origin.link_set, target_links),
        shared_links=shared,
    )


def compose_voices(gap: Gap) -> tuple[VoiceDescriptor, VoiceDescriptor, VoiceDescriptor]:
    count = len(gap.shared_links)
    plural = "" if count == 1 else "s"
    return (
        VoiceDescriptor(
            role="bass",
            label=f"Solo Cello: {gap.origin.title}",
            timbre="Philharmonia Bass",
        ),
        VoiceDescriptor(
            role="harmony",
            label=f"Strings: {gap.target.title}",
            timbre="Ensemble Wash",
        ),
        VoiceDescriptor(
            role="melody",
            label=f"Celesta: {count} intersection{plural}",
            timbre="Glassworks",
        ),
    )
