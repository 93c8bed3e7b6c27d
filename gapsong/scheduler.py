from __future__ import annotations

import threading
from collections.abc import Mapping
from types import MappingProxyType
from typing import Callable

import numpy as np
from pydantic import BaseModel, ConfigDict

from .clock import Clock, ThreadingClock, TimerHandle
from .engine import AudioEngine
from .errors import GapSongError, PlaybackError
from .graph import GapPlan, VoiceSet, gap_rng, plan_gap
from .logging_utils import gap_logger, log_exception
from .models import Gap, SessionState

_TRANSITIONS: Mapping[SessionState, frozenset[SessionState]] = MappingProxyType(
    {
        "idle": frozenset({"priming", "stopped"}),
        "priming": frozenset({"playing", "stopped"}),
        "playing": frozenset({"stopped"}),
        "stopped": frozenset(),
    }
)


class PlaybackHooks(BaseModel):
    on_state_change: Callable[["AudioSession", SessionState], None] | None = None
    on_step: Callable[[int, float], None] | None = None
    on_error: Callable[[Exception], None] | None = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


class AudioSession:
    """One live playback of a gap: ``idle -> priming -> playing -> stopped``."""

    def __init__(
        self,
        gap: Gap,
        plan: GapPlan,
        *,
        on_ended: Callable[[], None] | None = None,
        hooks: PlaybackHooks | None = None,
    ) -> None:
        self.gap = gap
        self.plan = plan
        self.state: SessionState = "idle"
        self.steps_played = 0
        self.completed = False
        self.notes: list[float] = []
        self.on_ended = on_ended
        self._hooks = hooks or PlaybackHooks()
        self.log = gap_logger("gapsong.scheduler", gap.id)
        self.timer: TimerHandle | None = None
        self.voices: VoiceSet | None = None

    @property
    def is_playing(self) -> bool:
        return self.state == "playing"

    def transition(self, state: SessionState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise PlaybackError(f"Invalid session transition {self.state} -> {state}")
        self.log.debug("Session %s -> %s", self.state, state)
        self.state = state
        if self._hooks.on_state_change:
            self._hooks.on_state_change(self, state)


class GapScheduler:
    """Plays gaps live on an :class:`AudioEngine`, one session at a time.

    Melody steps are chained deferred callbacks on the injected clock; each
    step schedules the next after half a beat plus jitter.
    """

    def __init__(
        self,
        engine: AudioEngine,
        *,
        clock: Clock | None = None,
        hooks: PlaybackHooks | None = None,
    ) -> None:
        self.engine = engine
        self.config = engine.config
        self._clock = clock or ThreadingClock()
        self._hooks = hooks or PlaybackHooks()
        self._lock = threading.RLock()
        self._session: AudioSession | None = None

    @property
    def session(self) -> AudioSession | None:
        return self._session

    def play(
        self,
        gap: Gap,
        on_ended: Callable[[], None] | None = None,
        *,
        rng: np.random.Generator | None = None,
    ) -> AudioSession:
        """Stop any current session, then start playing ``gap``.

        Raises AudioUnavailableError when the output device cannot be opened;
        the new session is left ``stopped``.
        """
        local_rng = rng or (gap_rng(gap) if self.config.reproducible else np.random.default_rng())
        plan = plan_gap(gap, self.config)
        session = AudioSession(gap, plan, on_ended=on_ended, hooks=self._hooks)
        with self._lock:
            self.stop()
            self._session = session
            session.transition("priming")
            try:
                self.engine.open()
            except GapSongError as exc:
                session.transition("stopped")
                log_exception("audio open", exc, gap_id=gap.id)
                if self._hooks.on_error:
                    self._hooks.on_error(exc)
                raise

            with self.engine.lock:
                now = self.engine.schedule_time
                voices = VoiceSet(plan, sample_rate=self.engine.sample_rate)
                self.engine.bus.fade_in(now)
                voices.start(now)
                self.engine.attach(voices)
            session.voices = voices
            session.transition("playing")
            session.log.info("Playing at %.1f BPM (%d steps)", plan.tempo, plan.steps)
        self._run_step(session, local_rng)
        return session

    def _run_step(self, session: AudioSession, rng: np.random.Generator) -> None:
        finished = False
        with self._lock:
            if self._session is not session or not session.is_playing:
                return
            voices = session.voices
            assert voices is not None
            step = session.steps_played
            with self.engine.lock:
                freq = voices.trigger_step(step, self.engine.schedule_time)
            session.notes.append(freq)
            session.steps_played += 1
            if session.steps_played >= session.plan.steps:
                self._halt(session)
                session.completed = True
                finished = True
            else:
                delay = session.plan.next_delay(rng)
                session.timer = self._clock.call_later(
                    delay, lambda: self._run_step(session, rng)
                )

        if self._hooks.on_step:
            self._hooks.on_step(step, freq)
        if finished:
            session.log.debug("Finished after %d steps", session.steps_played)
            if session.on_ended:
                session.on_ended()

    def stop(self) -> None:
        """Halt the current session; its completion callback will not fire."""
        with self._lock:
            session = self._session
            if session is None or session.state == "stopped":
                return
            self._halt(session)

    def _halt(self, session: AudioSession) -> None:
        if session.timer is not None:
            session.timer.cancel()
            session.timer = None
        voices = session.voices
        if voices is not None and self.engine.is_open:
            with self.engine.lock:
                now = self.engine.schedule_time
                voices.stop(now)
                self.engine.detach(voices)
                self.engine.bus.release(now, self.config.stop_fade)
        session.transition("stopped")

    def shutdown(self) -> None:
        """Stop playback and release the audio device."""
        self.stop()
        self.engine.close()
