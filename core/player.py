"""Playback engine: the single source of truth for what is playing.

The engine owns one audio output, the queue and the transport state.
Commands never raise: audio failures leave the player paused and are
recorded in ``state.error``.  Asynchronous audio signals (metadata,
progress, completion, fault) are fed in through :meth:`PlaybackEngine.handle`.
"""

from __future__ import annotations

import logging
import math
import random
from typing import Optional, Protocol, Sequence, Union

from core.models import (
    Ended,
    Fault,
    MetadataLoaded,
    PlaybackState,
    RepeatMode,
    TimeUpdate,
    Track,
)
from core.queue import Cue, Play, Restart, Stop, advance, previous_index

logger = logging.getLogger(__name__)

Signal = Union[MetadataLoaded, TimeUpdate, Ended, Fault]


class AudioError(Exception):
    """Raised by an audio output that cannot load or play."""


class AudioOutput(Protocol):
    """The native playback primitive the engine drives."""

    def load(self, src: str) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def set_volume(self, level: float) -> None: ...


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------

def compute_progress(current_time: float, duration: Optional[float]) -> float:
    """Percent elapsed, or 0 when the duration is unknown."""
    if not duration or not math.isfinite(duration) or duration <= 0:
        return 0.0
    return current_time / duration * 100


def apply_signal(state: PlaybackState, signal: Signal) -> PlaybackState:
    """Return the state after a metadata, progress or fault signal.

    ``Ended`` is not a pure transition (it advances the queue) and is
    returned unchanged here.
    """
    if isinstance(signal, MetadataLoaded):
        duration = signal.duration if signal.duration and math.isfinite(signal.duration) else 0.0
        return state.model_copy(
            update={
                "duration": duration,
                "progress": compute_progress(state.current_time, duration),
            }
        )
    if isinstance(signal, TimeUpdate):
        return state.model_copy(
            update={
                "current_time": signal.current_time,
                "progress": compute_progress(signal.current_time, state.duration),
            }
        )
    if isinstance(signal, Fault):
        return state.model_copy(update={"is_playing": False, "error": signal.message})
    return state


def clamp_volume(level: float) -> Optional[float]:
    """Clamp *level* into [0, 1]; None for non-finite input."""
    try:
        level = float(level)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(level):
        return None
    return min(1.0, max(0.0, level))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class PlaybackEngine:
    """Player context object; one per listening session."""

    def __init__(
        self,
        output: AudioOutput,
        *,
        rng: Optional[random.Random] = None,
        media_base_url: str = "",
    ):
        self.output = output
        self.rng = rng or random.Random()
        self.media_base_url = media_base_url.rstrip("/")
        self._state = PlaybackState()

    @property
    def state(self) -> PlaybackState:
        return self._state

    def _update(self, **changes) -> None:
        self._state = self._state.model_copy(update=changes)

    def resolve_src(self, track: Track) -> str:
        """Absolute locator for *track* (relative paths hang off the media base)."""
        url = track.file_url
        if url.startswith("/") and self.media_base_url:
            return f"{self.media_base_url}{url}"
        return url

    # -- output helpers ----------------------------------------------------

    def _start_output(self) -> None:
        try:
            self.output.play()
        except AudioError as exc:
            logger.warning("Play failed: %s", exc)
            self._update(is_playing=False, error=str(exc))
            return
        self._update(is_playing=True, error=None)

    def _load(self, track: Track, index: int) -> bool:
        self._update(
            current_track=track,
            current_index=index,
            current_time=0.0,
            progress=0.0,
            duration=0.0,
        )
        try:
            self.output.load(self.resolve_src(track))
            self.output.set_volume(self._state.volume)
        except AudioError as exc:
            logger.warning("Load failed for %s: %s", track.id, exc)
            self._update(is_playing=False, error=str(exc))
            return False
        return True

    # -- commands ----------------------------------------------------------

    def play(self, track: Track, tracks: Sequence[Track] = (), index: int = 0) -> None:
        """Load *track* and start playing; replace the queue if *tracks* is given."""
        if tracks:
            self._update(queue=list(tracks))
        else:
            index = self._state.current_index
        if self._load(track, index):
            self._start_output()

    def toggle_play(self) -> None:
        if self._state.current_track is None:
            return
        if self._state.is_playing:
            self.output.pause()
            self._update(is_playing=False)
        else:
            self._start_output()

    def next(self) -> None:
        """Advance according to the repeat/shuffle policy."""
        queue = self._state.queue
        decision = advance(
            len(queue),
            self._state.current_index,
            repeat=self._state.repeat,
            shuffle=self._state.shuffle,
            rng=self.rng,
        )

        if isinstance(decision, Stop):
            if self._state.is_playing:
                self.output.pause()
            self._update(is_playing=False)
        elif isinstance(decision, Restart):
            self.output.seek(0)
            self._update(current_time=0.0, progress=0.0)
            self._start_output()
        elif isinstance(decision, Cue):
            if self._state.is_playing:
                self.output.pause()
            self._update(is_playing=False)
            self._load(queue[decision.index], decision.index)
        elif isinstance(decision, Play):
            self.play(queue[decision.index], queue, decision.index)

    def previous(self) -> None:
        queue = self._state.queue
        index = previous_index(len(queue), self._state.current_index)
        if index is None:
            return
        self.play(queue[index], queue, index)

    def seek(self, percent: float) -> None:
        """Jump to *percent* of the track; no-op while the duration is unknown."""
        duration = self._state.duration
        if not duration or duration <= 0:
            return
        percent = min(100.0, max(0.0, float(percent)))
        seconds = percent / 100 * duration
        self.output.seek(seconds)
        self._update(current_time=seconds, progress=percent)

    def set_volume(self, level: float) -> None:
        """Set the output level; out-of-range input is clamped into [0, 1]."""
        clamped = clamp_volume(level)
        if clamped is None:
            logger.warning("Ignoring non-finite volume %r", level)
            return
        self.output.set_volume(clamped)
        self._update(volume=clamped)

    def set_repeat(self, mode: RepeatMode) -> None:
        self._update(repeat=RepeatMode(mode))

    def set_shuffle(self, enabled: bool) -> None:
        self._update(shuffle=bool(enabled))

    # -- signals -----------------------------------------------------------

    def handle(self, signal: Signal) -> None:
        """Consume one signal raised by the audio output."""
        if isinstance(signal, Ended):
            self.next()
            return
        if isinstance(signal, Fault):
            logger.error("Audio error: %s", signal.message)
        self._state = apply_signal(self._state, signal)

    def to_status_dict(self) -> dict:
        """Serialize for the status API."""
        return self._state.to_json_dict()
