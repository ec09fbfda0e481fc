"""Queue navigation policy — pure business logic, no I/O.

Decides what the player does when the current track ends or the user
skips.  Shuffle and repeat are independent axes; repeat-one wins once
an advance is allowed at all.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional, Union

from core.models import RepeatMode


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Stop:
    """Pause in place, nothing left to play."""


@dataclass(frozen=True)
class Restart:
    """Replay the current track from position zero."""


@dataclass(frozen=True)
class Cue:
    """Move to *index* and load it, but stay paused (end of queue)."""

    index: int


@dataclass(frozen=True)
class Play:
    """Move to *index* and start playing it."""

    index: int


Decision = Union[Stop, Restart, Cue, Play]


# ---------------------------------------------------------------------------
# Candidate selection
# ---------------------------------------------------------------------------

def candidate_index(
    queue_length: int,
    current_index: int,
    *,
    shuffle: bool,
    rng: Optional[random.Random] = None,
) -> int:
    """Next index by order, or a uniformly random one when shuffling."""
    if shuffle:
        rng = rng or random.Random()
        return rng.randrange(queue_length)
    return (current_index + 1) % queue_length


def previous_index(queue_length: int, current_index: int) -> Optional[int]:
    """Index one step back, wrapping to the last track; None on an empty queue."""
    if queue_length == 0:
        return None
    return (current_index - 1) % queue_length


# ---------------------------------------------------------------------------
# Advance
# ---------------------------------------------------------------------------

def advance(
    queue_length: int,
    current_index: int,
    *,
    repeat: RepeatMode = RepeatMode.NONE,
    shuffle: bool = False,
    rng: Optional[random.Random] = None,
) -> Decision:
    """Apply the navigation policy to one "advance" trigger.

    1. Empty queue → ``Stop``.
    2. Pick a candidate (random when shuffling, else the next index).
    3. Candidate equals the current index and repeat is off → ``Stop``.
       A single-track queue with shuffle on lands here too.
    4. Repeat-one → ``Restart``.
    5. In-order playback wrapping past the end with repeat off → ``Cue``
       the first track, paused.
    6. Otherwise → ``Play`` the candidate.
    """
    if queue_length <= 0:
        return Stop()

    candidate = candidate_index(queue_length, current_index, shuffle=shuffle, rng=rng)

    if candidate == current_index and repeat == RepeatMode.NONE:
        return Stop()

    if repeat == RepeatMode.ONE:
        return Restart()

    if not shuffle and repeat == RepeatMode.NONE and candidate < current_index:
        return Cue(candidate)

    return Play(candidate)
