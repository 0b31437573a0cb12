"""
Per-GOP decode state machine.

    NONE --acquire--> DECODING --complete--> DECODED
    DECODING|DECODED --release (last user)--> NONE, payload released
    DECODING --fail (current job)--> ERROR (terminal until the file-level cache is rebuilt)

Only the execution context mutates instances of this class. Readers on other
threads may look at ``state`` and ``video_frames``; payload lists are swapped
out before their handles are closed so a reader never sees a half-cleared list.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from gopcache.infra.exceptions import DecodeError
from gopcache.runtime.media_types import AudioBuffer, DecodeResult, GOPDescriptor, GOPState, VideoFrameHandle

_logger = logging.getLogger(__name__)


class AcquireOutcome(Enum):
    STARTED = "started"  # NONE -> DECODING; a decode must be scheduled
    PENDING = "pending"  # already DECODING
    HIT = "hit"          # already DECODED
    FAILED = "failed"    # GOP is in ERROR


class GOPDecodeState:
    """Decode state, payload and consumer set of one GOP."""

    def __init__(self, descriptor: GOPDescriptor) -> None:
        self.descriptor = descriptor
        self.state = GOPState.NONE
        self.video_frames: list[VideoFrameHandle] = []
        self.audio_buffer: AudioBuffer | None = None
        # Insertion-ordered so notifications go out in join order
        self.users: dict[int, None] = {}
        # Set when a decode job extracts audio; cleared when the GOP resets
        self.decoded_once = False
        self.error: DecodeError | None = None
        # Bumped on every NONE -> DECODING transition; decode jobs carry it as a token
        self.generation = 0
        self.in_flight: int | None = None

    @property
    def index(self) -> int:
        return self.descriptor.index

    @property
    def timestamp(self) -> float:
        return self.descriptor.timestamp

    @property
    def duration(self) -> float:
        return self.descriptor.duration

    @property
    def end(self) -> float:
        return self.descriptor.end

    def has_user(self, consumer_id: int) -> bool:
        return consumer_id in self.users

    def acquire(self, consumer_id: int) -> tuple[AcquireOutcome, bool]:
        """Add ``consumer_id`` to the users. Returns the outcome and whether it was new."""
        added = consumer_id not in self.users
        if added:
            self.users[consumer_id] = None
        if self.state is GOPState.ERROR:
            return AcquireOutcome.FAILED, added
        if self.state is GOPState.DECODED:
            return AcquireOutcome.HIT, added
        if self.state is GOPState.DECODING:
            return AcquireOutcome.PENDING, added
        self.state = GOPState.DECODING
        self.generation += 1
        return AcquireOutcome.STARTED, added

    def release(self, consumer_id: int) -> bool:
        """Drop ``consumer_id``. Returns True when this emptied the users and reset the GOP."""
        if consumer_id not in self.users:
            return False
        del self.users[consumer_id]
        if self.users:
            return False
        if self.state in (GOPState.DECODING, GOPState.DECODED):
            self.state = GOPState.NONE
            self.decoded_once = False
            self._release_payload()
            return True
        return False

    def begin_decode(self, with_audio: bool = False) -> int:
        """Mark a decode job as running for the current generation.

        ``with_audio`` records that this job extracts the GOP's audio, so no
        later job does it again until the GOP is reset.
        """
        if self.state is not GOPState.DECODING:
            raise RuntimeError(f"GOP {self.index} is {self.state.value}, not decoding")
        if self.in_flight is not None:
            raise RuntimeError(f"GOP {self.index} already has a decode in flight")
        self.in_flight = self.generation
        self.decoded_once = self.decoded_once or with_audio
        return self.generation

    def is_current(self, token: int) -> bool:
        return self.state is GOPState.DECODING and token == self.generation and bool(self.users)

    def complete(self, token: int, result: DecodeResult) -> bool:
        """Install a finished decode. Stale results are released instead; returns False."""
        self.in_flight = None
        if not self.is_current(token):
            _logger.debug(
                "GOP %d: discarding stale decode (token=%d, generation=%d, state=%s, users=%d)",
                self.index, token, self.generation, self.state.value, len(self.users),
            )
            result.release()
            return False
        # Superseding decode: whatever the GOP still holds goes first
        self._release_payload()
        self.video_frames = list(result.video_frames)
        self.audio_buffer = result.audio_buffer
        result.video_frames = []
        self.state = GOPState.DECODED
        return True

    def fail(self, token: int, error: DecodeError) -> list[int]:
        """Move to ERROR if the failed job is still wanted. Returns users to notify."""
        self.in_flight = None
        if not self.is_current(token):
            _logger.debug(
                "GOP %d: ignoring stale decode failure (token=%d, generation=%d, state=%s, users=%d)",
                self.index, token, self.generation, self.state.value, len(self.users),
            )
            return []
        self.state = GOPState.ERROR
        self.error = error
        self._release_payload()
        return list(self.users)

    def reset(self) -> None:
        """Drop every user and the payload (cache teardown)."""
        self.decoded_once = False
        self.users.clear()
        if self.state is not GOPState.ERROR:
            self.state = GOPState.NONE
        self._release_payload()

    def _release_payload(self) -> None:
        frames, self.video_frames = self.video_frames, []
        self.audio_buffer = None
        for frame in frames:
            frame.close()

    def snapshot(self) -> dict[str, Any]:
        return {
            **self.descriptor.to_dict(),
            "state": self.state.value,
            "users": list(self.users),
            "frames": len(self.video_frames),
            "audio": self.audio_buffer is not None,
        }

    def __repr__(self) -> str:
        return (
            f"<GOPDecodeState index={self.index} state={self.state.value} "
            f"users={len(self.users)} frames={len(self.video_frames)}>"
        )
