"""
Speaking lock set.

Tracks which speakers currently have an utterance pipeline running. A speaker
may hold at most one slot; ``try_acquire`` is a single atomic test-and-set so
two activity-start events for the same speaker can never both succeed.
"""

import threading


class SpeakingLockSet:
    """Set of speaker ids with exclusive insert."""

    def __init__(self):
        self._guard = threading.Lock()
        self._speakers: set[int] = set()

    def try_acquire(self, speaker_id: int) -> bool:
        """Claim the speaker's slot. Returns False if it is already held."""
        with self._guard:
            if speaker_id in self._speakers:
                return False
            self._speakers.add(speaker_id)
            return True

    def release(self, speaker_id: int) -> None:
        """Free the speaker's slot. Releasing a free slot is a no-op."""
        with self._guard:
            self._speakers.discard(speaker_id)

    def clear(self) -> None:
        with self._guard:
            self._speakers.clear()

    def is_locked(self, speaker_id: int) -> bool:
        with self._guard:
            return speaker_id in self._speakers

    def snapshot(self) -> frozenset[int]:
        with self._guard:
            return frozenset(self._speakers)

    def __contains__(self, speaker_id: int) -> bool:
        return self.is_locked(speaker_id)

    def __len__(self) -> int:
        with self._guard:
            return len(self._speakers)
