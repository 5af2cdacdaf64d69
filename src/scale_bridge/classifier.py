"""Stable reading deduplication."""

from __future__ import annotations

from typing import Optional

from .models import Reading, StableReadingKey


class ReadingClassifier:
    """Tracks the live reading and reports each new stable value once.

    Every observed reading replaces ``latest``. A reading is returned from
    ``observe`` only when it is stable and its (weight, unit) differs from
    the last stable reading returned, so a scale resting at one value does
    not trigger downstream work over and over.
    """

    def __init__(self) -> None:
        self._latest: Optional[Reading] = None
        self._last_stable_key: Optional[StableReadingKey] = None
        self._stable_count = 0

    @property
    def latest(self) -> Optional[Reading]:
        return self._latest

    @property
    def last_stable_key(self) -> Optional[StableReadingKey]:
        return self._last_stable_key

    @property
    def stable_count(self) -> int:
        """Number of stable readings reported since the last reset."""
        return self._stable_count

    def observe(self, reading: Reading) -> Optional[Reading]:
        self._latest = reading

        if not reading.is_stable or reading.key == self._last_stable_key:
            return None

        self._last_stable_key = reading.key
        self._stable_count += 1
        return reading

    def reset(self) -> None:
        self._latest = None
        self._last_stable_key = None
        self._stable_count = 0
