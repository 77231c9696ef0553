"""Counter sequences shared by counter-style transformations within a run."""

from typing import Dict, Iterable, Set

from packflow.utils.logging import logger


class CounterSequence:
    """Hands out increasing integers, skipping every number already taken."""

    def __init__(self, registry: "CounterRegistry", key: str, start: int, existing: Set[int]):
        self._registry = registry
        self._key = key
        self._existing = existing
        self._current = start

    def next(self) -> int:
        used = self._registry.used(self._key)
        while self._current in used or self._current in self._existing:
            self._current += 1
        value = self._current
        used.add(value)
        self._current += 1
        return value


class CounterRegistry:
    """Numbers handed out per counter key (the source column name).

    One registry belongs to one scheduler. ``reset()`` returns it to its
    initial state; the scheduler calls it at each run start unless the
    caller asks to continue the previous sequence.
    """

    def __init__(self):
        self._used: Dict[str, Set[int]] = {}

    def reset(self) -> None:
        if self._used:
            logger.debug("Counter registry reset", keys=len(self._used))
        self._used = {}

    def used(self, key: str) -> Set[int]:
        return self._used.setdefault(key, set())

    def sequence(self, key: str, start: int, existing: Iterable = ()) -> CounterSequence:
        """Start a sequence at ``start`` that avoids ``existing`` values.

        Non-numeric and infinite entries in ``existing`` are ignored; numeric ones are
        truncated to integers.
        """
        taken = set()
        for value in existing:
            try:
                taken.add(int(float(value)))
            except (TypeError, ValueError, OverflowError):
                continue
        return CounterSequence(self, key, int(start), taken)

    def snapshot(self) -> Dict[str, Set[int]]:
        return {k: set(v) for k, v in self._used.items()}
