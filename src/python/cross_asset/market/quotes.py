"""
Observable market quotes and change detection.

Market objects carry a monotonically increasing ``version``. Consumers
record a snapshot of the versions they depended on and later ask whether
anything moved:

    >>> q = SimpleQuote(0.02)
    >>> snap = snapshot([q])
    >>> q.set_value(0.025)
    >>> has_changed_since(snap, [q])
    True

Derived objects (curves built on quotes) report a version that moves
whenever any of their underlying quotes moves, so a snapshot over a curve
also covers its quotes.
"""

import logging
import threading
from typing import Iterable, List, Sequence, Tuple, Union

logger = logging.getLogger(__name__)


class Observable:
    """Base class for anything whose changes can be detected by version."""

    def __init__(self):
        self._own_version = 0

    @property
    def version(self) -> int:
        """Current version; strictly increases on every change."""
        return self._own_version + sum(d.version for d in self.dependencies())

    def dependencies(self) -> Sequence["Observable"]:
        """Observables this object derives its value from."""
        return ()

    def notify_changed(self) -> None:
        """Mark this object as changed."""
        self._own_version += 1


class SimpleQuote(Observable):
    """A mutable scalar quote."""

    def __init__(self, value: float):
        super().__init__()
        self._value = float(value)

    @property
    def value(self) -> float:
        return self._value

    def set_value(self, value: float) -> None:
        """Set a new value; the version only moves if the value changes."""
        value = float(value)
        if value != self._value:
            self._value = value
            self.notify_changed()

    def __float__(self) -> float:
        return self._value

    def __repr__(self) -> str:
        return f"SimpleQuote({self._value!r})"


QuoteLike = Union[float, int, SimpleQuote]


def as_quote(value: QuoteLike) -> SimpleQuote:
    """Wrap a plain number into a SimpleQuote, pass quotes through."""
    if isinstance(value, SimpleQuote):
        return value
    return SimpleQuote(float(value))


def snapshot(observables: Iterable[Observable]) -> Tuple[int, ...]:
    """Capture the versions of an ordered list of observables."""
    return tuple(o.version for o in observables)


def has_changed_since(
    previous: Tuple[int, ...], observables: Iterable[Observable]
) -> bool:
    """True if any observable moved since ``previous`` was taken."""
    return snapshot(observables) != tuple(previous)


class MarketObserver:
    """
    Tracks whether any of a registered set of observables changed.

    ``has_updated(reset=True)`` answers and re-arms in one atomic step, so a
    concurrent quote update can never be lost between the query and the
    reset.
    """

    def __init__(self, observables: Iterable[Observable] = ()):
        self._observables: List[Observable] = list(observables)
        self._lock = threading.Lock()
        self._snapshot = snapshot(self._observables)

    def add_observable(self, observable: Observable) -> None:
        with self._lock:
            self._observables.append(observable)
            self._snapshot = self._snapshot + (observable.version,)

    @property
    def observables(self) -> List[Observable]:
        return list(self._observables)

    def has_updated(self, reset: bool = False) -> bool:
        """
        Check for changes since the last reset.

        Args:
            reset: If True, take a fresh snapshot after answering

        Returns:
            True if any registered observable changed
        """
        with self._lock:
            current = snapshot(self._observables)
            updated = current != self._snapshot
            if reset:
                self._snapshot = current
        if updated:
            logger.debug(f"Market observer detected changes in {len(self._observables)} observables")
        return updated
