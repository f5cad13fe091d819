"""Undo journal for engine state.

An EVM transaction that reverts leaves no trace. We get the same behaviour
the way Anvil ``evm_snapshot`` / ``evm_revert`` does it for a whole chain,
but scoped to the entries a call actually touched:

- Before mutating a mapping entry, :py:meth:`StateJournal.remember` stores a copy of the old value
- Appends to logs register an undo callback with :py:meth:`StateJournal.on_rollback`
- :py:meth:`StateJournal.rollback` replays everything in reverse order

Rollback cost is proportional to the number of touched entries, never to the number of depositors.
"""

import copy
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, MutableMapping


logger = logging.getLogger(__name__)


_MISSING = object()


class StateJournal:
    """Record undo information while a call is in progress."""

    def __init__(self):
        self._undo: list[Callable[[], None]] = []
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def remember(self, mapping: MutableMapping, key):
        """Save the current value of ``mapping[key]`` before it is changed or deleted."""
        if not self._active:
            return

        old = mapping.get(key, _MISSING)
        if old is _MISSING:

            def undo():
                mapping.pop(key, None)

        else:
            saved = copy.copy(old)

            def undo():
                mapping[key] = saved

        self._undo.append(undo)

    def on_rollback(self, func: Callable[[], None]):
        """Register a custom undo step, e.g. popping an appended record."""
        if self._active:
            self._undo.append(func)

    def rollback(self):
        logger.debug("Rolling back %d state changes", len(self._undo))
        for undo in reversed(self._undo):
            undo()
        self._undo.clear()

    @contextmanager
    def transaction(self) -> Iterator["StateJournal"]:
        """Collect undo steps for one call, replay them if the call raises."""
        assert not self._active, "Nested journal transaction"
        self._active = True
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        finally:
            self._undo.clear()
            self._active = False
