from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager


class InMemoryUnitOfWork:
    """Shared transaction scope for the in-memory stores.

    ``begin()`` mirrors ``SessionLocal.begin()``: one re-entrant lock
    serialises every store, and the registered stores' state is restored from
    a deep-copy snapshot when the block raises.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._stores: list[object] = []
        self._depth = 0

    def register(self, store: object) -> None:
        if store not in self._stores:
            self._stores.append(store)

    def read(self) -> threading.RLock:
        return self._lock

    @contextmanager
    def begin(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                # nested scopes join the outer transaction
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = [
                (store, {attr: copy.deepcopy(getattr(store, attr)) for attr in getattr(store, "_STATE_ATTRS", ())})
                for store in self._stores
            ]
            self._depth = 1
            try:
                yield
            except BaseException:
                for store, state in snapshot:
                    for attr, value in state.items():
                        setattr(store, attr, value)
                raise
            finally:
                self._depth = 0

