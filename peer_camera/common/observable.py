"""Single-value state holders with change notification.

An :class:`Observable` always holds exactly one value. Setting a value equal
to the current one is a no-op, so observers only hear about real changes.
Observers either register a synchronous callback (:meth:`subscribe`) or
iterate :meth:`watch`, which conflates: a slow reader skips intermediate
values and always resumes at the most recent one.
"""
import asyncio
from typing import AsyncIterator, Callable, Generic, List, TypeVar

T = TypeVar("T")


def _same(a, b) -> bool:
    if a is b:
        return True
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        # array-like values compare elementwise; treat them as changed
        return False


class Observable(Generic[T]):
    """Read side of a published value."""

    def __init__(self, initial: T):
        self._value = initial
        self._listeners: List[Callable[[T], None]] = []
        self._watchers: List[asyncio.Queue] = []

    @property
    def value(self) -> T:
        return self._value

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def watch(self) -> AsyncIterator[T]:
        """Yield the current value, then every later value (latest-only)."""
        slot: asyncio.Queue = asyncio.Queue(maxsize=1)
        slot.put_nowait(self._value)
        self._watchers.append(slot)
        try:
            while True:
                yield await slot.get()
        finally:
            self._watchers.remove(slot)

    async def wait_for(self, predicate: Callable[[T], bool]) -> T:
        watcher = self.watch()
        try:
            async for value in watcher:
                if predicate(value):
                    return value
        finally:
            await watcher.aclose()
        return self._value


class MutableObservable(Observable[T]):
    """Write side; held only by the component that owns the value."""

    def set(self, value: T) -> None:
        if _same(value, self._value):
            return
        self._value = value
        for listener in list(self._listeners):
            listener(value)
        for slot in self._watchers:
            if slot.full():
                slot.get_nowait()
            slot.put_nowait(value)

    def update(self, fn: Callable[[T], T]) -> T:
        self.set(fn(self._value))
        return self._value
