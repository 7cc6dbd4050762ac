from collections import defaultdict
from types import MethodType
from typing import Callable, DefaultDict, List, Union
import weakref


_Listener = Union[Callable[..., None], weakref.WeakMethod]


class EventBus:
    """Minimal pub/sub helper that avoids retaining dead listeners."""

    __slots__ = ("_subs",)

    def __init__(self) -> None:
        self._subs: DefaultDict[str, List[_Listener]] = defaultdict(list)

    def subscribe(self, event_name: str, callback: Callable[..., None]) -> None:
        listeners = self._subs[event_name]
        if isinstance(callback, MethodType):
            listeners.append(weakref.WeakMethod(callback))
        else:
            listeners.append(callback)

    def unsubscribe(self, event_name: str, callback: Callable[..., None]) -> None:
        listeners = self._subs.get(event_name)
        if not listeners:
            return
        kept: List[_Listener] = []
        removed = False
        for cb in listeners:
            fn = cb() if isinstance(cb, weakref.WeakMethod) else cb
            if fn is None:
                continue
            if not removed and fn == callback:
                removed = True
                continue
            kept.append(cb)
        self._subs[event_name] = kept

    def listener_count(self, event_name: str) -> int:
        count = 0
        for cb in self._subs.get(event_name, ()):
            if isinstance(cb, weakref.WeakMethod) and cb() is None:
                continue
            count += 1
        return count

    def emit(self, event_name: str, *args, **kwargs) -> None:
        listeners = self._subs.get(event_name)
        if not listeners:
            return

        # snapshot: listeners may (un)subscribe while being called
        for cb in list(listeners):
            if isinstance(cb, weakref.WeakMethod):
                fn = cb()
                if fn is None:
                    continue
                fn(*args, **kwargs)
            else:
                cb(*args, **kwargs)
        self._subs[event_name] = [
            cb
            for cb in self._subs.get(event_name, [])
            if not (isinstance(cb, weakref.WeakMethod) and cb() is None)
        ]


bus = EventBus()
