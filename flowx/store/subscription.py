"""Push-based query results and cancellable subscriptions."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class Loading:
    """The query has not delivered a first value yet."""

    _instance: Optional[Loading] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "LOADING"


LOADING = Loading()


@dataclass(frozen=True)
class Snapshot(Generic[T]):
    """Latest consistent value of a query. ``Snapshot([])`` is loaded-but-empty."""

    value: T


QueryResult = Union[Loading, Snapshot]


class Subscription:
    """Handle for one live query; deliveries after ``cancel()`` are dropped."""

    def __init__(
        self,
        query: str,
        args: Dict[str, Any],
        callback: Callable[[QueryResult], None],
        on_cancel: Optional[Callable[[Subscription], None]] = None,
    ) -> None:
        self.query = query
        self.args = args
        self._callback = callback
        self._on_cancel = on_cancel
        self._active = True
        self.last_value: Any = LOADING

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_cancel is not None:
            self._on_cancel(self)

    def deliver(self, result: QueryResult) -> None:
        if self._active:
            self._callback(result)

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"<Subscription {self.query} {self.args} {state}>"
