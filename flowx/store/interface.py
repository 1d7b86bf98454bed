from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from flowx.store.subscription import QueryResult, Subscription


class RemoteStoreClient(ABC):
    """
    Abstract interface for the remote reactive store. One instance is
    constructed per session and passed to every component that needs it.
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Open the connection. Subscriptions created earlier start
        receiving snapshots once connected.
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """
        Close the connection. Active subscriptions stay registered but
        receive nothing until the next ``connect()``.
        """
        pass

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass

    @abstractmethod
    def subscribe(
        self,
        query: str,
        args: Optional[Dict[str, Any]],
        callback: Callable[[QueryResult], None],
    ) -> Subscription:
        """
        Register a live query.

        Args:
            query: Query name, e.g. ``"folders:list"``
            args: Query arguments
            callback: Receives ``LOADING`` first, then a ``Snapshot`` each
                time the result changes

        Returns:
            Cancellable subscription handle
        """
        pass

    @abstractmethod
    async def mutation(self, name: str, args: Dict[str, Any]) -> Any:
        """
        Run a mutation and return its result.

        Raises:
            RemoteCallError: The store rejected the call or is unreachable
        """
        pass
