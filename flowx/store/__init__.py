# Remote reactive store boundary
from .adapters import EntityStore, FlowStore
from .interface import RemoteStoreClient
from .memory import InMemoryRemoteStore
from .subscription import LOADING, Loading, QueryResult, Snapshot, Subscription

__all__ = [
    'EntityStore',
    'FlowStore',
    'RemoteStoreClient',
    'InMemoryRemoteStore',
    'LOADING',
    'Loading',
    'QueryResult',
    'Snapshot',
    'Subscription',
]
