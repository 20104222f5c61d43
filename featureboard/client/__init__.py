"""Client-side core: HTTP API, drafts, auth gate, store and optimistic mutations."""

from .api import ApiResult, FeatureBoardClient
from .auth_gate import AuthGate, ClientSession, GateOutcome, GateResult, SessionState
from .board import FeatureBoard
from .coordinator import MutationKind, OptimisticMutationCoordinator
from .drafts import DraftStore
from .storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from .store import SortKey, SuggestionStore

__all__ = [
    "ApiResult",
    "AuthGate",
    "ClientSession",
    "DraftStore",
    "FeatureBoard",
    "FeatureBoardClient",
    "GateOutcome",
    "GateResult",
    "JsonFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "MutationKind",
    "OptimisticMutationCoordinator",
    "SessionState",
    "SortKey",
    "SuggestionStore",
]
