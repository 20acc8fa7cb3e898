"""
Index lifecycle: errors, state, locking, orchestration.
"""

from .errors import ErrorKind, HnswRagError, OperationResult
from .lifecycle import LifecycleManager
from .locks import ReadWriteLock
from .orchestrator import RAGAnswer, RAGOrchestrator
from .state_machine import IndexState, IndexStateMachine, IndexStatus

__all__ = [
    "ErrorKind",
    "HnswRagError",
    "IndexState",
    "IndexStateMachine",
    "IndexStatus",
    "LifecycleManager",
    "OperationResult",
    "RAGAnswer",
    "RAGOrchestrator",
    "ReadWriteLock",
]
