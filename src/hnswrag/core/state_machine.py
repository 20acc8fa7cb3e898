"""
Index lifecycle state: ``NOT_LOADED`` or ``READY`` with a retriever.

The state is a tagged value rather than a nullable global. Replacing it goes
through :class:`IndexStateMachine`, which invalidates the outgoing retriever
and keeps a short transition history.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..observability.logging import get_logger
from ..rag.retriever import Retriever

logger = get_logger(__name__)


class IndexStatus(Enum):
    NOT_LOADED = "not_loaded"
    READY = "ready"


@dataclass(frozen=True)
class IndexState:
    """``NotLoaded`` or ``Ready(retriever)``. Only ``READY`` carries a retriever."""

    status: IndexStatus
    retriever: Retriever | None = None

    def __post_init__(self):
        if self.status is IndexStatus.READY and self.retriever is None:
            raise ValueError("READY state requires a retriever")
        if self.status is IndexStatus.NOT_LOADED and self.retriever is not None:
            raise ValueError("NOT_LOADED state cannot carry a retriever")

    @classmethod
    def not_loaded(cls) -> "IndexState":
        return cls(IndexStatus.NOT_LOADED)

    @classmethod
    def ready(cls, retriever: Retriever) -> "IndexState":
        return cls(IndexStatus.READY, retriever)

    @property
    def is_ready(self) -> bool:
        return self.status is IndexStatus.READY


@dataclass
class Transition:
    """One recorded state change."""

    from_status: IndexStatus
    to_status: IndexStatus
    event: str
    timestamp: float = field(default_factory=time.time)
    generation: int | None = None


# Which events may lead into each status
_ALLOWED_EVENTS: dict[IndexStatus, frozenset[str]] = {
    IndexStatus.READY: frozenset({"build", "load"}),
    IndexStatus.NOT_LOADED: frozenset({"load", "delete", "close"}),
}


class IndexStateMachine:
    """Owner of the current :class:`IndexState`."""

    def __init__(self, max_history: int = 100):
        self._state = IndexState.not_loaded()
        self.max_history = max_history
        self.history: list[Transition] = []

    @property
    def state(self) -> IndexState:
        return self._state

    def transition(self, new_state: IndexState, event: str) -> Transition:
        """Swap in ``new_state`` and invalidate the retriever it replaces."""
        if event not in _ALLOWED_EVENTS[new_state.status]:
            raise ValueError(f"event {event!r} cannot lead to {new_state.status.name}")

        old_state = self._state
        if old_state.retriever is not None and old_state.retriever is not new_state.retriever:
            old_state.retriever.invalidate()
        self._state = new_state

        record = Transition(
            from_status=old_state.status,
            to_status=new_state.status,
            event=event,
            generation=new_state.retriever.generation if new_state.retriever else None,
        )
        self.history.append(record)
        if len(self.history) > self.max_history:
            del self.history[: -self.max_history]

        logger.info(
            "Index state transition",
            event=event,
            from_status=old_state.status.value,
            to_status=new_state.status.value,
        )
        return record

    def get_current_state_info(self) -> dict[str, Any]:
        state = self._state
        return {
            "status": state.status.value,
            "generation": state.retriever.generation if state.retriever else None,
            "transitions": len(self.history),
            "last_event": self.history[-1].event if self.history else None,
        }
