"""Session state, ranking, caching and turn orchestration."""

from .cache import COMMON_PHRASES, ResponseCache
from .contracts import (
    ConversationState,
    Message,
    ProductCategory,
    ProductQuery,
    SearchResult,
    Session,
    SessionSnapshot,
    SessionStatus,
)
from .orchestrator import StepOutcome, TurnOrchestrator, TurnResult
from .ranking import ResultRanker
from .state import ConversationStateMachine
from .store import SessionStore

__all__ = [
    "COMMON_PHRASES",
    "ConversationState",
    "ConversationStateMachine",
    "Message",
    "ProductCategory",
    "ProductQuery",
    "ResponseCache",
    "ResultRanker",
    "SearchResult",
    "Session",
    "SessionSnapshot",
    "SessionStatus",
    "SessionStore",
    "StepOutcome",
    "TurnOrchestrator",
    "TurnResult",
]
