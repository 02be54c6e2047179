from .controller import ReconciliationController
from .results import PhaseOutcome, PhaseStatus, ReconciliationResult
from .strategies import ManualReplayStrategy, ReconciliationStrategy, ServerDelegatedStrategy, strategy_from_name

__all__ = [
    "ReconciliationController",
    "PhaseOutcome",
    "PhaseStatus",
    "ReconciliationResult",
    "ManualReplayStrategy",
    "ReconciliationStrategy",
    "ServerDelegatedStrategy",
    "strategy_from_name",
]
