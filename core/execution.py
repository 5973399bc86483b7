"""
Execution collaborator interface.

The engine never builds or signs on-chain operations; it hands approved
actions to an ExecutionCollaborator. DryRunExecutor records actions and
reports success without side effects.
"""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from typing import List

from core.actions import ExecutionResult, StrategyAction

logger = logging.getLogger(__name__)


class ExecutionCollaborator(ABC):
    @abstractmethod
    def execute_action(self, action: StrategyAction) -> ExecutionResult:
        """Execute an action that passed the risk filter."""


class DryRunExecutor(ExecutionCollaborator):
    """Log and record actions instead of executing them."""

    def __init__(self):
        self._lock = threading.Lock()
        self.executed: List[StrategyAction] = []

    def execute_action(self, action: StrategyAction) -> ExecutionResult:
        tx_id = f"dry-run-{uuid.uuid4().hex[:16]}"
        with self._lock:
            self.executed.append(action)
        logger.info(
            f"DRY_RUN: would execute {action.type.value} on {action.pool_address} "
            f"(priority={action.priority}, params={action.to_dict()['params']}) -> {tx_id}"
        )
        return ExecutionResult(success=True, transaction_id=tx_id, actual_return=action.expected_return)
