"""
Process State - lifecycle of the supervised local backend.

STOPPED -> STARTING -> RUNNING, and RUNNING/STARTING -> STOPPED on stop,
crash or a failed start.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ProcessState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"   # spawned, waiting for /health
    RUNNING = "running"


VALID_TRANSITIONS = {
    ProcessState.STOPPED: {ProcessState.STARTING},
    ProcessState.STARTING: {ProcessState.RUNNING, ProcessState.STOPPED},
    ProcessState.RUNNING: {ProcessState.STOPPED},
}


@dataclass
class ProcessInfo:
    """Current state plus when it was entered and why the last start failed."""
    version: Optional[str] = None
    state: ProcessState = ProcessState.STOPPED
    state_entered_at: float = field(default_factory=time.time)
    error_message: Optional[str] = None

    def transition_to(self, new_state: ProcessState) -> bool:
        """Transition to a new state if valid.

        Returns:
            True if the transition was valid and performed, False otherwise
        """
        if new_state in VALID_TRANSITIONS.get(self.state, set()):
            self.state = new_state
            self.state_entered_at = time.time()
            if new_state is not ProcessState.STOPPED:
                self.error_message = None
            return True
        return False

    def time_in_state(self) -> float:
        return time.time() - self.state_entered_at

    def is_running(self) -> bool:
        return self.state is ProcessState.RUNNING

    def is_stopped(self) -> bool:
        return self.state is ProcessState.STOPPED
