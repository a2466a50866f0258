"""
Exception taxonomy for the AR workflow.

Fatal precondition violations are raised before any simulation, sampling
or summary computation proceeds. Convergence problems (poor mixing, low
effective sample size, divergent transitions) are not exceptions; they are
reported through DiagnosticsReport.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for all workflow errors."""


class InvalidLengthError(WorkflowError):
    """Data/shape mismatch, e.g. a missing position outside 0..T-1."""


class InsufficientDataError(InvalidLengthError):
    """Series too short to form a single lagged row (T < P + 1)."""


class InsufficientChainsError(WorkflowError):
    """Fewer than two chains supplied where a between-chain comparison is needed."""


class IncompleteFitError(WorkflowError):
    """A cancelled Fit was passed to a stage that needs every chain finished."""


class SamplerFailureError(WorkflowError):
    """The sampling backend reported a non-recoverable failure in one chain."""

    def __init__(self, chain_id: Optional[int], message: str) -> None:
        self.chain_id = chain_id
        prefix = f"chain {chain_id}: " if chain_id is not None else ""
        super().__init__(f"{prefix}{message}")
