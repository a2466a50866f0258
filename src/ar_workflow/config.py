"""
Workflow configuration.

Configuration is read once at pipeline startup from an explicit YAML file
and passed down to each stage. There is no module-level configuration
object: the worker count and sampler settings reach the sampling adapter
only as arguments.

Example ``workflow.yaml``::

    lag_order: 6
    n_workers: 4
    random_seed: 1234
    interval_width: 0.5
    quantiles: [0.25, 0.5, 0.75]
    sampler:
      draws: 1000
      tune: 1000
      chains: 4
      target_accept: 0.9
    gate:
      rhat_max: 1.1
      min_ess: 100
      max_divergences: 0
    priors:
      intercept_loc: 0.0
      intercept_scale: 1.0
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, Union

import yaml

from ar_workflow.model.spec import PriorSpec


@dataclass(frozen=True)
class SamplerConfig:
    """NUTS settings forwarded to the PyMC backend."""

    draws: int = 1000
    tune: int = 1000
    chains: int = 4
    target_accept: float = 0.9
    max_treedepth: int = 10

    def __post_init__(self) -> None:
        if self.draws <= 0 or self.chains <= 0 or self.tune < 0:
            raise ValueError(
                f"draws and chains must be positive and tune non-negative. Got "
                f"draws={self.draws}, chains={self.chains}, tune={self.tune}"
            )
        if not (0.5 < self.target_accept < 1.0):
            raise ValueError(f"target_accept must be in (0.5, 1). Got {self.target_accept}")


@dataclass(frozen=True)
class GateConfig:
    """Thresholds the caller applies to a DiagnosticsReport."""

    rhat_max: float = 1.1
    min_ess: float = 100.0
    max_divergences: int = 0


@dataclass(frozen=True)
class WorkflowConfig:
    """Full pipeline configuration."""

    lag_order: int = 6
    n_workers: int = 1
    random_seed: Optional[int] = None
    interval_width: float = 0.5
    quantiles: Tuple[float, float, float] = (0.25, 0.5, 0.75)
    sampler: SamplerConfig = field(default_factory=SamplerConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    priors: PriorSpec = field(default_factory=PriorSpec)

    def __post_init__(self) -> None:
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1. Got {self.n_workers}")
        if not (0.0 < self.interval_width < 1.0):
            raise ValueError(f"interval_width must be in (0, 1). Got {self.interval_width}")


def load_config(path: Union[str, Path]) -> WorkflowConfig:
    """Load a WorkflowConfig from a YAML file.

    Missing keys fall back to the dataclass defaults.
    """
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return WorkflowConfig(
        lag_order=int(raw.get("lag_order", 6)),
        n_workers=int(raw.get("n_workers", 1)),
        random_seed=raw.get("random_seed"),
        interval_width=float(raw.get("interval_width", 0.5)),
        quantiles=tuple(raw.get("quantiles", (0.25, 0.5, 0.75))),
        sampler=SamplerConfig(**raw.get("sampler", {})),
        gate=GateConfig(**raw.get("gate", {})),
        priors=PriorSpec(**raw.get("priors", {})),
    )
