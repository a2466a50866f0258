"""
Bayesian workflow for AR(P) models with horseshoe shrinkage and latent
missing-value imputation.

Pipeline:
1. series: TimeSeries with explicit missing markers
2. model: ModelSpec (priors, likelihood, PyMC graph)
3. simulation: synthetic data with known parameters
4. inference: PosteriorSampler (PyMC NUTS) and ConvergenceDiagnostics
5. predictive: reconstruction, forecast quantiles, parameter recovery

**Usage:**
```python
from ar_workflow import (
    ModelSpec, simulate, PosteriorSampler, PyMCBackend,
    ConvergenceDiagnostics, PosteriorPredictive,
)

spec = ModelSpec(lag_order=6, n_obs=500)
series, truth = simulate(spec, {"alpha": 0.0, "beta": [0.3, 0, 0, 0, 0, 0.6], "sigma": 1.0},
                         missing_fraction=0.05, random_seed=1)
fit = PosteriorSampler(PyMCBackend(), n_workers=4).fit(spec, series, 4, 1000, random_seed=1)
report = ConvergenceDiagnostics().diagnose(fit)
recovery = PosteriorPredictive.recovery_check(fit, truth, interval_width=0.5, report=report)
```
"""

from ar_workflow.errors import (
    IncompleteFitError,
    InsufficientChainsError,
    InsufficientDataError,
    InvalidLengthError,
    SamplerFailureError,
    WorkflowError,
)
from ar_workflow.series import Observation, TimeSeries, TimeSeriesEncoder
from ar_workflow.model import ModelSpec, PriorSpec
from ar_workflow.simulation import DataSimulator, simulate
from ar_workflow.inference import (
    Chain,
    ConvergenceDiagnostics,
    DiagnosticsReport,
    Fit,
    ParameterDraw,
    PosteriorSampler,
    PyMCBackend,
    ScriptedBackend,
)
from ar_workflow.predictive import ForecastSummary, PosteriorPredictive, RecoveryResult
from ar_workflow.config import GateConfig, SamplerConfig, WorkflowConfig, load_config

__version__ = "0.1.0"

__all__ = [
    "IncompleteFitError",
    "InsufficientChainsError",
    "InsufficientDataError",
    "InvalidLengthError",
    "SamplerFailureError",
    "WorkflowError",
    "Observation",
    "TimeSeries",
    "TimeSeriesEncoder",
    "ModelSpec",
    "PriorSpec",
    "DataSimulator",
    "simulate",
    "Chain",
    "ConvergenceDiagnostics",
    "DiagnosticsReport",
    "Fit",
    "ParameterDraw",
    "PosteriorSampler",
    "PyMCBackend",
    "ScriptedBackend",
    "ForecastSummary",
    "PosteriorPredictive",
    "RecoveryResult",
    "GateConfig",
    "SamplerConfig",
    "WorkflowConfig",
    "load_config",
]
