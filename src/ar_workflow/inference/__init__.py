"""
Posterior sampling and convergence diagnostics.

This module provides the inference half of the workflow:
1. PosteriorSampler: dispatch independent chains to a sampling backend
2. PyMCBackend / ScriptedBackend: NUTS via PyMC, or replayed draws for tests
3. Fit / Chain / ParameterDraw: immutable posterior containers
4. ConvergenceDiagnostics: Rhat, ESS, divergence counts

**Usage:**
```python
from ar_workflow.inference import PosteriorSampler, PyMCBackend, ConvergenceDiagnostics

sampler = PosteriorSampler(PyMCBackend(), n_workers=4)
fit = sampler.fit(spec, series, num_chains=4, draws_per_chain=1000, random_seed=1)

report = ConvergenceDiagnostics().diagnose(fit)
if not report.meets(rhat_max=1.1, max_divergences=0):
    ...
```
"""

from ar_workflow.inference.fit import Chain, Fit, ParameterDraw
from ar_workflow.inference.backends import (
    ChainResult,
    ModelDescription,
    PyMCBackend,
    SamplingBackend,
    ScriptedBackend,
)
from ar_workflow.inference.adapter import PosteriorSampler
from ar_workflow.inference.diagnostics import (
    ConvergenceDiagnostics,
    DiagnosticsReport,
    ParameterDiagnostics,
    diagnose,
    summary_frame,
)

__all__ = [
    "Chain",
    "Fit",
    "ParameterDraw",
    "ChainResult",
    "ModelDescription",
    "PyMCBackend",
    "SamplingBackend",
    "ScriptedBackend",
    "PosteriorSampler",
    "ConvergenceDiagnostics",
    "DiagnosticsReport",
    "ParameterDiagnostics",
    "diagnose",
    "summary_frame",
]
