"""
Model specification: AR(P) likelihood with horseshoe prior over lags.

**Usage:**
```python
from ar_workflow.model import ModelSpec, PriorSpec

spec = ModelSpec(lag_order=6, n_obs=500, prior_spec=PriorSpec(intercept_scale=2.0))
lp = spec.log_density(params, series)   # numpy evaluator
model = spec.build_model(series)        # PyMC graph for NUTS
```
"""

from ar_workflow.model.spec import (
    ModelSpec,
    PriorSpec,
    flatten_parameters,
    indexed,
)

__all__ = [
    "ModelSpec",
    "PriorSpec",
    "flatten_parameters",
    "indexed",
]
