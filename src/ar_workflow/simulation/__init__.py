"""
Synthetic data with known parameters.

**Usage:**
```python
from ar_workflow.simulation import simulate

series, truth = simulate(
    spec,
    {"alpha": 0.0, "beta": [0.3, 0, 0, 0, 0, 0.6], "sigma": 1.0},
    missing_fraction=0.05,
    random_seed=42,
)
```
"""

from ar_workflow.simulation.simulator import DataSimulator, simulate

__all__ = [
    "DataSimulator",
    "simulate",
]
