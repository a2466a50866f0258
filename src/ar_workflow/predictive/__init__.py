"""
Posterior predictive reconstruction, forecasts and parameter recovery.

**Usage:**
```python
from ar_workflow.predictive import PosteriorPredictive

summary = PosteriorPredictive.forecast_summary(fit, series, (0.25, 0.5, 0.75), report=report)
ahead = PosteriorPredictive.forecast_ahead(fit, series, horizon=12, random_seed=0)
recovery = PosteriorPredictive.recovery_check(fit, truth, interval_width=0.5, report=report)
```
"""

from ar_workflow.predictive.posterior import (
    ForecastSummary,
    PosteriorPredictive,
    RecoveryResult,
    forecast_ahead,
    forecast_summary,
    reconstruct,
    recovery_check,
)

__all__ = [
    "ForecastSummary",
    "PosteriorPredictive",
    "RecoveryResult",
    "forecast_ahead",
    "forecast_summary",
    "reconstruct",
    "recovery_check",
]
