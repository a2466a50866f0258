"""
Time series with explicit missingness.

**Usage:**
```python
from ar_workflow.series import TimeSeriesEncoder

series = TimeSeriesEncoder.encode([0.1, 0.4, 0.0, -0.2], missing_positions=[2])
values, mask = TimeSeriesEncoder.decode(series)
```
"""

from ar_workflow.series.timeseries import Observation, TimeSeries
from ar_workflow.series.encoder import TimeSeriesEncoder

__all__ = [
    "Observation",
    "TimeSeries",
    "TimeSeriesEncoder",
]
