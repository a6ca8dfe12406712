import pytest
import numpy as np

from spnet.utils.data import HUGE_VALUE
from spnet.utils.metrics import MetricType, Metric, Metrics
from spnet.utils.metrics import accumulate_metric, last_metric_average, append_stats


def test_accumulate_metric():
    metrics = Metrics()
    assert last_metric_average(metrics, MetricType.NLL) == HUGE_VALUE
    accumulate_metric(metrics, MetricType.NLL, 10, 5.0)
    accumulate_metric(metrics, MetricType.NLL, 30, 7.0)
    metric = metrics.find(MetricType.NLL)
    assert metric.steps == [40] and metric.values == [12.0]
    assert np.isclose(last_metric_average(metrics, MetricType.NLL), 0.3)
    with pytest.raises(ValueError):
        accumulate_metric(metrics, MetricType.NLL, 0, 1.0)


def test_append_stats():
    history = Metrics()
    for step, value in [(0, 8.0), (2, 6.0), (4, 4.0)]:
        metrics = Metrics()
        accumulate_metric(metrics, MetricType.NLL, 4, value)
        append_stats(history, metrics, step)
    metric = history.find(MetricType.NLL)
    assert metric.steps == [0, 2, 4]
    assert np.allclose(metric.values, [2.0, 1.5, 1.0])


def test_metrics_list():
    metrics = Metrics([Metric(MetricType.NLL, [0, 2], [1.5, 1.25])])
    items = metrics.to_list()
    assert items == [{'type': 'NLL', 'steps': [0, 2], 'values': [1.5, 1.25]}]
    loaded = Metrics.from_list(items)
    assert len(loaded) == 1
    assert loaded.find(MetricType.NLL).values == [1.5, 1.25]
    assert len(Metrics.from_list(None)) == 0
    copied = metrics.copy()
    copied.find(MetricType.NLL).values.append(1.0)
    assert len(metrics.find(MetricType.NLL)) == 2
    metrics.clear()
    assert metrics.find(MetricType.NLL) is None
    with pytest.raises(ValueError):
        Metric(MetricType.NLL, [0, 1], [1.0])
