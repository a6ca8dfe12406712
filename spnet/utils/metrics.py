# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

from enum import Enum
from typing import Optional, List, Iterator

from spnet.utils.data import HUGE_VALUE


class MetricType(Enum):
    """
    The type of a metric series.
    """
    NLL = 1


class Metric:
    def __init__(
        self,
        mtype: MetricType,
        steps: Optional[List[int]] = None,
        values: Optional[List[float]] = None
    ):
        """
        Initialize a metric series, i.e. a list of (step, value) pairs.
        Depending on the context, 'steps' holds either the number of accumulated samples
        or the training step at which the value was recorded.

        :param mtype: The metric type.
        :param steps: The steps. If None, it is initialized as an empty list.
        :param values: The values. If None, it is initialized as an empty list.
        :raises ValueError: If steps and values have different lengths.
        """
        if steps is None:
            steps = list()
        if values is None:
            values = list()
        if len(steps) != len(values):
            raise ValueError("Metric steps and values length mismatch")
        self.type = mtype
        self.steps = steps
        self.values = values

    def __len__(self) -> int:
        return len(self.steps)

    def to_dict(self) -> dict:
        return {'type': self.type.name, 'steps': list(self.steps), 'values': list(self.values)}

    @classmethod
    def from_dict(cls, d: dict) -> 'Metric':
        return cls(MetricType[d['type']], list(d.get('steps', [])), [float(v) for v in d.get('values', [])])


class Metrics:
    def __init__(self, metrics: Optional[List[Metric]] = None):
        """
        Initialize an ordered collection of metric series.

        :param metrics: The metric series. If None, the collection is empty.
        """
        self.metrics = list() if metrics is None else metrics

    def __iter__(self) -> Iterator[Metric]:
        return iter(self.metrics)

    def __len__(self) -> int:
        return len(self.metrics)

    def find(self, mtype: MetricType) -> Optional[Metric]:
        """
        Find the last metric series of a given type.

        :param mtype: The metric type.
        :return: The metric series, or None if not found.
        """
        for m in reversed(self.metrics):
            if m.type == mtype:
                return m
        return None

    def add(self, mtype: MetricType) -> Metric:
        """
        Add an empty metric series of a given type.

        :param mtype: The metric type.
        :return: The new metric series.
        """
        metric = Metric(mtype)
        self.metrics.append(metric)
        return metric

    def clear(self):
        """
        Remove all the metric series.
        """
        self.metrics.clear()

    def copy(self) -> 'Metrics':
        return Metrics([Metric(m.type, list(m.steps), list(m.values)) for m in self.metrics])

    def to_list(self) -> List[dict]:
        return [m.to_dict() for m in self.metrics]

    @classmethod
    def from_list(cls, items: Optional[List[dict]]) -> 'Metrics':
        if not items:
            return cls()
        return cls([Metric.from_dict(d) for d in items])


def accumulate_metric(metrics: Metrics, mtype: MetricType, num_samples: int, value: float):
    """
    Accumulate a value, estimated on some samples, into the last entry of a metric series.

    :param metrics: The metrics collection.
    :param mtype: The metric type.
    :param num_samples: The number of samples from which the value is computed.
    :param value: The value, i.e. the sum of the metric over the samples.
    :raises ValueError: If the number of samples is not positive.
    """
    if num_samples <= 0:
        raise ValueError("The number of samples must be positive")
    metric = metrics.find(mtype)
    if metric is None:
        metric = metrics.add(mtype)
    if not metric.steps:
        metric.steps.append(0)
        metric.values.append(0.0)
    metric.steps[-1] += num_samples
    metric.values[-1] += float(value)


def last_metric_average(metrics: Metrics, mtype: MetricType) -> float:
    """
    Get the average of the last entry of a metric series.

    :param metrics: The metrics collection.
    :param mtype: The metric type.
    :return: The metric average, or HUGE_VALUE if there is no such metric.
    """
    metric = metrics.find(mtype)
    if metric is None or not metric.steps or metric.steps[-1] == 0:
        return HUGE_VALUE
    return metric.values[-1] / metric.steps[-1]


def append_stats(target: Metrics, new_metrics: Metrics, step: int):
    """
    Append the last averages of some metrics to the same-typed series of another collection.

    :param target: The metrics history to append to.
    :param new_metrics: The metrics to summarize.
    :param step: The training step the averages refer to.
    """
    for m in new_metrics:
        metric = target.find(m.type)
        if metric is None:
            metric = target.add(m.type)
        metric.steps.append(step)
        metric.values.append(last_metric_average(new_metrics, m.type))
