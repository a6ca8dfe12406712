# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

from typing import Optional

import numpy as np

from spnet.spn.structure.node import Node, NodeType


class EdgeHyperparams:
    #: The names and default values of the edge hyperparameters
    DEFAULTS = {
        'learning_rate': 0.1,
        'momentum': 0.0,
        'weight_decay': 0.0,
        'learning_rate_decay': 0.0,
        'min_weight': 1e-7
    }

    def __init__(self, **kwargs):
        """
        Initialize the hyperparameters of an edge update rule. Missing values take their defaults.

        :param kwargs: The hyperparameters values.
        :raises ValueError: If a hyperparameter is unknown or out of domain.
        """
        for name, value in self.DEFAULTS.items():
            setattr(self, name, value)
        self.merge(kwargs)

    def merge(self, hyper_params: Optional[dict]):
        """
        Overlay some hyperparameters. Keys not related to edges are ignored,
        since the same dictionary also holds model-level settings.

        :param hyper_params: The hyperparameters. It can be None.
        :raises ValueError: If a hyperparameter is out of domain.
        """
        if not hyper_params:
            return
        for name in self.DEFAULTS:
            if name in hyper_params and hyper_params[name] is not None:
                setattr(self, name, float(hyper_params[name]))
        if self.learning_rate <= 0.0:
            raise ValueError("The learning rate must be positive")
        if self.momentum < 0.0 or self.momentum >= 1.0:
            raise ValueError("The momentum must be in [0, 1)")
        if self.weight_decay < 0.0 or self.learning_rate_decay < 0.0:
            raise ValueError("The weight decay and the learning rate decay must be non-negative")
        if self.min_weight < 0.0:
            raise ValueError("The minimum weight must be non-negative")

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.DEFAULTS}


class Edge:
    def __init__(self, source: Node, destination: Node, directed: bool = True, weight: float = 1.0):
        """
        Initialize a directed weighted edge and register it in both endpoints.
        The edge owns its weight, while the endpoints are owned by the SPN.

        :param source: The source node, i.e. the child.
        :param destination: The destination node, i.e. the parent.
        :param directed: Whether the edge is directed.
        :param weight: The initial weight.
        :raises ValueError: If the edge is a self-loop.
        """
        if source is destination:
            raise ValueError("Self-loop edge found at node {}".format(source.name))
        self.source = source
        self.destination = destination
        self.directed = directed
        self.weight = float(weight)
        self.hyper_params = EdgeHyperparams()
        self.velocity = 0.0
        source.outgoing.append(self)
        destination.incoming.append(self)

    @property
    def name(self) -> str:
        return '{} -> {}'.format(self.source.name, self.destination.name)

    @property
    def is_trainable(self) -> bool:
        """Whether the weight of the edge enters the forward computation, i.e. it ends in a sum node."""
        return self.destination.type == NodeType.SUM

    def gradient(self) -> float:
        """
        Compute the gradient w.r.t. the weight, summed over the rows of the last batch.
        It requires a full forward and backward pass.

        :return: The gradient.
        """
        return float(np.sum(
            self.destination.derivatives.astype(np.float64) * self.source.activations.astype(np.float64)
        ))

    def update_params(self, step: int, batch_size: int):
        """
        Update the weight of the edge by gradient ascent with momentum and weight decay,
        using the derivatives of the most recent forward and backward passes.

        :param step: The training step, used for learning rate decay.
        :param batch_size: The batch size used to normalize the gradient.
        :raises ValueError: If the batch size is not positive.
        """
        if not self.is_trainable:
            return
        if batch_size <= 0:
            raise ValueError("The batch size must be positive")
        hp = self.hyper_params
        lr = hp.learning_rate / (1.0 + hp.learning_rate_decay * step)
        grad = self.gradient() / batch_size - hp.weight_decay * self.weight
        self.velocity = hp.momentum * self.velocity + lr * grad
        self.weight = max(self.weight + self.velocity, hp.min_weight)

    def merge_hyperparams(self, hyper_params: Optional[dict]):
        """
        Merge some hyperparameters into the update rule of the edge.

        :param hyper_params: The hyperparameters.
        """
        self.hyper_params.merge(hyper_params)

    def merge_edge_data(self, edge_data: dict):
        """
        Overlay some persisted edge data, i.e. the weight and the hyperparameters.

        :param edge_data: The edge data.
        """
        if edge_data.get('weight') is not None:
            self.weight = float(edge_data['weight'])
        self.merge_hyperparams(edge_data.get('hyper_params'))

    def to_edge_data(self) -> dict:
        """
        Get the edge data, i.e. the persisted description of the edge.

        :return: The edge data.
        """
        return {
            'node1': self.source.name,
            'node2': self.destination.name,
            'directed': self.directed,
            'weight': round(self.weight, 8),
            'hyper_params': self.hyper_params.to_dict()
        }

    def __repr__(self) -> str:
        return 'Edge({}, weight={:.4f})'.format(self.name, self.weight)
