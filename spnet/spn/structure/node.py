# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

from __future__ import annotations
import abc
from enum import Enum
from typing import Optional, Union, List, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from spnet.spn.structure.edge import Edge


class NodeType(Enum):
    """
    The type of a SPN node. The values are the integer codes used by node lists.
    """
    INPUT = 0
    HIDDEN = 1
    QUERY = 2
    SUM = 3
    PRODUCT = 4
    MAX = 5

    @classmethod
    def parse(cls, value: Union[NodeType, str, int, float]) -> NodeType:
        """
        Parse a node type given either its name (case-insensitive) or its integer code.

        :param value: The node type name or code.
        :return: The node type.
        :raises ValueError: If the value is not a valid node type.
        """
        if isinstance(value, NodeType):
            return value
        if isinstance(value, str):
            value = value.strip()
            if value.upper() in cls.__members__:
                return cls[value.upper()]
            try:
                value = float(value)
            except ValueError:
                raise ValueError("Invalid node type: {}".format(value)) from None
        if not np.isfinite(value) or float(value) != int(value):
            raise ValueError("Invalid node type: {}".format(value))
        try:
            return cls(int(value))
        except ValueError:
            raise ValueError("Invalid node type: {}".format(value)) from None


#: The node types whose activations are bound to the batch (or to a constant).
LEAF_TYPES = (NodeType.INPUT, NodeType.HIDDEN, NodeType.QUERY)


class Node(abc.ABC):
    NODE_TYPES = ()

    def __init__(self, name: str, ntype: NodeType, dimension: int = 1):
        """
        Initialize a SPN node.

        :param name: The name of the node, unique within a SPN.
        :param ntype: The node type.
        :param dimension: The output width of the node.
        :raises ValueError: If the node type is not supported by the node class.
        :raises ValueError: If the dimension is not positive.
        """
        if ntype not in self.NODE_TYPES:
            raise ValueError("Node type {} is not supported by {}".format(ntype.name, self.__class__.__name__))
        if dimension <= 0:
            raise ValueError("The dimension of node {} must be positive".format(name))
        self.name = name
        self.type = ntype
        self.dimension = dimension
        self.incoming: List[Edge] = list()
        self.outgoing: List[Edge] = list()
        self.activations: Optional[np.ndarray] = None
        self.derivatives: Optional[np.ndarray] = None

    @property
    def is_leaf(self) -> bool:
        """Whether the node activations are bound externally."""
        return self.type in LEAF_TYPES

    @property
    def num_incoming(self) -> int:
        return len(self.incoming)

    @property
    def num_outgoing(self) -> int:
        return len(self.outgoing)

    @abc.abstractmethod
    def forward(self):
        """
        Recompute the activations of the node from the activations of its children.
        """

    @abc.abstractmethod
    def backward(self):
        """
        Propagate the derivatives of the node to its children.
        """

    def initialize_derivative(self):
        """
        Reset the derivatives of the node to zero, matching the shape of the activations.
        """
        self.derivatives = np.zeros_like(self.activations)

    def accum_derivatives(self, error: np.ndarray):
        """
        Accumulate an externally supplied error signal into the derivatives of the node.

        :param error: The error, having the same shape of the activations.
        :raises ValueError: If the error shape is not compatible.
        """
        if self.derivatives is None:
            self.initialize_derivative()
        if error.shape != self.derivatives.shape:
            raise ValueError("Invalid error shape {} for node {} with derivatives of shape {}".format(
                error.shape, self.name, self.derivatives.shape
            ))
        self.derivatives += error

    def normalize_incoming_edges(self):
        """
        Normalize the weights of the incoming edges. Only sum nodes have normalized weights.
        """

    def update_params(self, step: int, batch_size: int):
        """
        Update the node own parameters. Base SPN nodes have no parameters.

        :param step: The training step.
        :param batch_size: The batch size.
        """

    def merge_hyperparams(self, hyper_params: dict):
        """
        Merge some hyperparameters into the node. Base SPN nodes have no hyperparameters.

        :param hyper_params: The hyperparameters.
        """

    def merge_node_data(self, node_data: dict):
        """
        Overlay some persisted node data onto the node.

        :param node_data: The node data.
        :raises ValueError: If a non-leaf node is given a dimension other than 1.
        """
        if 'dimension' in node_data:
            dimension = int(node_data['dimension'])
            if not self.is_leaf and dimension != 1:
                raise ValueError("Node {} of type {} must have dimension 1".format(self.name, self.type.name))
            self.dimension = dimension

    def to_node_data(self) -> dict:
        """
        Get the node data, i.e. the persisted description of the node.

        :return: The node data.
        """
        return {'name': self.name, 'type': self.type.name, 'dimension': self.dimension}

    def children_activations(self) -> np.ndarray:
        """
        Stack the activations of the children, following the order of the incoming edges.

        :return: The stacked activations, having shape (n_children, n_samples, dimension).
        """
        return np.stack([e.source.activations for e in self.incoming], axis=0)

    def __repr__(self) -> str:
        return '{}({})'.format(self.__class__.__name__, self.name)


class InputNode(Node):
    NODE_TYPES = LEAF_TYPES

    def __init__(
        self,
        name: str,
        ntype: NodeType = NodeType.INPUT,
        dimension: int = 1,
        input_start_index: Optional[int] = None
    ):
        """
        Initialize an input node, whose activations are bound to some columns of the batch.
        Hidden nodes are bound to the constant one, query nodes are bound to the target columns.

        :param name: The name of the node.
        :param ntype: The node type, either INPUT, HIDDEN or QUERY.
        :param dimension: The number of columns read by the node.
        :param input_start_index: The index of the first column read by the node.
        :raises ValueError: If an input or query node has a negative input start index.
        """
        super().__init__(name, ntype, dimension)
        if input_start_index is not None and input_start_index < 0:
            raise ValueError("Invalid input index {} for node {}".format(input_start_index, name))
        self.input_start_index = input_start_index

    def set_value(self, batch: np.ndarray):
        """
        Bind the activations to the columns of a batch.

        :param batch: The batch.
        :raises ValueError: If the node has no input index or the batch is too narrow.
        """
        if self.input_start_index is None:
            raise ValueError("Input node {} has no input start index".format(self.name))
        end = self.input_start_index + self.dimension
        if end > batch.shape[1]:
            raise ValueError("Input node {} reads columns [{}, {}) but the batch has {} columns".format(
                self.name, self.input_start_index, end, batch.shape[1]
            ))
        self.activations = np.array(batch[:, self.input_start_index:end], dtype=np.float32)

    def set_constant(self, value: float, n_samples: int):
        """
        Bind the activations to a constant value.

        :param value: The value.
        :param n_samples: The number of samples, i.e. the number of rows of the batch.
        """
        self.activations = np.full((n_samples, self.dimension), value, dtype=np.float32)

    def forward(self):
        pass  # Activations are bound externally

    def backward(self):
        pass  # Leaves have no children

    def merge_node_data(self, node_data: dict):
        super().merge_node_data(node_data)
        if node_data.get('input_start_index') is not None:
            index = int(node_data['input_start_index'])
            if index < 0:
                raise ValueError("Invalid input index {} for node {}".format(index, self.name))
            self.input_start_index = index

    def to_node_data(self) -> dict:
        data = super().to_node_data()
        if self.input_start_index is not None:
            data['input_start_index'] = self.input_start_index
        return data


class SumNode(Node):
    NODE_TYPES = (NodeType.SUM,)

    def __init__(self, name: str, ntype: NodeType = NodeType.SUM, dimension: int = 1):
        super().__init__(name, ntype, dimension)

    @property
    def weights(self) -> np.ndarray:
        """Get the weights of the incoming edges."""
        return np.array([e.weight for e in self.incoming], dtype=np.float32)

    def forward(self):
        weights = self.weights.reshape(-1, 1, 1)
        self.activations = np.sum(weights * self.children_activations(), axis=0).astype(np.float32)

    def backward(self):
        for e in self.incoming:
            e.source.derivatives += e.weight * self.derivatives

    def normalize_incoming_edges(self):
        if not self.incoming:
            return
        weights = np.maximum(self.weights.astype(np.float64), 0.0)
        total = np.sum(weights)
        if total <= 0.0:
            weights = np.full(len(weights), 1.0 / len(weights))
        else:
            weights = weights / total
        for e, w in zip(self.incoming, weights):
            e.weight = float(w)


class ProductNode(Node):
    NODE_TYPES = (NodeType.PRODUCT,)

    def __init__(self, name: str, ntype: NodeType = NodeType.PRODUCT, dimension: int = 1):
        super().__init__(name, ntype, dimension)

    def forward(self):
        self.activations = np.prod(self.children_activations(), axis=0).astype(np.float32)

    def backward(self):
        children_ls = self.children_activations()
        for i, e in enumerate(self.incoming):
            # Product of the siblings activations, computed explicitly to support zero activations
            siblings = np.prod(np.delete(children_ls, i, axis=0), axis=0)
            e.source.derivatives += self.derivatives * siblings


class MaxNode(Node):
    NODE_TYPES = (NodeType.MAX,)

    def __init__(self, name: str, ntype: NodeType = NodeType.MAX, dimension: int = 1):
        """
        Initialize a max node. Ties are broken in favour of the first incoming edge holding the maximum.
        """
        super().__init__(name, ntype, dimension)
        self.argmax: Optional[np.ndarray] = None

    def forward(self):
        children_ls = self.children_activations()
        self.argmax = np.argmax(children_ls, axis=0)
        self.activations = np.max(children_ls, axis=0).astype(np.float32)

    def backward(self):
        for i, e in enumerate(self.incoming):
            e.source.derivatives += np.where(self.argmax == i, self.derivatives, 0.0).astype(np.float32)


def create_node(node_data: dict) -> Node:
    """
    Create a node given its data, i.e. name, type, dimension and input start index.

    :param node_data: The node data.
    :return: The new node.
    :raises ValueError: If the node data is not valid.
    """
    if 'name' not in node_data or 'type' not in node_data:
        raise ValueError("Node data must have both name and type")
    name = str(node_data['name'])
    ntype = NodeType.parse(node_data['type'])
    dimension = int(node_data.get('dimension', 1))
    if ntype not in LEAF_TYPES and dimension != 1:
        raise ValueError("Node {} of type {} must have dimension 1".format(name, ntype.name))
    if ntype in LEAF_TYPES:
        index = node_data.get('input_start_index')
        return InputNode(name, ntype, dimension, None if index is None else int(index))
    if ntype == NodeType.SUM:
        return SumNode(name, dimension=dimension)
    if ntype == NodeType.PRODUCT:
        return ProductNode(name, dimension=dimension)
    return MaxNode(name, dimension=dimension)
