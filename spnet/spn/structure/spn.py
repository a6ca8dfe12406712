# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

from collections import deque
from typing import Optional, List, Dict

import numpy as np

from spnet.spn.structure.node import Node, InputNode, NodeType
from spnet.spn.structure.edge import Edge


class Spn:
    def __init__(self, nodes: List[Node], edges: List[Edge], name: str = 'spn', model_data: Optional[dict] = None):
        """
        Initialize a SPN given its nodes and edges. The SPN owns both of them.
        Call validate() to compute the propagation order before running any pass.

        :param nodes: The nodes, in construction order.
        :param edges: The edges.
        :param name: The name of the model.
        :param model_data: The model description the SPN was built from, including hyperparameters and metrics.
        """
        self.name = name
        self.nodes = nodes
        self.edges = edges
        self.model_data = dict() if model_data is None else model_data
        self.node_list: List[Node] = list()
        self.root: Optional[Node] = None
        self.input_nodes = [n for n in nodes if n.type == NodeType.INPUT]
        self.hidden_nodes = [n for n in nodes if n.type == NodeType.HIDDEN]
        self.query_nodes = [n for n in nodes if n.type == NodeType.QUERY]

    @property
    def hyper_params(self) -> dict:
        return self.model_data.setdefault('hyper_params', dict())

    def get_node(self, name: str) -> Optional[Node]:
        """
        Find a node by name.

        :param name: The name of the node.
        :return: The node, or None if not found.
        """
        return next((n for n in self.nodes if n.name == name), None)

    def validate(self) -> bool:
        """
        Compute the topological order used for propagation and check the structure.
        A valid SPN is acyclic and has exactly one node without outgoing edges (the root),
        which is the last one in topological order. Moreover, non-leaf nodes must have
        children, input and query nodes must be bound to an input index,
        the children of a node must share the same dimension and the root must output a single column.

        :return: True if the SPN is valid, False otherwise.
        """
        return self.find_invalidity() is None

    def find_invalidity(self) -> Optional[str]:
        """
        Same as validate(), but report the reason of the failure.

        :return: None if the SPN is valid, a reason otherwise.
        """
        self.node_list, self.root = list(), None
        if not self.nodes:
            return "The SPN has no nodes"

        for node in self.nodes:
            if not node.is_leaf and node.num_incoming == 0:
                return "Node {} of type {} has no incoming edges".format(node.name, node.type.name)
            if node.type in (NodeType.INPUT, NodeType.QUERY) and node.input_start_index is None:
                return "Node {} of type {} has no input start index".format(node.name, node.type.name)
            if node.is_leaf and node.num_incoming > 0:
                return "Leaf node {} has incoming edges".format(node.name)

        root = find_root(self.nodes)
        if root is None:
            return "The SPN must have exactly one node without outgoing edges"

        ordering = topological_order(self.nodes)
        if ordering is None:
            return "SPN structure is not a directed acyclic graph (DAG)"
        if ordering[-1] is not root:
            return "The root {} is not the last node in topological order".format(root.name)

        # The children of an internal node share its output width
        widths: Dict[Node, int] = dict()
        for node in ordering:
            if node.is_leaf:
                widths[node] = node.dimension
                continue
            source_widths = {widths[e.source] for e in node.incoming}
            if len(source_widths) != 1:
                return "Node {} of type {} has children of different dimensions".format(node.name, node.type.name)
            widths[node] = source_widths.pop()
        if widths[root] != 1:
            return "The root {} must have output dimension 1, got {}".format(root.name, widths[root])

        self.node_list, self.root = ordering, root
        return None

    def bind_batch(self, batch: np.ndarray):
        """
        Bind a batch to the input, hidden and query nodes.

        :param batch: The batch.
        """
        n_samples = batch.shape[0]
        for node in self.input_nodes:
            node.set_value(batch)
        for node in self.hidden_nodes:
            node.set_constant(1.0, n_samples)
        for node in self.query_nodes:
            node.set_value(batch)

    def forward(self, batch: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Run the forward pass, visiting the nodes in topological order.

        :param batch: The batch. If None, the currently bound activations are reused.
        :return: The activations of the root.
        :raises ValueError: If the SPN has not been validated.
        """
        if self.root is None:
            raise ValueError("No propagation order. Please run validate() first")
        if batch is not None:
            self.bind_batch(batch)
        for node in self.node_list:
            node.forward()
        return self.root.activations

    def backward(self):
        """
        Run the backward pass, visiting the nodes in reverse topological order.
        The derivatives must have been initialized and the root derivatives seeded.

        :raises ValueError: If the SPN has not been validated.
        """
        if self.root is None:
            raise ValueError("No propagation order. Please run validate() first")
        for node in reversed(self.node_list):
            node.backward()

    def initialize_derivatives(self):
        """
        Reset the derivatives of every node to zero.
        """
        for node in self.node_list:
            node.initialize_derivative()

    def normalize_weights(self):
        """
        Normalize the incoming edges weights of every node.
        """
        for node in self.node_list:
            node.normalize_incoming_edges()

    def update_params(self, step: int, batch_size: int):
        """
        Update the parameters of every edge, and then of every node.

        :param step: The training step.
        :param batch_size: The batch size.
        """
        for edge in self.edges:
            edge.update_params(step, batch_size)
        for node in self.nodes:
            node.update_params(step, batch_size)

    def prune(self):
        """
        Prune the SPN after training. Nothing is pruned by default.
        """

    def __repr__(self) -> str:
        return 'Spn({}, nodes={}, edges={})'.format(self.name, len(self.nodes), len(self.edges))


def topological_order(nodes: List[Node]) -> Optional[List[Node]]:
    """
    Compute the bottom-up topological ordering of some nodes, using the Kahn's Algorithm.
    Children come before their parents, and ties are broken by the given order of the nodes.

    :param nodes: The nodes.
    :return: A list of nodes that form a topological ordering.
             If the graph is not acyclic, it returns None.
    """
    position: Dict[Node, int] = {n: i for i, n in enumerate(nodes)}
    num_incomings = {n: n.num_incoming for n in nodes}

    # Visit the ready nodes by construction position
    ordering = list()
    ready = deque(n for n in nodes if num_incomings[n] == 0)
    while ready:
        node = ready.popleft()
        ordering.append(node)
        unlocked = list()
        for e in node.outgoing:
            num_incomings[e.destination] -= 1
            if num_incomings[e.destination] == 0:
                unlocked.append(e.destination)
        ready.extend(sorted(unlocked, key=position.__getitem__))

    # Check if a cycle has been found
    if len(ordering) != len(nodes):
        return None
    return ordering


def find_root(nodes: List[Node]) -> Optional[Node]:
    """
    Find the root of a graph, i.e. the only node without outgoing edges.

    :param nodes: The nodes.
    :return: The root node, or None if there is none or more than one.
    """
    roots = [n for n in nodes if n.num_outgoing == 0]
    if len(roots) != 1:
        return None
    return roots[0]
