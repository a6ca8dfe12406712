# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import copy
import warnings
from typing import Optional, Union, List, Tuple

import numpy as np

from spnet.utils.data import matrix_from_debug_string
from spnet.utils.random import RandomState, check_random_state
from spnet.utils.combinatorics import binomial, combination
from spnet.spn.structure.node import Node, NodeType, LEAF_TYPES, create_node
from spnet.spn.structure.edge import Edge
from spnet.spn.structure.spn import Spn


class SpnWarning(UserWarning):
    """Warning about a recoverable inconsistency in a SPN description or training run."""


#: The maximum number of children combined by a product node of a layer
MAX_PRODUCT_COMBINATIONS = 3


def build_spn(
    model_data: dict,
    random_state: Optional[RandomState] = None,
    validate: bool = True
) -> Spn:
    """
    Build a SPN from a model description.
    The structure is built either from the explicit form (node list, adjacency matrix and input indices)
    or from the layered form in 'spn_data'. Then, the persisted 'nodes' and 'edges' are merged by name.
    If no structural form is present, 'nodes' and 'edges' define the structure directly.

    :param model_data: The model description.
    :param random_state: The random state used to initialize the weights of new edges.
    :param validate: Whether to validate the SPN, computing its propagation order.
    :return: The SPN.
    :raises ValueError: If the model description is not valid.
    """
    model_type = model_data.get('model_type', 'SPN')
    if model_type != 'SPN':
        raise ValueError("The model description does not represent a SPN, got model type {}".format(model_type))
    random_state = check_random_state(random_state)

    nodes, edges = list(), list()
    if model_data.get('spn_data'):
        nodes, edges = load_spn_init(model_data['spn_data'], random_state)
    if model_data.get('nodes') or model_data.get('edges'):
        load_spn_structure(model_data, nodes, edges, random_state)
    if not nodes or not edges:
        raise ValueError("The model description yields no nodes or no edges")

    # Merge the model-level hyperparameters
    hyper_params = model_data.get('hyper_params', dict())
    for node in nodes:
        node.merge_hyperparams(hyper_params)
    for edge in edges:
        edge.merge_hyperparams(hyper_params)

    # Per-edge hyperparameters take precedence over the model-level ones
    edges_data = {(e.get('node1'), e.get('node2')): e for e in model_data.get('edges', [])}
    for edge in edges:
        edge_data = edges_data.get((edge.source.name, edge.destination.name))
        if edge_data is not None:
            edge.merge_hyperparams(edge_data.get('hyper_params'))

    spn = Spn(nodes, edges, name=model_data.get('name', 'spn'), model_data=copy.deepcopy(model_data))
    if validate:
        reason = spn.find_invalidity()
        if reason is not None:
            raise ValueError("Invalid SPN structure: {}".format(reason))
    return spn


def load_spn_init(spn_data: dict, random_state: np.random.RandomState) -> Tuple[List[Node], List[Edge]]:
    """
    Build the nodes and the edges given the structural part of a model description.
    The layered form takes priority over the explicit form.

    :param spn_data: The structural description.
    :param random_state: The random state used to initialize the weights.
    :return: The nodes and the edges. Both are empty if there is no structural form.
    :raises ValueError: If the structural description is not valid.
    """
    explicit_init = all(spn_data.get(k) for k in ['adjacency_matrix', 'input_indices', 'node_list'])
    layered_init = bool(spn_data.get('layers'))
    if layered_init:
        if explicit_init:
            warnings.warn("Multiple ways to initialize the SPN, only the layers are used", SpnWarning)
        return load_spn_layer_init(spn_data['layers'], random_state)
    if explicit_init:
        return load_spn_list_init(
            spn_data['node_list'], spn_data['adjacency_matrix'], spn_data['input_indices'], random_state
        )
    return list(), list()


def _as_matrix(value: Union[str, list, np.ndarray]) -> np.ndarray:
    # Matrices can be given either in debug text form or as nested lists
    if isinstance(value, str):
        return matrix_from_debug_string(value)
    m = np.asarray(value, dtype=np.float32)
    return m.reshape(1, -1) if m.ndim == 1 else m


def load_spn_list_init(
    node_list: Union[str, list, np.ndarray],
    adjacency_matrix: Union[str, list, np.ndarray],
    input_indices: Union[str, list, np.ndarray],
    random_state: np.random.RandomState
) -> Tuple[List[Node], List[Edge]]:
    """
    Build the nodes and the edges of a SPN given its explicit form.
    Nodes are named by their index, and one directed edge is added for each non-zero entry
    of the adjacency matrix, i.e. A[i, j] != 0 adds the edge from node i to node j.

    :param node_list: The node types codes, a (1 x N) matrix.
    :param adjacency_matrix: The adjacency matrix, a (N x N) matrix.
    :param input_indices: The input start indices, a (1 x N) matrix.
    :param random_state: The random state used to initialize the weights.
    :return: The nodes and the edges.
    :raises ValueError: If the explicit form is not valid.
    """
    node_list, adj_matrix = _as_matrix(node_list), _as_matrix(adjacency_matrix)
    input_indices = _as_matrix(input_indices)
    n_nodes = node_list.shape[1]
    if node_list.shape[0] != 1 or n_nodes < 1 or adj_matrix.shape != (n_nodes, n_nodes):
        raise ValueError("Invalid explicit SPN form: node list of shape {} and adjacency matrix of shape {}".format(
            node_list.shape, adj_matrix.shape
        ))
    if input_indices.shape != (1, n_nodes):
        raise ValueError("Invalid explicit SPN form: input indices must have shape (1, {}), got {}".format(
            n_nodes, input_indices.shape
        ))

    nodes = list()
    for i in range(n_nodes):
        try:
            ntype = NodeType.parse(node_list[0, i])
        except ValueError:
            raise ValueError("Invalid node type {} at location {} in node list".format(node_list[0, i], i)) from None
        node_data = {'name': str(i), 'type': ntype, 'dimension': 1}
        if ntype in (NodeType.INPUT, NodeType.QUERY):
            input_idx = int(input_indices[0, i])
            if input_idx < 0:
                raise ValueError("Invalid input index {} at location {} in input indices".format(input_idx, i))
            node_data['input_start_index'] = input_idx
        nodes.append(create_node(node_data))

    if np.any(np.diag(adj_matrix) != 0):
        raise ValueError("The adjacency matrix of a SPN must have a zero diagonal")

    edges = list()
    for i in range(n_nodes):
        for j in range(i):
            if adj_matrix[i, j] != 0 and adj_matrix[j, i] != 0:
                raise ValueError("The adjacency matrix of a SPN must be directed, check location ({}, {})".format(i, j))
            if adj_matrix[i, j] != 0:
                edges.append(Edge(nodes[i], nodes[j], weight=_init_weight(random_state)))
            elif adj_matrix[j, i] != 0:
                edges.append(Edge(nodes[j], nodes[i], weight=_init_weight(random_state)))
    return nodes, edges


def load_spn_layer_init(layers: List[dict], random_state: np.random.RandomState) -> Tuple[List[Node], List[Edge]]:
    """
    Build the nodes and the edges of a SPN layer by layer. The first layer must be an input layer,
    and each layer is connected to the one immediately below it.

    :param layers: The layers descriptions, from the bottom to the top.
    :param random_state: The random state used to initialize the weights.
    :return: The nodes and the edges.
    :raises ValueError: If a layer description is not valid.
    """
    first_type = NodeType.parse(layers[0].get('type', NodeType.INPUT))
    if first_type != NodeType.INPUT:
        raise ValueError("The first layer must be an input layer, got {}".format(first_type.name))

    nodes, edges, last_layer = list(), list(), list()
    for i, layer in enumerate(layers):
        new_nodes, new_edges = create_layer(layer, last_layer, random_state, default_name='layer{}'.format(i))
        nodes.extend(new_nodes)
        edges.extend(new_edges)
        last_layer = new_nodes
    return nodes, edges


def create_layer(
    layer: dict,
    lower_layer: List[Node],
    random_state: np.random.RandomState,
    default_name: str = 'layer'
) -> Tuple[List[Node], List[Edge]]:
    """
    Create the nodes and the edges of a layer, given the layer below it.

    :param layer: The layer description.
    :param lower_layer: The nodes of the layer below.
    :param random_state: The random state used to initialize the weights.
    :param default_name: The name of the layer, if not specified by the description.
    :return: The new nodes and edges.
    :raises ValueError: If the layer description is not valid.
    """
    if 'type' not in layer:
        raise ValueError("Layer {} has no type".format(layer.get('name', default_name)))
    ltype = NodeType.parse(layer['type'])
    if 'name' not in layer:
        layer = dict(layer, name=default_name)
    if ltype == NodeType.INPUT:
        return create_input_layer(layer)
    if ltype in (NodeType.SUM, NodeType.MAX):
        return create_sum_max_layer(layer, lower_layer, random_state)
    if ltype == NodeType.PRODUCT:
        return create_product_layer(layer, lower_layer, random_state)
    raise ValueError("Layer type {} not implemented, layer name = {}".format(ltype.name, layer['name']))


def create_input_layer(layer: dict) -> Tuple[List[Node], List[Edge]]:
    """
    Create an input layer. It requires the size and the (1 x size) input indices,
    and optionally a (1 x size) node list mixing input, hidden and query nodes.

    :param layer: The layer description.
    :return: The new nodes and no edges.
    :raises ValueError: If the layer description is not valid.
    """
    name = layer['name']
    if layer.get('size') is None or layer.get('input_indices') is None:
        raise ValueError("Input layer should have size and input indices specified, layer name = {}".format(name))
    size = int(layer['size'])
    if size <= 0:
        raise ValueError("The size of layer {} must be positive".format(name))
    input_indices = _as_matrix(layer['input_indices'])
    if input_indices.shape != (1, size):
        raise ValueError("Input indices must have shape (1, {}), got {}. Layer name = {}".format(
            size, input_indices.shape, name
        ))
    node_list = None
    if layer.get('node_list') is not None:
        node_list = _as_matrix(layer['node_list'])
        if node_list.shape != (1, size):
            raise ValueError("Node list must have shape (1, {}), got {}. Layer name = {}".format(
                size, node_list.shape, name
            ))

    nodes = list()
    for i in range(size):
        ntype = NodeType.INPUT if node_list is None else NodeType.parse(node_list[0, i])
        if ntype not in LEAF_TYPES:
            raise ValueError("Invalid node type {} in input layer {}".format(ntype.name, name))
        input_idx = int(input_indices[0, i])
        if input_idx < 0:
            raise ValueError("Invalid input index {} at location {} in input indices. Layer name = {}".format(
                input_idx, i, name
            ))
        nodes.append(create_node({
            'name': '{}_{}'.format(name, i), 'type': ntype, 'dimension': 1, 'input_start_index': input_idx
        }))
    return nodes, list()


def create_sum_max_layer(
    layer: dict,
    lower_layer: List[Node],
    random_state: np.random.RandomState
) -> Tuple[List[Node], List[Edge]]:
    """
    Create a sum or max layer, whose nodes are fully connected to the layer below.

    :param layer: The layer description.
    :param lower_layer: The nodes of the layer below.
    :param random_state: The random state used to initialize the weights.
    :return: The new nodes and edges.
    :raises ValueError: If the layer description is not valid.
    """
    name = layer['name']
    if layer.get('size') is None:
        raise ValueError("Sum/max layer must have size specified, layer name = {}".format(name))
    size = int(layer['size'])
    if size <= 0:
        raise ValueError("The size of layer {} must be positive".format(name))
    ltype = NodeType.parse(layer['type'])

    nodes, edges = list(), list()
    for i in range(size):
        node = create_node({'name': '{}_{}'.format(name, i), 'type': ltype})
        nodes.append(node)
        for child in lower_layer:
            edges.append(Edge(child, node, weight=_init_weight(random_state)))
    return nodes, edges


def create_product_layer(
    layer: dict,
    lower_layer: List[Node],
    random_state: np.random.RandomState
) -> Tuple[List[Node], List[Edge]]:
    """
    Create a product layer. For each combination order p from 1 to 'product_combinations',
    one product node is created for each p-combination of the nodes of the layer below,
    following the lexicographic ordering of the combinations.

    :param layer: The layer description.
    :param lower_layer: The nodes of the layer below.
    :param random_state: The random state used to initialize the weights.
    :return: The new nodes and edges.
    :raises ValueError: If the layer description is not valid.
    """
    name = layer['name']
    n_combinations = layer.get('product_combinations')
    if n_combinations is None or not 1 <= int(n_combinations) <= MAX_PRODUCT_COMBINATIONS:
        raise ValueError("Product layer must have product combinations in [1, {}], layer name = {}".format(
            MAX_PRODUCT_COMBINATIONS, name
        ))
    n_combinations = int(n_combinations)
    if n_combinations > len(lower_layer):
        raise ValueError("Product layer {} combines {} nodes, but the layer below has only {}".format(
            name, n_combinations, len(lower_layer)
        ))

    nodes, edges = list(), list()
    for p in range(1, n_combinations + 1):
        for j in range(1, binomial(len(lower_layer), p) + 1):
            node = create_node({'name': '{}_{}'.format(name, len(nodes)), 'type': NodeType.PRODUCT})
            nodes.append(node)
            for k in combination(len(lower_layer), p, j):
                edges.append(Edge(lower_layer[k], node, weight=_init_weight(random_state)))
    return nodes, edges


def load_spn_structure(
    model_data: dict,
    nodes: List[Node],
    edges: List[Edge],
    random_state: np.random.RandomState
):
    """
    Merge the persisted nodes and edges of a model description into some nodes and edges, inplace.
    If there are no nodes and edges yet, the persisted ones define the structure.
    Otherwise, nodes are matched by name and edges between existing nodes are overlaid.
    Unmatched entries are ignored with a warning.

    :param model_data: The model description.
    :param nodes: The nodes.
    :param edges: The edges.
    :param random_state: The random state used to initialize the weights of new edges.
    :raises ValueError: If an edge is undirected.
    """
    new_model = not nodes and not edges
    by_name = {n.name: n for n in nodes}

    for node_data in model_data.get('nodes', []):
        name = node_data.get('name')
        if new_model:
            try:
                node = create_node(node_data)
            except ValueError as e:
                warnings.warn("Invalid node data with node name = {} ({}), it is ignored".format(name, e), SpnWarning)
                continue
            if node.name in by_name:
                warnings.warn("Duplicate node name {}, it is ignored".format(node.name), SpnWarning)
                continue
            nodes.append(node)
            by_name[node.name] = node
        elif name in by_name:
            by_name[name].merge_node_data(node_data)
        else:
            warnings.warn("Ignore initialization of unknown node {}".format(name), SpnWarning)

    existing = {(e.source.name, e.destination.name): e for e in edges}
    for edge_data in model_data.get('edges', []):
        node1, node2 = edge_data.get('node1'), edge_data.get('node2')
        if node1 not in by_name or node2 not in by_name:
            missing = node1 if node1 not in by_name else node2
            warnings.warn("Couldn't find node {}, so the edge {} - {} is ignored".format(missing, node1, node2),
                          SpnWarning)
            continue
        if not edge_data.get('directed', True):
            raise ValueError("The edge {} - {} must be directed".format(node1, node2))
        edge = existing.get((node1, node2))
        if edge is None:
            edge = Edge(by_name[node1], by_name[node2], weight=_init_weight(random_state))
            edges.append(edge)
            existing[(node1, node2)] = edge
        edge.merge_edge_data(edge_data)


def _init_weight(random_state: np.random.RandomState) -> float:
    # Uniform in (0, 1]
    return 1.0 - random_state.random_sample()
