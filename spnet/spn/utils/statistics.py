# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import networkx as nx

from spnet.spn.structure.node import NodeType, LEAF_TYPES
from spnet.spn.structure.spn import Spn
from spnet.spn.structure.io import spn_to_digraph


def compute_statistics(spn: Spn) -> dict:
    """
    Compute some statistics of a SPN.
    The computed statistics are the following:

    - n_nodes, the number of nodes
    - n_sum, the number of sum nodes
    - n_prod, the number of product nodes
    - n_max, the number of max nodes
    - n_leaves, the number of input, hidden and query nodes
    - n_edges, the number of edges
    - n_params, the number of trainable parameters
    - depth, the depth of the network

    :param spn: The SPN.
    :return: A dictionary containing the statistics.
    """
    stats = {
        'n_nodes': len(spn.nodes),
        'n_sum': sum(1 for n in spn.nodes if n.type == NodeType.SUM),
        'n_prod': sum(1 for n in spn.nodes if n.type == NodeType.PRODUCT),
        'n_max': sum(1 for n in spn.nodes if n.type == NodeType.MAX),
        'n_leaves': sum(1 for n in spn.nodes if n.type in LEAF_TYPES),
        'n_edges': len(spn.edges),
        'n_params': compute_parameters_count(spn),
        'depth': compute_depth(spn)
    }
    return stats


def compute_parameters_count(spn: Spn) -> int:
    """
    Get the number of trainable parameters of a SPN, i.e. the weights of the edges entering sum nodes.

    :param spn: The SPN.
    :return: The number of parameters.
    """
    return sum(1 for e in spn.edges if e.is_trainable)


def compute_depth(spn: Spn) -> int:
    """
    Get the depth of a SPN, i.e. the number of edges of the longest path from a leaf to the root.

    :param spn: The SPN.
    :return: The depth of the network.
    :raises ValueError: If the SPN is not acyclic.
    """
    graph = spn_to_digraph(spn)
    if not nx.is_directed_acyclic_graph(graph):
        raise ValueError("SPN structure is not a directed acyclic graph (DAG)")
    return nx.dag_longest_path_length(graph)
