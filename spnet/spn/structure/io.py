# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import os
import copy
import json
from typing import Union, IO

import networkx as nx
from networkx.algorithms.dag import is_directed_acyclic_graph
from networkx.readwrite.json_graph import node_link_data, node_link_graph

from spnet.spn.structure.spn import Spn

#: The model data keys that describe how to build the structure, not the structure itself
STRUCTURAL_KEYS = ('spn_data', 'nodes', 'edges')


def load_model_data(f: Union[IO, os.PathLike, str]) -> dict:
    """
    Load a model description by using the JSON format.

    :param f: A file-like object or a filepath of the input JSON file.
    :return: The model description.
    :raises ValueError: If the JSON object is not a model description.
    """
    if isinstance(f, (os.PathLike, str)):
        with open(f, 'r', encoding='utf-8') as file:
            model_data = json.load(file)
    else:
        model_data = json.load(f)
    if not isinstance(model_data, dict):
        raise ValueError("The model description must be a JSON object")
    return model_data


def save_model_data(model_data: dict, f: Union[IO, os.PathLike, str]):
    """
    Save a model description by using the JSON format.

    :param model_data: The model description.
    :param f: A file-like object or a filepath of the output JSON file.
    """
    json_obj = json.dumps(model_data, indent=2)
    if isinstance(f, (os.PathLike, str)):
        with open(f, 'w', encoding='utf-8') as file:
            file.write(json_obj)
    else:
        f.write(json_obj)


def to_model_data(spn: Spn) -> dict:
    """
    Take a full snapshot of a SPN, i.e. a model description listing every node and every
    edge with its weight, together with the hyperparameters and the metrics of the model.

    :param spn: The SPN.
    :return: The model description.
    """
    model_data = {k: copy.deepcopy(v) for k, v in spn.model_data.items() if k not in STRUCTURAL_KEYS}
    model_data['name'] = spn.name
    model_data['model_type'] = 'SPN'
    model_data['nodes'] = [n.to_node_data() for n in spn.nodes]
    model_data['edges'] = [e.to_edge_data() for n in spn.nodes for e in n.incoming]
    return model_data


def write_checkpoint(
    spn: Spn,
    directory: Union[os.PathLike, str],
    operation_name: str,
    tag: Union[int, str]
) -> str:
    """
    Write a snapshot of a SPN to the file '<model name>_<operation name>_<tag>.json'.

    :param spn: The SPN.
    :param directory: The checkpoint directory.
    :param operation_name: The name of the training operation.
    :param tag: The tag of the checkpoint, i.e. a step number, 'BEST' or 'LAST'.
    :return: The checkpoint filepath.
    """
    filepath = os.path.join(directory, '{}_{}_{}.json'.format(spn.name, operation_name, tag))
    save_model_data(to_model_data(spn), filepath)
    return filepath


def spn_to_digraph(spn: Spn) -> nx.DiGraph:
    """
    Convert a SPN to a NetworkX directed graph, having edges oriented from children to parents.

    :param spn: The SPN.
    :return: The corresponding NetworkX directed graph.
    """
    graph = nx.DiGraph(name=spn.name, hyper_params=copy.deepcopy(spn.hyper_params))

    # Add nodes to the graph
    for node in spn.nodes:
        attr = node.to_node_data()
        del attr['name']
        graph.add_node(node.name, **attr)

    # Add edges to the graph, keeping the position of each edge among its siblings
    for node in spn.nodes:
        for i, e in enumerate(node.incoming):
            graph.add_edge(e.source.name, node.name, idx=i, weight=round(e.weight, 8))

    return graph


def digraph_to_model_data(graph: nx.DiGraph) -> dict:
    """
    Convert a NetworkX directed graph to a model description.

    :param graph: The NetworkX directed graph.
    :return: The corresponding model description.
    :raises ValueError: If the graph is not a directed acyclic graph (DAG).
    """
    if not is_directed_acyclic_graph(graph):
        raise ValueError("The graph is not a directed acyclic graph (DAG)")

    nodes = list()
    for name in graph.nodes:
        attr = dict(graph.nodes[name])
        attr['name'] = name
        nodes.append(attr)

    edges = list()
    for name in graph.nodes:
        in_edges = sorted(graph.in_edges(name, data=True), key=lambda x: x[2].get('idx', 0))
        for child, parent, attr in in_edges:
            edges.append({'node1': child, 'node2': parent, 'directed': True, 'weight': attr.get('weight')})

    return {
        'name': graph.graph.get('name', 'spn'),
        'model_type': 'SPN',
        'hyper_params': graph.graph.get('hyper_params', dict()),
        'nodes': nodes,
        'edges': edges
    }


def save_spn_json(spn: Spn, f: Union[IO, os.PathLike, str]):
    """
    Save a SPN to file by using the NetworkX node-link JSON format.

    :param spn: The SPN.
    :param f: A file-like object or a filepath of the output JSON file.
    """
    json_obj = json.dumps(node_link_data(spn_to_digraph(spn), edges='edges'))
    if isinstance(f, (os.PathLike, str)):
        with open(f, 'w', encoding='utf-8') as file:
            file.write(json_obj)
    else:
        f.write(json_obj)


def load_spn_json(f: Union[IO, os.PathLike, str]) -> Spn:
    """
    Load a SPN from file by using the NetworkX node-link JSON format.

    :param f: A file-like object or a filepath of the input JSON file.
    :return: The loaded and validated SPN.
    """
    from spnet.spn.learning.builder import build_spn

    if isinstance(f, (os.PathLike, str)):
        with open(f, 'r', encoding='utf-8') as file:
            json_obj = json.load(file)
    else:
        json_obj = json.load(f)
    graph = node_link_graph(json_obj, directed=True, multigraph=False, edges='edges')
    return build_spn(digraph_to_model_data(graph))
