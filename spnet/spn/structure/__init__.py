from .node import NodeType, Node, InputNode, SumNode, ProductNode, MaxNode, create_node
from .edge import EdgeHyperparams, Edge
from .spn import Spn, topological_order, find_root
from .io import load_model_data, save_model_data, to_model_data, write_checkpoint
from .io import spn_to_digraph, digraph_to_model_data, save_spn_json, load_spn_json
