import itertools

import pytest
import numpy as np

from spnet.utils.combinatorics import binomial, combination
from spnet.spn.structure.node import InputNode, SumNode, MaxNode
from spnet.spn.structure.edge import Edge
from spnet.spn.structure.spn import Spn
from spnet.spn.learning.builder import build_spn
from spnet.spn.utils.statistics import compute_statistics


@pytest.fixture
def layered_spn():
    return build_spn({
        'model_type': 'SPN',
        'spn_data': {
            'layers': [
                {'type': 'INPUT', 'name': 'in', 'size': 4, 'input_indices': '0 1 2 3'},
                {'type': 'PRODUCT', 'name': 'prod', 'product_combinations': 2},
                {'type': 'SUM', 'name': 'sum', 'size': 1}
            ]
        }
    }, random_state=42)


def test_binomial():
    assert binomial(4, 2) == 6
    assert binomial(10, 0) == 1
    assert binomial(30, 15) == 155117520
    assert binomial(3, 4) == 0
    assert binomial(3, -1) == 0


def test_combination():
    for n, k in [(4, 1), (4, 2), (5, 3), (6, 6)]:
        combinations = [combination(n, k, i) for i in range(1, binomial(n, k) + 1)]
        assert combinations == [list(c) for c in itertools.combinations(range(n), k)]
    with pytest.raises(ValueError):
        combination(4, 2, 0)
    with pytest.raises(ValueError):
        combination(4, 2, 7)
    with pytest.raises(ValueError):
        combination(4, 5, 1)


def test_compute_statistics(layered_spn):
    stats = compute_statistics(layered_spn)
    assert stats['n_nodes'] == 15
    assert stats['n_sum'] == 1
    assert stats['n_prod'] == 10
    assert stats['n_max'] == 0
    assert stats['n_leaves'] == 4
    assert stats['n_edges'] == 26
    assert stats['n_params'] == 10
    assert stats['depth'] == 2


def test_compute_statistics_max():
    a, b = InputNode('a', input_start_index=0), InputNode('b', input_start_index=1)
    m, s = MaxNode('m'), SumNode('s')
    spn = Spn([a, b, m, s], [Edge(a, m), Edge(b, m), Edge(m, s), Edge(a, s)])
    assert spn.validate()
    stats = compute_statistics(spn)
    assert stats['n_max'] == 1 and stats['n_sum'] == 1
    assert stats['n_params'] == 2
    assert stats['depth'] == 2
    assert np.isclose(stats['n_edges'], 4)
