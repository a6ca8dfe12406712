import pytest
import numpy as np

from spnet.context import ContextState, is_check_dtype_enabled, is_check_spn_enabled
from spnet.utils.data import check_data_dtype
from spnet.spn.structure.node import InputNode, SumNode
from spnet.spn.structure.edge import Edge
from spnet.spn.structure.spn import Spn
from spnet.spn.utils.validity import check_spn


@pytest.fixture
def two_roots_spn():
    a, b = InputNode('a', input_start_index=0), InputNode('b', input_start_index=1)
    s1, s2 = SumNode('s1'), SumNode('s2')
    edges = [Edge(a, s1), Edge(b, s1), Edge(a, s2), Edge(b, s2)]
    return Spn([a, b, s1, s2], edges)


def test_context():
    with pytest.raises(ValueError):
        ContextState(unknown_flag=False)


def test_context_check_dtype():
    with ContextState(check_dtype=False):
        assert not is_check_dtype_enabled()
        assert check_data_dtype(np.zeros(1, dtype=np.uint8), np.float32).dtype == np.uint8
        assert check_data_dtype(np.zeros(1, dtype=np.float64)).dtype == np.float64
    assert is_check_dtype_enabled()
    assert check_data_dtype(np.zeros(1, dtype=np.float64)).dtype == np.float32


def test_context_check_spn(two_roots_spn):
    with pytest.raises(ValueError):
        check_spn(two_roots_spn)
    with ContextState(check_spn=False):
        assert not is_check_spn_enabled()
        check_spn(two_roots_spn)
    assert is_check_spn_enabled()


def test_context_decorator(two_roots_spn):
    @ContextState(check_spn=False)
    def unchecked():
        check_spn(two_roots_spn)
        return is_check_spn_enabled()

    assert unchecked() is False
    assert is_check_spn_enabled()
