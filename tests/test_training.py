import os

import pytest
import tempfile
import numpy as np

from spnet.utils.data import HUGE_VALUE, fill_slice
from spnet.utils.metrics import Metrics, MetricType, last_metric_average
from spnet.data.dataset import DataHandler, DatasetKind
from spnet.spn.structure.node import InputNode, SumNode
from spnet.spn.structure.edge import Edge
from spnet.spn.structure.spn import Spn
from spnet.spn.structure.io import load_model_data
from spnet.spn.learning.builder import build_spn
from spnet.spn.learning.operation import StopCondition, Operation
from spnet.spn.learning.selection import ModelSelection
from spnet.spn.learning.training import train, train_one_batch, evaluate
from spnet.spn.algorithms.inference import likelihood, nll


@pytest.fixture
def model_data():
    # Columns: x, y, not y, with y and not y being the query variables
    return {
        'name': 'toy',
        'model_type': 'SPN',
        'hyper_params': {'learning_rate': 0.1},
        'spn_data': {
            'node_list': '1 6: 0 2 2 4 4 3',
            'input_indices': '1 6: 0 1 2 0 0 0',
            'adjacency_matrix': '6 6: 0 0 0 1 1 0; 0 0 0 1 0 0; 0 0 0 0 1 0; 0 0 0 0 0 1; 0 0 0 0 0 1; 0 0 0 0 0 0'
        }
    }


@pytest.fixture
def spn(model_data):
    return build_spn(model_data, random_state=42)


@pytest.fixture
def data():
    # Each block of ten rows has eight positive query values
    y = np.tile([1, 1, 1, 1, 0, 1, 1, 1, 1, 0], 10).astype(np.float32)
    return np.stack([np.ones(100, dtype=np.float32), y, 1.0 - y], axis=1)


def conditional_likelihood(spn, x):
    marginal_x = fill_slice(x.copy(), 1.0, 0, len(x), 1, 2)
    return likelihood(spn, x) / likelihood(spn, marginal_x)


def test_stop_condition():
    assert StopCondition(steps=7).resolve(3) == 7
    assert StopCondition(all_processed=True).resolve(3) == 3
    with pytest.raises(ValueError):
        StopCondition(steps=-1)


def test_operation():
    op = Operation(batch_size=10, stop_condition={'steps': 5}, eval_after=2)
    assert op.stop_condition.resolve(100) == 5
    assert Operation().stop_condition.all_processed
    loaded_op = Operation.from_dict(op.to_dict())
    assert loaded_op.to_dict() == op.to_dict()
    for kwargs in [{'batch_size': 0}, {'checkpoint_after': 0}, {'eval_after': -1}]:
        with pytest.raises(ValueError):
            Operation(**kwargs)
    with pytest.raises(ValueError):
        Operation.from_dict({'learning_rate': 0.1})


def test_model_selection():
    saved = list()
    selection = ModelSelection(lambda step: saved.append(step))
    assert selection.best_score == HUGE_VALUE and selection.best_step is None
    improvements = [selection(score, step) for step, score in enumerate([3.0, 2.0, 2.0, 2.5, 1.0])]
    assert improvements == [True, True, False, False, True]
    assert saved == [0, 1, 4]
    assert selection.best_score == 1.0 and selection.best_step == 4
    assert '{}'.format(selection) == 'Best NLL: 1.0000 at Step: 4'

    disabled = ModelSelection(lambda step: saved.append(step), criterion='none')
    assert not disabled.enabled
    assert not disabled(0.5, 10)
    assert saved == [0, 1, 4]
    with pytest.raises(ValueError):
        ModelSelection(lambda step: None, criterion='accuracy')


def test_edge_update_params():
    a, b = InputNode('a', input_start_index=0), InputNode('b', input_start_index=1)
    s = SumNode('s')
    e1, e2 = Edge(a, s, weight=0.4), Edge(b, s, weight=0.6)
    spn = Spn([a, b, s], [e1, e2])
    assert spn.validate()
    e1.merge_hyperparams({'learning_rate': 0.2, 'momentum': 0.5, 'weight_decay': 0.01, 'learning_rate_decay': 0.1})
    e1.velocity = 0.05

    x = np.array([[1.0, 0.0], [0.5, 1.0]], dtype=np.float32)
    spn.forward(x)
    spn.initialize_derivatives()
    spn.root.accum_derivatives(np.array([[2.0], [-1.0]], dtype=np.float32))
    spn.backward()
    grad = 2.0 * 1.0 - 1.0 * 0.5
    assert np.isclose(e1.gradient(), grad)

    step, batch_size = 3, 2
    lr = 0.2 / (1.0 + 0.1 * step)
    velocity = 0.5 * 0.05 + lr * (grad / batch_size - 0.01 * 0.4)
    spn.update_params(step, batch_size)
    assert np.isclose(e1.velocity, velocity)
    assert np.isclose(e1.weight, 0.4 + velocity)

    # The weights are clipped to the minimum weight
    e2.merge_hyperparams({'learning_rate': 100.0, 'min_weight': 1e-3})
    spn.update_params(0, batch_size)
    assert e2.weight == 1e-3


def test_edge_hyperparams_invalid():
    a, s = InputNode('a', input_start_index=0), SumNode('s')
    edge = Edge(a, s)
    for hyper_params in [{'learning_rate': 0.0}, {'momentum': 1.0}, {'weight_decay': -0.1}, {'min_weight': -1.0}]:
        with pytest.raises(ValueError):
            edge.merge_hyperparams(hyper_params)


def test_train_one_batch(spn, data):
    spn.normalize_weights()
    batch = data[:10]
    expected_joint = likelihood(spn, batch)
    expected_marginal = likelihood(spn, fill_slice(batch.copy(), 1.0, 0, len(batch), 1, 2))
    expected_nll = nll(spn, batch)
    product_edges = [e for e in spn.edges if not e.is_trainable]
    product_weights = [e.weight for e in product_edges]

    metrics = Metrics()
    op = Operation(batch_size=10, verbose=False)
    joint_prob = train_one_batch(spn, op, batch, 0, metrics)
    assert joint_prob.shape == (20, 1)
    assert np.allclose(joint_prob[:10], expected_joint, atol=1e-6)
    assert np.allclose(joint_prob[10:], expected_marginal, atol=1e-6)
    assert np.isclose(metrics.find(MetricType.NLL).values[-1], expected_nll, rtol=1e-5)
    assert metrics.find(MetricType.NLL).steps[-1] == 10
    assert [e.weight for e in product_edges] == product_weights


def test_evaluate(spn, data):
    spn.normalize_weights()
    metrics = Metrics()
    with DataHandler(data, valid=data) as handler:
        dataset = handler.get_dataset(DatasetKind.VALID)
        dataset.set_batch_size(30)
        evaluate(spn, Operation(batch_size=30, verbose=False), dataset, metrics)
    assert metrics.find(MetricType.NLL).steps == [100]
    assert np.isclose(last_metric_average(metrics, MetricType.NLL), nll(spn, data) / 100, rtol=1e-5)


def test_train(spn, data):
    for e in spn.root.incoming:
        e.weight = 0.5
    x = data[:1]
    initial_likelihood = conditional_likelihood(spn, x)
    with tempfile.TemporaryDirectory() as tmp_dir:
        checkpoint_dir = os.path.join(tmp_dir, 'checkpoints')
        op = Operation(
            batch_size=10, stop_condition=StopCondition(steps=5), checkpoint_after=5, eval_after=2,
            checkpoint_directory=checkpoint_dir, verbose=False
        )
        eval_op = Operation(name='eval', batch_size=10, verbose=False)
        handler = DataHandler(data[:50], valid=data[50:80], test=data[80:])
        session = train(spn, op, handler, eval_operation=eval_op)

        assert session is not None
        assert session.evaluated_steps == [0, 2, 4]
        assert sorted(os.listdir(checkpoint_dir)) == ['toy_train_5.json', 'toy_train_BEST.json', 'toy_train_LAST.json']
        assert len(session.checkpoints) >= 3
        assert handler.get_dataset(DatasetKind.VALID).batch_size == 20
        assert handler.get_dataset(DatasetKind.TEST).batch_size == 20

        # The checkpoints are complete model descriptions
        best_data = load_model_data(os.path.join(checkpoint_dir, 'toy_train_BEST.json'))
        assert 'valid_metric_best' in best_data and 'train_metric_es' in best_data and 'test_metric_es' in best_data
        last_data = load_model_data(os.path.join(checkpoint_dir, 'toy_train_LAST.json'))
        assert last_data['valid_metrics'][0]['steps'] == [0, 2, 4]
        assert last_data['test_metrics'][0]['steps'] == [0, 2, 4]
        assert len(last_data['train_metrics'][0]['values']) == 3
        build_spn(last_data)

    assert session.best_valid_score < HUGE_VALUE
    assert np.isclose(np.sum(spn.root.weights), 1.0, atol=1e-6)
    assert np.all(conditional_likelihood(spn, x) > initial_likelihood)


def test_train_model_selection_disabled(spn, data):
    with tempfile.TemporaryDirectory() as tmp_dir:
        op = Operation(
            batch_size=10, stop_condition=StopCondition(steps=3), checkpoint_after=10, eval_after=1,
            checkpoint_directory=tmp_dir, verbose=False
        )
        eval_op = Operation(name='eval', batch_size=10, verbose=False)
        spn.hyper_params['select_model_criterion'] = 'NONE'
        session = train(spn, op, DataHandler(data, valid=data), eval_operation=eval_op)
        assert session.evaluated_steps == [0, 1, 2]
        assert os.listdir(tmp_dir) == []
        assert session.best_valid_score == HUGE_VALUE


def test_train_all_processed(spn, data):
    with tempfile.TemporaryDirectory() as tmp_dir:
        op = Operation(
            batch_size=30, stop_condition=StopCondition(all_processed=True), checkpoint_after=2,
            checkpoint_directory=tmp_dir, normalize_each_train_step=True, randomize=True, random_seed=42,
            verbose=False
        )
        session = train(spn, op, DataHandler(data))
        assert session.n_steps == 4
        assert sorted(os.listdir(tmp_dir)) == ['toy_train_2.json', 'toy_train_4.json', 'toy_train_LAST.json']
        assert session.evaluated_steps == []


def test_train_verbose(spn, data, capsys):
    with tempfile.TemporaryDirectory() as tmp_dir:
        op = Operation(
            batch_size=50, stop_condition=StopCondition(steps=1), checkpoint_after=1,
            checkpoint_directory=tmp_dir, verbose=True
        )
        eval_op = Operation(name='eval', batch_size=50, verbose=True)
        train(spn, op, DataHandler(data, valid=data), eval_operation=eval_op)
    out = capsys.readouterr().out
    assert 'Step 0 - train_nll: ' in out and 'valid_nll: ' in out
    assert 'test_nll' not in out


def test_train_empty(spn):
    with tempfile.TemporaryDirectory() as tmp_dir:
        checkpoint_dir = os.path.join(tmp_dir, 'checkpoints')
        op = Operation(batch_size=10, checkpoint_directory=checkpoint_dir, verbose=False)
        assert train(spn, op, DataHandler(np.zeros((0, 3), dtype=np.float32))) is None
        assert not os.path.exists(checkpoint_dir)


def test_train_errors(spn, data):
    with tempfile.TemporaryDirectory() as tmp_dir:
        filepath = os.path.join(tmp_dir, 'file')
        with open(filepath, 'w') as f:
            f.write('')
        op = Operation(batch_size=10, checkpoint_directory=os.path.join(filepath, 'checkpoints'), verbose=False)
        with pytest.raises(OSError):
            train(spn, op, DataHandler(data))

        a, b = InputNode('a', input_start_index=0), InputNode('b', input_start_index=1)
        s1, s2 = SumNode('s1'), SumNode('s2')
        invalid_spn = Spn([a, b, s1, s2], [Edge(a, s1), Edge(b, s1), Edge(a, s2), Edge(b, s2)])
        op = Operation(batch_size=10, checkpoint_directory=tmp_dir, verbose=False)
        with pytest.raises(ValueError):
            train(invalid_spn, op, DataHandler(data))
