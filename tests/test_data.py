import os

import pytest
import tempfile
import numpy as np

from spnet.utils.data import HUGE_VALUE, check_data_dtype, check_matrix, negative_log, fill_slice
from spnet.utils.data import matrix_to_debug_string, matrix_from_debug_string, load_matrix
from spnet.data.dataset import DatasetKind, Dataset, DataHandler


@pytest.fixture
def data():
    return np.array([
        [0.0, 1.0, 0.5],
        [1.0, 0.0, 0.5],
        [1.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
        [0.5, 0.5, 0.5]
    ], dtype=np.float32)


def test_check_data_dtype():
    uint8_data = np.arange(5).astype(np.uint8)
    float32_data = np.arange(5).astype(np.float32)
    assert check_data_dtype(uint8_data).dtype == np.float32
    assert check_data_dtype(float32_data) is float32_data
    assert check_data_dtype(float32_data, np.float64).dtype == np.float64


def test_check_matrix():
    assert check_matrix([[1, 2], [3, 4]]).dtype == np.float32
    with pytest.raises(ValueError):
        check_matrix(np.zeros(3))
    with pytest.raises(ValueError):
        check_matrix(np.zeros((2, 2, 2)))


def test_negative_log():
    x = np.array([[0.0], [-1.0], [1.0], [np.exp(-1.0)]])
    y = negative_log(x)
    assert y.shape == x.shape
    assert y[0, 0] == HUGE_VALUE and y[1, 0] == HUGE_VALUE
    assert np.allclose(y[2:], [[0.0], [1.0]])
    assert np.all(np.isfinite(y))


def test_fill_slice():
    x = np.zeros((4, 3), dtype=np.float32)
    fill_slice(x, 1.0, 2, 2, 1, 2)
    assert x.tolist() == [[0, 0, 0], [0, 0, 0], [0, 1, 1], [0, 1, 1]]
    with pytest.raises(ValueError):
        fill_slice(x, 1.0, 3, 2, 0, 1)
    with pytest.raises(ValueError):
        fill_slice(x, 1.0, 0, 1, 2, 2)


def test_matrix_debug_string():
    x = np.array([[1.0, 2.0], [3.0, 4.5]], dtype=np.float32)
    s = matrix_to_debug_string(x)
    assert s == '2 2: 1 2; 3 4.5'
    assert np.array_equal(matrix_from_debug_string(s), x)
    assert matrix_from_debug_string('0 1 2 3').tolist() == [[0, 1, 2, 3]]
    assert matrix_from_debug_string('1 2; 3 4').shape == (2, 2)
    assert matrix_from_debug_string('0 3:').shape == (0, 3)
    assert matrix_from_debug_string(' 1 4:  0 0 0 2 ').tolist() == [[0, 0, 0, 2]]


def test_matrix_debug_string_malformed():
    with pytest.raises(ValueError):
        matrix_from_debug_string('1 2 3; 4 5')
    with pytest.raises(ValueError):
        matrix_from_debug_string('1 a 3')
    with pytest.raises(ValueError):
        matrix_from_debug_string('2 2: 1 2 3 4')
    with pytest.raises(ValueError):
        matrix_from_debug_string('x y: 1 2')
    with pytest.raises(ValueError):
        matrix_to_debug_string(np.zeros(3))


def test_load_matrix(data):
    assert load_matrix(data.astype(np.float64)).dtype == np.float32
    with tempfile.TemporaryDirectory() as tmp_dir:
        npy_filepath = os.path.join(tmp_dir, 'data.npy')
        csv_filepath = os.path.join(tmp_dir, 'data.csv')
        np.save(npy_filepath, data)
        np.savetxt(csv_filepath, data, delimiter=',')
        assert np.allclose(load_matrix(npy_filepath), data)
        assert np.allclose(load_matrix(csv_filepath), data)
        with pytest.raises(ValueError):
            load_matrix(os.path.join(tmp_dir, 'data.json'))


def test_dataset_batches(data):
    with Dataset(data, batch_size=2) as dataset:
        assert dataset.num_samples == 5 and dataset.num_features == 3
        assert dataset.num_batches == 3
        assert dataset.current_batch is None
        batches = [dataset.end_load_next_batch() for _ in range(4)]
        assert [len(b) for b in batches] == [2, 2, 1, 2]
        assert np.array_equal(batches[0], data[0:2])
        assert np.array_equal(batches[2], data[4:5])
        assert np.array_equal(batches[3], data[0:2])
        assert dataset.current_batch is batches[3]
        with pytest.raises(ValueError):
            dataset.set_batch_size(0)


def test_dataset_prefetch(data):
    with Dataset(data, batch_size=3) as dataset:
        future = dataset.begin_load_next_batch()
        with pytest.raises(RuntimeError):
            dataset.begin_load_next_batch()
        batch = dataset.end_load_next_batch()
        assert np.array_equal(batch, future.result())
        assert np.array_equal(batch, data[0:3])
        dataset.begin_load_next_batch()
        assert np.array_equal(dataset.end_load_next_batch(), data[3:5])
        dataset.begin_load_next_batch()
        dataset.reset()
        assert np.array_equal(dataset.end_load_next_batch(), data[0:3])


def test_dataset_randomize(data):
    with Dataset(data, batch_size=5, randomize=True, random_state=42) as dataset:
        batch = dataset.end_load_next_batch()
        assert sorted(map(tuple, batch.tolist())) == sorted(map(tuple, data.tolist()))


def test_dataset_empty():
    with Dataset(np.zeros((0, 3)), batch_size=2) as dataset:
        assert dataset.num_batches == 0
        with pytest.raises(ValueError):
            dataset.begin_load_next_batch()


def test_data_handler(data):
    with DataHandler(data, valid=data[:2], randomize=True, random_seed=42) as handler:
        assert handler.get_dataset(DatasetKind.TRAIN).num_samples == 5
        assert handler.get_dataset(DatasetKind.TRAIN).randomize
        assert handler.get_dataset(DatasetKind.VALID).num_samples == 2
        assert not handler.get_dataset(DatasetKind.VALID).randomize
        assert handler.get_dataset(DatasetKind.TEST) is None
    with pytest.raises(ValueError):
        DataHandler(data, valid=np.zeros((2, 4)))
