# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import os
from typing import Union, Type

import numpy as np

from spnet.context import is_check_dtype_enabled

#: The sentinel value used in place of infinite negative log-probabilities.
HUGE_VALUE = float(np.finfo(np.float32).max)


def check_data_dtype(data: np.ndarray, dtype: Type[np.dtype] = np.float32) -> np.ndarray:
    """
    Check whether the data is compatible with a given dtype (defaults to np.float32).
    If the data dtype is not compatible, then cast it.

    :param data: The data.
    :param dtype: The desidered dtype compatibility (defaults to np.float32).
    :return: The casted data if necessary, otherwise returns data itself.
    """
    if not is_check_dtype_enabled():
        # Skip data dtype check and casting
        return data
    if data.dtype != np.dtype(dtype):
        return data.astype(dtype)
    return data


def check_matrix(data: np.ndarray, name: str = 'data') -> np.ndarray:
    """
    Check that some data is a 2-D matrix, and cast it to float32 if needed.

    :param data: The data.
    :param name: The name of the data, used in error messages.
    :return: The checked matrix.
    :raises ValueError: If the data is not a 2-D matrix.
    """
    data = np.asarray(data)
    if data.ndim != 2:
        raise ValueError("The {} must be a 2-D matrix, got shape {}".format(name, data.shape))
    return check_data_dtype(data, np.float32)


def negative_log(x: np.ndarray) -> np.ndarray:
    """
    Compute the element-wise negative logarithm of some probabilities.
    Non-positive entries are mapped to HUGE_VALUE rather than infinity.

    :param x: The probabilities.
    :return: The negative log-probabilities.
    """
    x = np.asarray(x, dtype=np.float64)
    result = np.full(x.shape, HUGE_VALUE, dtype=np.float64)
    positive = x > 0.0
    result[positive] = -np.log(x[positive])
    return result


def fill_slice(x: np.ndarray, value: float, start_row: int, n_rows: int, start_col: int, n_cols: int) -> np.ndarray:
    """
    Fill a rectangular slice of a matrix with a constant value, inplace.

    :param x: The matrix.
    :param value: The value.
    :param start_row: The first row of the slice.
    :param n_rows: The number of rows of the slice.
    :param start_col: The first column of the slice.
    :param n_cols: The number of columns of the slice.
    :return: The same matrix.
    :raises ValueError: If the slice is out of the matrix bounds.
    """
    if start_row < 0 or start_col < 0 or start_row + n_rows > x.shape[0] or start_col + n_cols > x.shape[1]:
        raise ValueError("Slice ({}:{}, {}:{}) out of bounds for matrix of shape {}".format(
            start_row, start_row + n_rows, start_col, start_col + n_cols, x.shape
        ))
    x[start_row:start_row + n_rows, start_col:start_col + n_cols] = value
    return x


def _format_value(v: float) -> str:
    if float(v).is_integer():
        return str(int(v))
    return repr(float(v))


def matrix_to_debug_string(x: np.ndarray) -> str:
    """
    Serialize a matrix into its compact debug text form, i.e. 'r c: v00 v01; v10 v11'.

    :param x: The 2-D matrix.
    :return: The debug string.
    :raises ValueError: If the input is not a 2-D matrix.
    """
    x = np.asarray(x)
    if x.ndim != 2:
        raise ValueError("Only 2-D matrices can be serialized, got shape {}".format(x.shape))
    rows = '; '.join(' '.join(_format_value(v) for v in row) for row in x)
    return '{} {}: {}'.format(x.shape[0], x.shape[1], rows)


def matrix_from_debug_string(s: str) -> np.ndarray:
    """
    Parse a matrix from its compact debug text form.
    The 'r c:' shape prefix is optional. Without it, rows are separated by ';'
    and a plain sequence of numbers is read as a single row.

    :param s: The debug string.
    :return: The float32 matrix.
    :raises ValueError: If the string is malformed.
    """
    s = s.strip()
    shape = None
    if ':' in s:
        header, s = s.split(':', 1)
        try:
            shape = tuple(int(d) for d in header.split())
        except ValueError:
            raise ValueError("Invalid matrix header '{}'".format(header)) from None
        if len(shape) != 2:
            raise ValueError("The matrix header must specify two dimensions, got '{}'".format(header))

    rows = [r.split() for r in s.split(';')] if s.strip() else []
    rows = [r for r in rows if r]
    try:
        values = [[float(v) for v in r] for r in rows]
    except ValueError:
        raise ValueError("Invalid matrix values in '{}'".format(s)) from None
    if any(len(r) != len(values[0]) for r in values):
        raise ValueError("Ragged rows in matrix '{}'".format(s))

    n_rows = len(values)
    n_cols = len(values[0]) if values else 0
    if shape is not None:
        if shape[0] * shape[1] == 0 and n_rows == 0:
            return np.zeros(shape, dtype=np.float32)
        if shape != (n_rows, n_cols):
            raise ValueError("The matrix header {} disagrees with the payload shape {}".format(shape, (n_rows, n_cols)))
    return np.array(values, dtype=np.float32).reshape(n_rows, n_cols)


def load_matrix(f: Union[np.ndarray, os.PathLike, str]) -> np.ndarray:
    """
    Load a data matrix, either from a Numpy binary file (.npy) or from a CSV file.
    Numpy arrays are passed through.

    :param f: A Numpy array or a filepath.
    :return: The float32 data matrix.
    :raises ValueError: If the file extension is not supported.
    """
    if isinstance(f, np.ndarray):
        return check_matrix(f)
    path = os.fspath(f)
    ext = os.path.splitext(path)[1].lower()
    if ext == '.npy':
        data = np.load(path)
    elif ext in ['.csv', '.txt']:
        data = np.loadtxt(path, delimiter=',', ndmin=2)
    else:
        raise ValueError("Unsupported data file extension '{}'".format(ext))
    return check_matrix(data)
