# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import numpy as np

from spnet.utils.data import check_matrix, negative_log
from spnet.spn.structure.spn import Spn


def likelihood(spn: Spn, x: np.ndarray) -> np.ndarray:
    """
    Compute the likelihood of a SPN given some inputs.

    :param spn: The validated SPN.
    :param x: The inputs, where query columns set to one are marginalized out.
    :return: The likelihoods, having shape (n_samples, root dimension).
    :raises ValueError: If the root activations have an unexpected shape.
    """
    x = check_matrix(x, name='batch')
    ls = spn.forward(x)
    if ls.shape != (len(x), spn.root.dimension):
        raise ValueError("Invalid dimension of the joint probability: expected {}, got {}".format(
            (len(x), spn.root.dimension), ls.shape
        ))
    return np.copy(ls)


def log_likelihood(spn: Spn, x: np.ndarray) -> np.ndarray:
    """
    Compute the logarithmic likelihood of a SPN given some inputs.
    Zero likelihoods are mapped to -HUGE_VALUE.

    :param spn: The validated SPN.
    :param x: The inputs.
    :return: The log-likelihoods, having shape (n_samples, root dimension).
    """
    return -negative_log(likelihood(spn, x))


def nll(spn: Spn, x: np.ndarray) -> float:
    """
    Compute the negative log-likelihood of a SPN, summed over some inputs.

    :param spn: The validated SPN.
    :param x: The inputs.
    :return: The summed negative log-likelihood.
    """
    return float(np.sum(negative_log(likelihood(spn, x))))
