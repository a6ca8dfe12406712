from typing import Tuple

import numpy as np

from spnet.spn.structure.spn import Spn
from spnet.spn.algorithms.inference import log_likelihood


def evaluate_log_likelihoods(
    spn: Spn,
    x: np.ndarray,
    batch_size: int = 2048
) -> Tuple[float, float]:
    """
    Evaluate the average log-likelihood and two standard deviations.
    This function is implemented in batch mode in order to use less memory.

    :param spn: The validated SPN.
    :param x: The test data.
    :param batch_size: The size of each batch.
    :return: The average log-likelihoods and two standard deviations.
    """
    n_samples = len(x)
    ll = np.zeros(n_samples, dtype=np.float32)
    for i in range(0, n_samples, batch_size):
        ll[i:i + batch_size] = log_likelihood(spn, x[i:i + batch_size])[:, 0]

    mean_ll = np.mean(ll).item()
    stddev_ll = 2.0 * np.std(ll).item() / np.sqrt(n_samples)
    return mean_ll, stddev_ll
