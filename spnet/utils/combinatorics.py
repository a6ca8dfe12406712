# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

from typing import List

from scipy.special import comb


def binomial(n: int, k: int) -> int:
    """
    Compute the exact binomial coefficient C(n, k).

    :param n: The number of elements.
    :param k: The size of the subsets.
    :return: The binomial coefficient, zero if k is out of [0, n].
    """
    if k < 0 or k > n:
        return 0
    return int(comb(n, k, exact=True))


def combination(n: int, k: int, index: int) -> List[int]:
    """
    Get the k-combination of {0, ..., n - 1} at a given position of the lexicographic ordering.
    Combinations are numbered from 1 to C(n, k), so that for n = 4 and k = 2 the
    combinations are [0, 1], [0, 2], [0, 3], [1, 2], [1, 3], [2, 3].

    :param n: The number of elements.
    :param k: The size of the combination.
    :param index: The 1-based position of the combination.
    :return: The sorted list of the chosen elements.
    :raises ValueError: If a parameter is out of domain.
    """
    if k <= 0 or k > n:
        raise ValueError("The combination size must be in [1, {}], got {}".format(n, k))
    n_combinations = binomial(n, k)
    if index < 1 or index > n_combinations:
        raise ValueError("The combination index must be in [1, {}], got {}".format(n_combinations, index))

    # Unrank by skipping the blocks of combinations starting with smaller elements
    rank = index - 1
    result = list()
    element = 0
    for remaining in range(k, 0, -1):
        while True:
            block = binomial(n - element - 1, remaining - 1)
            if rank < block:
                break
            rank -= block
            element += 1
        result.append(element)
        element += 1
    return result
