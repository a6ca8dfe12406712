# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

from spnet.context import is_check_spn_enabled
from spnet.spn.structure.spn import Spn


def check_spn(spn: Spn):
    """
    Check a SPN is valid, i.e. it can be used for propagation.
    As a side effect, the propagation order of the SPN is recomputed.

    :param spn: The SPN.
    :raises ValueError: If the SPN is not valid.
    """
    if not is_check_spn_enabled():  # Skip the checks entirely, if specified
        return

    result = spn.find_invalidity()
    if result is not None:
        raise ValueError(f"SPN is not valid: {result}")
