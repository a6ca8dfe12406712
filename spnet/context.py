# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import contextlib
import contextvars
from typing import Dict

#: Default value of every supported flag
DEFAULT_FLAGS: Dict[str, bool] = {
    'check_dtype': True,  # Cast batches and description matrices to float32
    'check_spn': True     # Validate the SPN structure before training and evaluation
}

#: Thread-safe context variables, i.e. each thread will have its own flags assignments
_flags = contextvars.ContextVar('spnet_flags', default=DEFAULT_FLAGS)


def get_flag(flag: str) -> bool:
    """
    Get the current value of a context flag.

    :param flag: The flag name.
    :return: The flag value in the current context.
    :raises ValueError: If the flag is unknown.
    """
    flags = _flags.get()
    if flag not in flags:
        raise ValueError("Unknown flag called '{}', suitable flags are: {}".format(flag, ', '.join(flags.keys())))
    return flags[flag]


def is_check_dtype_enabled() -> bool:
    """Returns whether the context flag 'check_dtype' is enabled."""
    return get_flag('check_dtype')


def is_check_spn_enabled() -> bool:
    """Returns whether the context flag 'check_spn' is enabled."""
    return get_flag('check_spn')


class ContextState(contextlib.ContextDecorator):
    def __init__(self, **kwargs):
        """
        Thread-safe context state that overrides some flags during execution.
        See DEFAULT_FLAGS for the supported flags.

        :param kwargs: The flags to override.
        :raises ValueError: If an unknown flag is given.
        """
        state = dict(_flags.get())
        for flag, value in kwargs.items():
            if flag not in state:
                raise ValueError("Cannot set an unknown flag called '{}', suitable flags are: {}".format(
                    flag, ', '.join(state.keys())
                ))
            state[flag] = bool(value)
        self.__state = state
        self.__tokens = []

    def __enter__(self):
        self.__tokens.append(_flags.set(self.__state))
        return self

    def __exit__(self, *exc):
        _flags.reset(self.__tokens.pop())
