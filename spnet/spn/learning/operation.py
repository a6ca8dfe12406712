# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import os
from typing import Optional, Union


class StopCondition:
    def __init__(self, steps: int = 0, all_processed: bool = False):
        """
        Initialize a stop condition, i.e. either a fixed number of steps or a single pass over the dataset.

        :param steps: The number of steps.
        :param all_processed: Whether to stop after processing the whole dataset once.
        :raises ValueError: If the number of steps is negative.
        """
        if steps < 0:
            raise ValueError("The number of steps must be non-negative")
        self.steps = steps
        self.all_processed = all_processed

    def resolve(self, num_batches: int) -> int:
        """
        Get the exact number of steps to run.

        :param num_batches: The number of batches of the dataset.
        :return: The number of steps.
        """
        return num_batches if self.all_processed else self.steps

    def to_dict(self) -> dict:
        return {'steps': self.steps, 'all_processed': self.all_processed}


class Operation:
    def __init__(
        self,
        name: str = 'train',
        batch_size: int = 100,
        stop_condition: Optional[Union[StopCondition, dict]] = None,
        checkpoint_after: int = 100,
        eval_after: int = 100,
        normalize_each_train_step: bool = False,
        randomize: bool = False,
        random_seed: Optional[int] = None,
        checkpoint_directory: Union[os.PathLike, str] = 'checkpoints',
        verbose: bool = True
    ):
        """
        Initialize a training or evaluation operation.

        :param name: The name of the operation, used in the checkpoint filenames.
        :param batch_size: The batch size.
        :param stop_condition: The stop condition. If None, the whole dataset is processed once.
        :param checkpoint_after: The number of steps between checkpoints.
        :param eval_after: The number of steps between evaluations.
        :param normalize_each_train_step: Whether to normalize the weights after every step.
        :param randomize: Whether to shuffle the training data.
        :param random_seed: The seed used for shuffling.
        :param checkpoint_directory: The checkpoint directory.
        :param verbose: Whether to enable verbose mode.
        :raises ValueError: If a parameter is out of domain.
        """
        if batch_size <= 0:
            raise ValueError("The batch size must be positive")
        if checkpoint_after <= 0:
            raise ValueError("The number of steps between checkpoints must be positive")
        if eval_after <= 0:
            raise ValueError("The number of steps between evaluations must be positive")
        if stop_condition is None:
            stop_condition = StopCondition(all_processed=True)
        elif isinstance(stop_condition, dict):
            stop_condition = StopCondition(**stop_condition)
        self.name = name
        self.batch_size = batch_size
        self.stop_condition = stop_condition
        self.checkpoint_after = checkpoint_after
        self.eval_after = eval_after
        self.normalize_each_train_step = normalize_each_train_step
        self.randomize = randomize
        self.random_seed = random_seed
        self.checkpoint_directory = checkpoint_directory
        self.verbose = verbose

    @classmethod
    def from_dict(cls, d: dict) -> 'Operation':
        """
        Build an operation from a dictionary, e.g. loaded from a JSON file.

        :param d: The dictionary.
        :return: The operation.
        :raises ValueError: If the dictionary contains an unknown key.
        """
        known = cls.__init__.__code__.co_varnames[1:cls.__init__.__code__.co_argcount]
        unknown = set(d.keys()).difference(known)
        if unknown:
            raise ValueError("Unknown operation settings: {}".format(', '.join(sorted(unknown))))
        return cls(**d)

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'batch_size': self.batch_size,
            'stop_condition': self.stop_condition.to_dict(),
            'checkpoint_after': self.checkpoint_after,
            'eval_after': self.eval_after,
            'normalize_each_train_step': self.normalize_each_train_step,
            'randomize': self.randomize,
            'random_seed': self.random_seed,
            'checkpoint_directory': os.fspath(self.checkpoint_directory),
            'verbose': self.verbose
        }
