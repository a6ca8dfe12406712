# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import os
from enum import Enum
from concurrent import futures
from typing import Optional, Union

import numpy as np

from spnet.utils.data import load_matrix
from spnet.utils.random import RandomState, check_random_state, shuffle_rows


class DatasetKind(Enum):
    """
    The role of a dataset in a training run.
    """
    TRAIN = 1
    VALID = 2
    TEST = 3


class Dataset:
    def __init__(
        self,
        data: Union[np.ndarray, os.PathLike, str],
        batch_size: int = 100,
        randomize: bool = False,
        random_state: Optional[RandomState] = None
    ):
        """
        Initialize a dataset that supplies contiguous batches of rows, visited cyclically.
        The next batch can be prefetched in a background thread while the current one is used,
        but at most one load can be pending at any time.

        :param data: The data matrix, or a filepath of a .npy or .csv file.
        :param batch_size: The batch size.
        :param randomize: Whether to shuffle the rows at the beginning of each pass.
        :param random_state: The random state used for shuffling.
        :raises ValueError: If the batch size is not positive.
        """
        self.data = np.array(load_matrix(data), copy=True)
        self.randomize = randomize
        self.random_state = check_random_state(random_state)
        self.batch_size = 0
        self.set_batch_size(batch_size)

        self.current_batch: Optional[np.ndarray] = None
        self.__cursor = 0
        self.__pending: Optional[futures.Future] = None
        self.__executor: Optional[futures.ThreadPoolExecutor] = None

    @property
    def num_samples(self) -> int:
        """Get the number of samples."""
        return len(self.data)

    @property
    def num_features(self) -> int:
        """Get the number of features, i.e. the number of columns."""
        return self.data.shape[1]

    @property
    def num_batches(self) -> int:
        """Get the number of batches needed to process the whole dataset once."""
        return (self.num_samples + self.batch_size - 1) // self.batch_size

    def set_batch_size(self, batch_size: int):
        """
        Set the batch size.

        :param batch_size: The batch size.
        :raises ValueError: If the batch size is not positive.
        """
        if batch_size <= 0:
            raise ValueError("The batch size must be positive")
        self.batch_size = batch_size

    def reset(self):
        """
        Restart the batches from the beginning of the dataset, dropping any pending load.
        """
        self.__wait_pending()
        self.__pending = None
        self.__cursor = 0

    def begin_load_next_batch(self) -> futures.Future:
        """
        Start loading the next batch in background.

        :return: The future of the next batch.
        :raises RuntimeError: If a batch load is already pending.
        :raises ValueError: If the dataset is empty.
        """
        if self.__pending is not None:
            raise RuntimeError("A batch load is already pending")
        if self.num_samples == 0:
            raise ValueError("Cannot load batches from an empty dataset")
        if self.__executor is None:
            self.__executor = futures.ThreadPoolExecutor(max_workers=1)
        self.__pending = self.__executor.submit(self.__load_batch)
        return self.__pending

    def end_load_next_batch(self) -> np.ndarray:
        """
        Wait for the pending batch load and make it the current batch.
        If no load is pending, the next batch is loaded synchronously.

        :return: The current batch.
        """
        if self.__pending is None:
            self.begin_load_next_batch()
        pending, self.__pending = self.__pending, None
        self.current_batch = pending.result()
        return self.current_batch

    def close(self):
        """
        Release the background loading thread.
        """
        self.__wait_pending()
        self.__pending = None
        if self.__executor is not None:
            self.__executor.shutdown(wait=True)
            self.__executor = None

    def __load_batch(self) -> np.ndarray:
        if self.__cursor == 0 and self.randomize:
            shuffle_rows(self.data, self.random_state)
        start = self.__cursor
        end = min(start + self.batch_size, self.num_samples)
        self.__cursor = 0 if end >= self.num_samples else end
        return np.array(self.data[start:end], copy=True)

    def __wait_pending(self):
        if self.__pending is not None:
            futures.wait([self.__pending])

    def __len__(self) -> int:
        return self.num_samples

    def __enter__(self) -> 'Dataset':
        return self

    def __exit__(self, *exc):
        self.close()


class DataHandler:
    def __init__(
        self,
        train: Union[np.ndarray, os.PathLike, str],
        valid: Optional[Union[np.ndarray, os.PathLike, str]] = None,
        test: Optional[Union[np.ndarray, os.PathLike, str]] = None,
        randomize: bool = False,
        random_seed: Optional[int] = None
    ):
        """
        Initialize the data handler owning the train, validation and test datasets.
        Only the train dataset is shuffled, if specified.

        :param train: The train data.
        :param valid: The validation data. It can be None.
        :param test: The test data. It can be None.
        :param randomize: Whether to shuffle the train data at every pass.
        :param random_seed: The seed used for shuffling.
        :raises ValueError: If the datasets have a different number of features.
        """
        random_state = check_random_state(random_seed)
        self.datasets = {DatasetKind.TRAIN: Dataset(train, randomize=randomize, random_state=random_state)}
        if valid is not None:
            self.datasets[DatasetKind.VALID] = Dataset(valid)
        if test is not None:
            self.datasets[DatasetKind.TEST] = Dataset(test)

        n_features = {d.num_features for d in self.datasets.values() if d.num_samples > 0}
        if len(n_features) > 1:
            self.close()
            raise ValueError("The datasets have a different number of features: {}".format(sorted(n_features)))

    def get_dataset(self, kind: DatasetKind) -> Optional[Dataset]:
        """
        Get a dataset given its kind.

        :param kind: The dataset kind.
        :return: The dataset, or None if not available.
        """
        return self.datasets.get(kind)

    def close(self):
        """
        Release all the datasets.
        """
        for dataset in self.datasets.values():
            dataset.close()

    def __enter__(self) -> 'DataHandler':
        return self

    def __exit__(self, *exc):
        self.close()
