# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

from typing import Optional, Callable

from spnet.utils.data import HUGE_VALUE

#: The model selection criteria
CRITERION_NLL = 'NLL'
CRITERION_NONE = 'NONE'


class ModelSelection:
    def __init__(self, save_best: Callable[[int], Optional[str]], criterion: str = CRITERION_NLL):
        """
        Keeps track of the best validation score and saves the model whenever it strictly improves.

        :param save_best: The function that saves the best model given the current step.
                          It returns the checkpoint filepath, or None if saving failed.
        :param criterion: The model selection criterion, either 'NLL' or 'NONE' (case-insensitive).
        :raises ValueError: If the criterion is unknown.
        """
        criterion = criterion.upper()
        if criterion not in [CRITERION_NLL, CRITERION_NONE]:
            raise ValueError("Unknown model selection criterion called {}".format(criterion))
        self.save_best = save_best
        self.criterion = criterion
        self.__best_score = HUGE_VALUE
        self.__best_step = None

    @property
    def enabled(self) -> bool:
        return self.criterion != CRITERION_NONE

    @property
    def best_score(self) -> float:
        return self.__best_score

    @property
    def best_step(self) -> Optional[int]:
        return self.__best_step

    def __call__(self, score: float, step: int) -> bool:
        """
        Update the state of model selection.

        :param score: The validation score measured, the lower the better.
        :param step: The current training step.
        :return: Whether the score improved, hence the model has been selected.
        """
        if not self.enabled or score >= self.__best_score:
            return False
        self.__best_score = score
        self.__best_step = step
        self.save_best(step)
        return True

    def __format__(self, format_spec) -> str:
        return "Best NLL: {:.4f} at Step: {}".format(self.__best_score, self.__best_step)
