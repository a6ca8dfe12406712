from .builder import SpnWarning, build_spn
from .operation import StopCondition, Operation
from .selection import ModelSelection
from .training import TrainingSession, train, train_one_batch, evaluate
