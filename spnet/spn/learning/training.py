# MIT License: Copyright (c) 2021 Lorenzo Loconte, Gennaro Gala

import os
import warnings
from typing import Optional, List

import numpy as np
from tqdm import tqdm

from spnet.utils.data import HUGE_VALUE, check_matrix, negative_log, fill_slice
from spnet.utils.random import check_random_state
from spnet.utils.metrics import Metrics, MetricType, accumulate_metric, last_metric_average, append_stats
from spnet.data.dataset import Dataset, DataHandler, DatasetKind
from spnet.spn.structure.spn import Spn
from spnet.spn.structure.io import write_checkpoint
from spnet.spn.utils.validity import check_spn
from spnet.spn.learning.builder import SpnWarning
from spnet.spn.learning.operation import Operation
from spnet.spn.learning.selection import ModelSelection, CRITERION_NLL


class TrainingSession:
    def __init__(self, spn: Spn, operation: Operation, n_steps: int):
        """
        Initialize the state of a training run, threaded through the training steps.

        :param spn: The SPN being trained.
        :param operation: The training operation.
        :param n_steps: The resolved number of training steps.
        """
        self.spn = spn
        self.operation = operation
        self.n_steps = n_steps
        self.step = 0

        # The metrics of the last train step and of the last evaluation
        self.train_metrics = Metrics()
        self.valid_metrics = Metrics()
        self.test_metrics = Metrics()

        # The metrics history, resumed from the model description if any
        self.history = {
            'train': Metrics.from_list(spn.model_data.get('train_metrics')),
            'valid': Metrics.from_list(spn.model_data.get('valid_metrics')),
            'test': Metrics.from_list(spn.model_data.get('test_metrics'))
        }

        self.best_valid_score = HUGE_VALUE
        self.evaluated_steps: List[int] = list()
        self.checkpoints: List[str] = list()

    def sync_model_data(self):
        """
        Store the metrics history into the model description, so that snapshots include it.
        """
        self.spn.model_data['train_metrics'] = self.history['train'].to_list()
        self.spn.model_data['valid_metrics'] = self.history['valid'].to_list()
        if len(self.history['test']) > 0:
            self.spn.model_data['test_metrics'] = self.history['test'].to_list()

    def write_checkpoint(self, tag) -> Optional[str]:
        """
        Write a snapshot of the SPN. A failed write is reported as a warning and does not stop training.

        :param tag: The checkpoint tag, i.e. a step number, 'BEST' or 'LAST'.
        :return: The checkpoint filepath, or None if the write failed.
        """
        try:
            filepath = write_checkpoint(self.spn, self.operation.checkpoint_directory, self.operation.name, tag)
        except OSError as e:
            warnings.warn("Couldn't write the checkpoint {}: {}".format(tag, e), SpnWarning)
            return None
        self.checkpoints.append(filepath)
        return filepath


def train(
    spn: Spn,
    operation: Operation,
    data_handler: DataHandler,
    eval_operation: Optional[Operation] = None
) -> Optional[TrainingSession]:
    """
    Train the weights of a SPN by maximizing the conditional log-likelihood of the query nodes,
    periodically evaluating it, selecting the best model and writing checkpoints.
    The data handler is closed at the end, whatever the outcome.

    :param spn: The validated SPN.
    :param operation: The training operation.
    :param data_handler: The data handler, supplying the train and the optional validation and test datasets.
    :param eval_operation: The evaluation operation. If None, no evaluation is performed.
    :return: The training session, or None if the training set is empty.
    :raises ValueError: If the SPN is not valid.
    :raises OSError: If the checkpoint directory cannot be created.
    """
    with data_handler:
        check_spn(spn)

        train_set = data_handler.get_dataset(DatasetKind.TRAIN)
        valid_set = data_handler.get_dataset(DatasetKind.VALID)
        test_set = data_handler.get_dataset(DatasetKind.TEST)
        if train_set.num_samples == 0:
            if operation.verbose:
                print("Empty training set. Training is not doable.")
            return None

        # Empty evaluation datasets are skipped
        if valid_set is not None and valid_set.num_samples == 0:
            valid_set = None
        if test_set is not None and test_set.num_samples == 0:
            test_set = None

        # The evaluation batches are twice as large, matching the doubled train batches
        train_set.set_batch_size(operation.batch_size)
        if operation.randomize:
            train_set.randomize = True
            if operation.random_seed is not None:
                train_set.random_state = check_random_state(operation.random_seed)
        if valid_set is not None:
            valid_set.set_batch_size(2 * operation.batch_size)
        if test_set is not None:
            test_set.set_batch_size(2 * operation.batch_size)
        n_steps = operation.stop_condition.resolve(train_set.num_batches)

        # Create the checkpoint directory
        os.makedirs(operation.checkpoint_directory, exist_ok=True)

        session = TrainingSession(spn, operation, n_steps)
        criterion = str(spn.hyper_params.get('select_model_criterion', CRITERION_NLL))
        model_selection = ModelSelection(lambda step: _save_best(session), criterion=criterion)
        run_session(session, train_set, valid_set, test_set, eval_operation, model_selection)
        return session


def run_session(
    session: TrainingSession,
    train_set: Dataset,
    valid_set: Optional[Dataset],
    test_set: Optional[Dataset],
    eval_operation: Optional[Operation],
    model_selection: ModelSelection
):
    """
    Run the training steps of a session.

    :param session: The training session.
    :param train_set: The train dataset.
    :param valid_set: The validation dataset. It can be None.
    :param test_set: The test dataset. It can be None.
    :param eval_operation: The evaluation operation. It can be None.
    :param model_selection: The model selection callback.
    """
    spn, operation = session.spn, session.operation

    # Normalize before training
    spn.normalize_weights()

    # Initialize the tqdm bar, if verbose is specified
    iterator = range(session.n_steps)
    if operation.verbose:
        iterator = tqdm(
            iterator, leave=None, unit='batch',
            bar_format='{desc}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]'
        )

    for step in iterator:
        session.step = step

        # Get the current batch and prefetch the next one
        batch = train_set.end_load_next_batch()
        train_set.begin_load_next_batch()

        session.train_metrics.clear()
        train_one_batch(spn, operation, batch, step, session.train_metrics)
        if operation.normalize_each_train_step:
            spn.normalize_weights()

        if operation.verbose:
            train_nll = last_metric_average(session.train_metrics, MetricType.NLL)
            iterator.set_description('Batch Avg. NLL: {:.4f}'.format(train_nll))

        if eval_operation is not None and valid_set is not None and step % operation.eval_after == 0:
            evaluate_step(session, valid_set, test_set, eval_operation, model_selection)

        if (step + 1) % operation.checkpoint_after == 0:
            filepath = session.write_checkpoint(step + 1)
            session.write_checkpoint('LAST')
            if operation.verbose and filepath is not None:
                print("Write checkpoint: {}".format(filepath))

    spn.prune()
    spn.normalize_weights()
    session.sync_model_data()


def evaluate_step(
    session: TrainingSession,
    valid_set: Dataset,
    test_set: Optional[Dataset],
    eval_operation: Operation,
    model_selection: ModelSelection
):
    """
    Evaluate the SPN on the validation and test datasets during training,
    update the metrics history and select the model.

    :param session: The training session.
    :param valid_set: The validation dataset.
    :param test_set: The test dataset. It can be None.
    :param eval_operation: The evaluation operation.
    :param model_selection: The model selection callback.
    """
    spn, step = session.spn, session.step
    session.evaluated_steps.append(step)

    session.valid_metrics.clear()
    evaluate(spn, eval_operation, valid_set, session.valid_metrics)
    if test_set is not None:
        session.test_metrics.clear()
        evaluate(spn, eval_operation, test_set, session.test_metrics)
        append_stats(session.history['test'], session.test_metrics, step)
    append_stats(session.history['valid'], session.valid_metrics, step)
    append_stats(session.history['train'], session.train_metrics, step)
    session.sync_model_data()

    valid_nll = last_metric_average(session.valid_metrics, MetricType.NLL)
    if session.operation.verbose:
        line = "Step {} - train_nll: {:.4f}, valid_nll: {:.4f}".format(
            step, last_metric_average(session.train_metrics, MetricType.NLL), valid_nll
        )
        if test_set is not None:
            line += ", test_nll: {:.4f}".format(last_metric_average(session.test_metrics, MetricType.NLL))
        print(line)
    model_selection(valid_nll, step)
    session.best_valid_score = model_selection.best_score


def _save_best(session: TrainingSession) -> Optional[str]:
    spn = session.spn
    spn.model_data['valid_metric_best'] = session.valid_metrics.to_list()
    spn.model_data['train_metric_es'] = session.train_metrics.to_list()
    if len(session.test_metrics) > 0:
        spn.model_data['test_metric_es'] = session.test_metrics.to_list()
    filepath = session.write_checkpoint('BEST')
    if session.operation.verbose and filepath is not None:
        print("Write best model: {}".format(filepath))
    return filepath


def train_one_batch(
    spn: Spn,
    operation: Operation,
    batch: np.ndarray,
    step: int,
    metrics: Optional[Metrics] = None
) -> np.ndarray:
    """
    Run a training step on a batch.
    The batch is doubled: the first half is the batch itself (positive phase), while the second half
    has the query columns set to one, i.e. marginalized out (negative phase). Hence, a single forward pass
    computes both the joint probabilities P(q, e) and the marginal probabilities P(e).
    The error at the root is 1 / P(q, e) for the first half and -1 / P(e) for the second half,
    i.e. the gradient of log P(q | e).

    :param spn: The validated SPN.
    :param operation: The training operation.
    :param batch: The batch.
    :param step: The training step.
    :param metrics: The metrics where to accumulate the NLL of the batch. It can be None.
    :return: The root activations of the doubled batch.
    :raises ValueError: If the root activations have an unexpected shape.
    """
    batch = check_matrix(batch, name='batch')
    n_samples = len(batch)
    two_batch = np.concatenate([batch, batch], axis=0)

    # Set the query variables of the second half to one
    for node in spn.query_nodes:
        fill_slice(two_batch, 1.0, n_samples, n_samples, node.input_start_index, node.dimension)

    joint_prob = spn.forward(two_batch)
    if joint_prob.shape != (2 * n_samples, 1):
        raise ValueError("Invalid dimension of the joint probability: expected {}, got {}".format(
            (2 * n_samples, 1), joint_prob.shape
        ))

    # Invert the probabilities, and then negate the error of the second half
    # Zero probabilities carry no gradient
    error = np.zeros_like(joint_prob)
    np.divide(1.0, joint_prob, out=error, where=joint_prob > 0.0)
    error[n_samples:] = -error[n_samples:]

    spn.initialize_derivatives()
    spn.root.accum_derivatives(error)
    spn.backward()
    spn.update_params(step, operation.batch_size)

    # Accumulate the NLL of the batch, reusing the first half of the forward pass
    if metrics is not None:
        value = np.sum(negative_log(joint_prob[:n_samples]))
        accumulate_metric(metrics, MetricType.NLL, n_samples, value)
    return joint_prob


def evaluate(spn: Spn, eval_operation: Operation, dataset: Dataset, metrics: Metrics):
    """
    Evaluate the NLL of a SPN on a dataset. No weights are updated.

    :param spn: The validated SPN.
    :param eval_operation: The evaluation operation, defining the stop condition.
    :param dataset: The dataset.
    :param metrics: The metrics where to accumulate the NLL.
    :raises ValueError: If the root activations have an unexpected shape.
    """
    n_steps = eval_operation.stop_condition.resolve(dataset.num_batches)
    for _ in range(n_steps):
        # Get the current batch and prefetch the next one
        batch = dataset.end_load_next_batch()
        dataset.begin_load_next_batch()

        joint_prob = spn.forward(batch)
        if joint_prob.shape != (len(batch), spn.root.dimension):
            raise ValueError("Invalid dimension of the joint probability: expected {}, got {}".format(
                (len(batch), spn.root.dimension), joint_prob.shape
            ))
        value = np.sum(negative_log(joint_prob))
        accumulate_metric(metrics, MetricType.NLL, len(batch), value)
