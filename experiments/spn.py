import os
import time
import json
import argparse

from spnet.utils.data import load_matrix
from spnet.data.dataset import DataHandler
from spnet.spn.utils.statistics import compute_statistics
from spnet.spn.structure.io import load_model_data, to_model_data, save_model_data
from spnet.spn.learning.builder import build_spn
from spnet.spn.learning.operation import StopCondition, Operation
from spnet.spn.learning.training import train
from spnet.utils.metrics import MetricType, last_metric_average

from experiments.utils import evaluate_log_likelihoods


if __name__ == '__main__':
    # Parse the arguments
    parser = argparse.ArgumentParser(
        description="Sum-Product Networks (SPNs) conditional training experiments"
    )
    parser.add_argument(
        'model', help="The JSON model description."
    )
    parser.add_argument(
        'train', help="The train data, either a .npy or a .csv file."
    )
    parser.add_argument(
        '--valid', default=None, help="The validation data, either a .npy or a .csv file."
    )
    parser.add_argument(
        '--test', default=None, help="The test data, either a .npy or a .csv file."
    )
    parser.add_argument(
        '--name', default='train', help="The name of the training operation."
    )
    parser.add_argument(
        '--batch-size', type=int, default=100,
        help="The training batch size. Validation and test batches are twice as large."
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        '--steps', type=int, default=None, help="The number of training steps."
    )
    group.add_argument(
        '--all-processed', action='store_true', help="Whether to train for a single pass over the train data."
    )
    parser.add_argument(
        '--eval-after', type=int, default=100, help="The number of steps between evaluations."
    )
    parser.add_argument(
        '--checkpoint-after', type=int, default=100, help="The number of steps between checkpoints."
    )
    parser.add_argument(
        '--checkpoint-dir', default=None, help="The checkpoint directory. Defaults to the results directory."
    )
    parser.add_argument(
        '--normalize-each-step', action='store_true', help="Whether to normalize the weights after every step."
    )
    parser.add_argument(
        '--randomize', action='store_true', help="Whether to shuffle the train data at every pass."
    )
    parser.add_argument(
        '--seed', type=int, default=42, help="The seed value to use."
    )
    parser.add_argument(
        '--no-verbose', dest='verbose', action='store_false', help="Whether to disable verbose mode."
    )
    args = parser.parse_args()

    # Load the datasets
    data_train = load_matrix(args.train)
    data_valid = load_matrix(args.valid) if args.valid is not None else None
    data_test = load_matrix(args.test) if args.test is not None else None

    # Create the results directory
    model_data = load_model_data(args.model)
    identifier = time.strftime("%Y%m%d-%H%M%S")
    directory = os.path.join('spn', model_data.get('name', 'spn'), identifier)
    os.makedirs(directory, exist_ok=True)
    results_filepath = os.path.join(directory, 'results.json')
    checkpoint_dir = args.checkpoint_dir if args.checkpoint_dir is not None else directory

    # Build the SPN and set the operations
    spn = build_spn(model_data, random_state=args.seed)
    if args.steps is not None:
        stop_condition = StopCondition(steps=args.steps)
    else:
        stop_condition = StopCondition(all_processed=True)
    train_op = Operation(
        name=args.name,
        batch_size=args.batch_size,
        stop_condition=stop_condition,
        checkpoint_after=args.checkpoint_after,
        eval_after=args.eval_after,
        normalize_each_train_step=args.normalize_each_step,
        randomize=args.randomize,
        random_seed=args.seed,
        checkpoint_directory=checkpoint_dir,
        verbose=args.verbose
    )
    eval_op = Operation(name='eval', verbose=args.verbose)
    data_handler = DataHandler(
        data_train, data_valid, data_test,
        randomize=args.randomize, random_seed=args.seed
    )

    # Train the SPN
    start_time = time.perf_counter()
    session = train(spn, train_op, data_handler, eval_operation=eval_op)
    learning_time = time.perf_counter() - start_time
    save_model_data(to_model_data(spn), os.path.join(directory, 'model.json'))

    # Compute the log-likelihoods for the validation and test datasets
    log_likelihoods = dict()
    for kind, data in [('valid', data_valid), ('test', data_test)]:
        if data is not None and len(data) > 0:
            mean_ll, stddev_ll = evaluate_log_likelihoods(spn, data)
            log_likelihoods[kind] = {'mean': mean_ll, 'stddev': stddev_ll}

    # Save the results
    results = {
        'log_likelihood': log_likelihoods,
        'learning_time': learning_time,
        'statistics': compute_statistics(spn),
        'settings': args.__dict__
    }
    if session is not None:
        results['train_nll'] = last_metric_average(session.train_metrics, MetricType.NLL)
        results['best_valid_nll'] = session.best_valid_score
        results['checkpoints'] = session.checkpoints
    with open(results_filepath, 'w') as f:
        json.dump(results, f, indent=4)
