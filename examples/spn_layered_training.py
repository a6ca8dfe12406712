import numpy as np

import spnet.spn.learning as spnlearn
import spnet.spn.algorithms as spnalg
import spnet.spn.utils as spnutils
from spnet.data import DataHandler
from spnet.utils import fill_slice

if __name__ == '__main__':
    # Sample some binary data randomly, where the target depends on the first feature
    np.random.seed(42)
    n_samples, n_features = 1000, 4
    x = np.random.binomial(1, p=0.5, size=[n_samples, n_features])
    y = np.where(np.random.rand(n_samples) < 0.9, x[:, 0], 1 - x[:, 0])
    data = np.column_stack([x, y, 1 - y]).astype(np.float32)

    # Describe a layered SPN, whose last two input nodes are the query indicators
    model_data = {
        'name': 'layered',
        'model_type': 'SPN',
        'hyper_params': {'learning_rate': 0.05, 'momentum': 0.5},
        'spn_data': {
            'layers': [
                {'type': 'INPUT', 'name': 'in', 'size': 6,
                 'input_indices': '0 1 2 3 4 5', 'node_list': '0 0 0 0 2 2'},
                {'type': 'PRODUCT', 'name': 'prod', 'product_combinations': 2},
                {'type': 'SUM', 'name': 'sum', 'size': 1}
            ]
        }
    }
    spn = spnlearn.build_spn(model_data, random_state=42)

    # Train the SPN by maximizing the conditional log-likelihood of the target
    train_op = spnlearn.Operation(
        name='train', batch_size=50,
        stop_condition=spnlearn.StopCondition(steps=200),
        checkpoint_after=100, eval_after=50,
        checkpoint_directory='checkpoints'
    )
    eval_op = spnlearn.Operation(name='eval', batch_size=50)
    data_handler = DataHandler(data[:700], valid=data[700:850], test=data[850:])
    spnlearn.train(spn, train_op, data_handler, eval_operation=eval_op)

    # Compute the average conditional likelihood of the target on the test data
    test_data = data[850:]
    marginal_data = fill_slice(test_data.copy(), 1.0, 0, len(test_data), n_features, 2)
    cls = spnalg.likelihood(spn, test_data) / spnalg.likelihood(spn, marginal_data)
    print("Average Conditional Likelihood: {:.4f}".format(np.mean(cls)))

    # Print some statistics about the model's structure and parameters
    print("SPN structure and parameters statistics:")
    print(spnutils.compute_statistics(spn))
