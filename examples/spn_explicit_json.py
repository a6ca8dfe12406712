import numpy as np

import spnet.spn.structure as spn
import spnet.spn.learning as spnlearn
import spnet.spn.algorithms as spnalg

if __name__ == '__main__':
    # Describe a SPN by its node list, adjacency matrix and input indices
    # The columns of the data are x, y and not y, where y and not y are the query indicators
    model_data = {
        'name': 'explicit',
        'model_type': 'SPN',
        'spn_data': {
            'node_list': '1 6: 0 2 2 4 4 3',
            'input_indices': '1 6: 0 1 2 0 0 0',
            'adjacency_matrix': '6 6: 0 0 0 1 1 0; 0 0 0 1 0 0; 0 0 0 0 1 0; '
                                '0 0 0 0 0 1; 0 0 0 0 0 1; 0 0 0 0 0 0'
        },
        'edges': [
            {'node1': '3', 'node2': '5', 'directed': True, 'weight': 0.3},
            {'node1': '4', 'node2': '5', 'directed': True, 'weight': 0.7}
        ]
    }
    root_spn = spnlearn.build_spn(model_data)

    # Compute the likelihoods of some samples
    data = np.array([[1.0, 1.0, 0.0], [1.0, 0.0, 1.0], [1.0, 1.0, 1.0]], dtype=np.float32)
    print("Likelihoods: {}".format(spnalg.likelihood(root_spn, data)[:, 0].tolist()))

    # Save the full model description, and then the SPN in the node-link JSON format
    model_filename = 'spn-explicit-model.json'
    print("Saving the model description to {} ...".format(model_filename))
    spn.save_model_data(spn.to_model_data(root_spn), model_filename)
    json_filename = 'spn-explicit.json'
    print("Saving the SPN to {} ...".format(json_filename))
    spn.save_spn_json(root_spn, json_filename)

    # Load the SPN again
    loaded_spn = spn.load_spn_json(json_filename)
    print("Loaded SPN: {}".format(loaded_spn))
