from .data import HUGE_VALUE, check_data_dtype, check_matrix, negative_log, fill_slice
from .data import matrix_to_debug_string, matrix_from_debug_string, load_matrix
from .random import RandomState, check_random_state, shuffle_rows
from .combinatorics import binomial, combination
from .metrics import MetricType, Metric, Metrics, accumulate_metric, last_metric_average, append_stats
