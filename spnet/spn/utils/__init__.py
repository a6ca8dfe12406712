from .statistics import compute_statistics, compute_parameters_count, compute_depth
from .validity import check_spn
