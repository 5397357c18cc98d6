from stabmap._config import ClassificationConfig
from stabmap.classification._adaptive_knn import adaptive_knn
from stabmap.classification._classify import build_labels_data_frame, classify_embedding
from stabmap.classification._cross_validation import cross_validated_error, fold_assignments
from stabmap.classification._errors import (
    combine_binary_errors,
    get_adaptive_k,
    get_best_column,
    get_binary_error,
    get_binary_error_from_predictions,
    get_density_k,
    get_mode_first,
    get_query_k,
    gm_mean,
    smooth_local,
    vote_mode_first,
)

__all__ = [
    "classify_embedding",
    "ClassificationConfig",
    "adaptive_knn",
    "build_labels_data_frame",
    "cross_validated_error",
    "fold_assignments",
    "combine_binary_errors",
    "get_adaptive_k",
    "get_best_column",
    "get_binary_error",
    "get_binary_error_from_predictions",
    "get_density_k",
    "get_mode_first",
    "get_query_k",
    "gm_mean",
    "smooth_local",
    "vote_mode_first",
]
