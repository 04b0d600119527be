from .umap_ import UMAP, FitState, find_ab_params
from .errors import (
    UMAPError,
    ConfigError,
    InvalidInputError,
    NumericInstabilityError,
    MetricError,
    FitAbortedError,
)
