"""Domain layer: Core abstractions and weight algebra for the round simulator."""

from fl_round_sim.domain.model import GradientCorrection, LocalTrainingConfig, Model
from fl_round_sim.domain.dataset import Batch, ClientRecord, Dataset, DatasetSplit
from fl_round_sim.domain.aggregation import (
    AggregationStrategy,
    Delta,
    add_scaled,
    aggregate_deltas,
    aggregate_weighted,
    check_same_shape,
    compute_param_distance,
    copy_weights,
    diff_weights,
    flatten_params,
    num_parameters,
    unflatten_params,
    zeros_like,
)

__all__ = [
    "Model",
    "LocalTrainingConfig",
    "GradientCorrection",
    "Batch",
    "ClientRecord",
    "Dataset",
    "DatasetSplit",
    "AggregationStrategy",
    "Delta",
    "add_scaled",
    "aggregate_deltas",
    "aggregate_weighted",
    "check_same_shape",
    "compute_param_distance",
    "copy_weights",
    "diff_weights",
    "flatten_params",
    "num_parameters",
    "unflatten_params",
    "zeros_like",
]
