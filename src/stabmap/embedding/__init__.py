from stabmap.embedding._projection import (
    CompositeModel,
    DiscriminantModel,
    LinearWeights,
    ProjectionModel,
    apply_projection,
    fit_discriminant,
    fit_linear_weights,
)
from stabmap.embedding._reweight import reweight_embedding
from stabmap.embedding._stabmap import PathModel, stab_map

__all__ = [
    "stab_map",
    "reweight_embedding",
    "PathModel",
    "ProjectionModel",
    "LinearWeights",
    "DiscriminantModel",
    "CompositeModel",
    "apply_projection",
    "fit_linear_weights",
    "fit_discriminant",
]
