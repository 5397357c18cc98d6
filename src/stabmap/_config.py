from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Union

from stabmap.exceptions import InputContractViolation

CLASSIFICATION_TYPES = (
    "adaptive_local",
    "adaptive_labels",
    "uniform_optimised",
    "uniform_fixed",
    "adaptive_density",
)
ERROR_MEASURES = ("simple_error", "balanced_error")
DISCRIMINANTS = ("lda", "svm")

ComponentSpec = Union[int, Mapping[str, int]]


def _check_positive(name: str, value: int) -> None:
    if int(value) != value or value < 1:
        raise InputContractViolation(f"{name} must be a positive integer, got {value!r}")


def _check_components(name: str, value: ComponentSpec) -> None:
    if isinstance(value, Mapping):
        for key, n in value.items():
            _check_positive(f"{name}['{key}']", n)
    else:
        _check_positive(name, value)


@dataclass
class StabMapConfig:
    """Options of the mosaic embedding."""

    n_components_reference: ComponentSpec = 50
    n_components_subset: ComponentSpec = 50
    max_features: int = 1000
    center: bool = True
    scale: bool = True
    discriminant: str = "lda"
    allow_disconnected: bool = False

    def __post_init__(self) -> None:
        _check_components("n_components_reference", self.n_components_reference)
        _check_components("n_components_subset", self.n_components_subset)
        _check_positive("max_features", self.max_features)
        if self.discriminant not in DISCRIMINANTS:
            raise InputContractViolation(
                f"discriminant must be one of {DISCRIMINANTS}, got {self.discriminant!r}"
            )

    def components_reference(self, reference: str) -> int:
        return _resolve(self.n_components_reference, reference, 50)

    def components_subset(self, reference: str) -> int:
        return _resolve(self.n_components_subset, reference, 50)

    def check_component_keys(self, references: Sequence[str]) -> None:
        """Reject per-reference component counts naming no reference."""
        for name in ("n_components_reference", "n_components_subset"):
            value = getattr(self, name)
            if not isinstance(value, Mapping):
                continue
            unknown = [key for key in value if key not in references]
            if unknown:
                raise InputContractViolation(
                    f"{name} names datasets that are not references: {unknown}"
                )


def _resolve(value: ComponentSpec, key: str, default: int) -> int:
    if isinstance(value, Mapping):
        return int(value.get(key, default))
    return int(value)


@dataclass
class ClassificationConfig:
    """Options of the adaptive kNN classification.

    ``k_values`` keeps the order given by the caller since ``uniform_fixed``
    uses its first entry; ``sorted_k`` is the ascending, de-duplicated grid
    that every error matrix is built on.
    """

    type: str = "adaptive_local"
    k_values: Sequence[int] = field(default_factory=lambda: list(range(1, 51)))
    error_measure: str = "simple_error"
    adaptive_nfold: int = 2
    adaptive_nrep: int = 5
    adaptive_local_nhood: int = 100
    adaptive_local_smooth: int = 10
    adaptive_density_maxk: int = 100
    random_state: Optional[int] = None
    n_jobs: int = 1

    def __post_init__(self) -> None:
        if self.type not in CLASSIFICATION_TYPES:
            raise InputContractViolation(
                f"type must be one of {CLASSIFICATION_TYPES}, got {self.type!r}"
            )
        if self.error_measure not in ERROR_MEASURES:
            raise InputContractViolation(
                f"error_measure must be one of {ERROR_MEASURES}, got {self.error_measure!r}"
            )
        k_values = list(self.k_values)
        if len(k_values) == 0:
            raise InputContractViolation("k_values must not be empty")
        for k in k_values:
            _check_positive("k_values", k)
        self.k_values = [int(k) for k in k_values]
        _check_positive("adaptive_nfold", self.adaptive_nfold)
        if self.adaptive_nfold < 2:
            raise InputContractViolation("adaptive_nfold must be at least 2")
        _check_positive("adaptive_nrep", self.adaptive_nrep)
        _check_positive("adaptive_local_nhood", self.adaptive_local_nhood)
        _check_positive("adaptive_local_smooth", self.adaptive_local_smooth)
        _check_positive("adaptive_density_maxk", self.adaptive_density_maxk)

    @property
    def sorted_k(self) -> list[int]:
        return sorted(set(self.k_values))
