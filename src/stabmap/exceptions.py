"""Errors and warnings raised by stabmap.

Contract violations on inputs abort the call. Everything else degrades with a
warning and a documented fallback value.
"""


class StabMapError(Exception):
    """Base class for stabmap errors."""


class InputContractViolation(StabMapError, ValueError):
    """Inputs are missing names, mismatched, or otherwise unusable."""


class DisconnectedTopologyError(StabMapError):
    """Some dataset has no path to any requested reference."""


class StabMapWarning(UserWarning):
    """Base class for recoverable conditions."""


class DisconnectedTopologyWarning(StabMapWarning):
    pass


class UnreachableDatasetWarning(StabMapWarning):
    pass


class UndefinedLocalEstimateWarning(StabMapWarning):
    pass


class NeighborCountExceededWarning(StabMapWarning):
    pass


class PartialEmbeddingWarning(StabMapWarning):
    pass
