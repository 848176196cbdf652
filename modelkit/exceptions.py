"""
Custom errors raised by the modeling pipeline.
"""


class SchemaError(ValueError):
    """Raised when a column is missing or its type differs from the one seen at fit time."""
    pass


class StratificationError(ValueError):
    """Raised when a stratum has too few records to be split or folded."""
    pass


class UnresolvedParameterError(ValueError):
    """Raised when a tunable placeholder reaches a fit call without a concrete value."""
    pass


class PipelineStateError(Exception):
    """Raised when a recipe or workflow is used before it has been fitted."""
    pass


class TestSetReuseError(Exception):
    """Raised when the test subset of a split is consumed more than once."""
    __test__ = False
