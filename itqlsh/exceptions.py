"""
Exceptions for ITQ-LSH
======================

Caller misuse (wrong table mode, querying an untrained index) raises
``RuntimeError`` subclasses. Problems that depend on the input data or on
the contents of a saved file raise ``ValueError`` subclasses so callers can
recover from them.
"""


class ITQLSHError(Exception):
    """Base class for all ITQ-LSH errors."""


class TableModeError(ITQLSHError, RuntimeError):
    """Operation invoked for the wrong hash-table configuration."""


class NotTrainedError(ITQLSHError, RuntimeError):
    """Hashing requested before projection and rotation are available."""


class DegenerateDataError(ITQLSHError, ValueError):
    """Statistics computed from the data have no spread to normalize by."""


class InsufficientDataError(ITQLSHError, ValueError):
    """Dataset is empty or smaller than the requested training sample."""


class IndexFormatError(ITQLSHError, ValueError):
    """Serialized index stream is truncated, corrupt or inconsistent."""
