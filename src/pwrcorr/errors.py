"""Error taxonomy shared by the correction modules."""
from __future__ import annotations


class CorrectionError(ValueError):
    """Base class for all errors raised by pwrcorr."""


class FormatError(CorrectionError):
    """A table, configuration or spectrum resource is malformed."""


class RangeError(CorrectionError):
    """Requested evaluation points lie outside the range covered by the tables."""


class ConsistencyError(CorrectionError):
    """Inputs that cannot be combined, such as bundles of different width."""
