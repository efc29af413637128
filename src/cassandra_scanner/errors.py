"""Exceptions raised by the scanner."""


class ScannerError(Exception):
    """Base class for all scanner errors."""


class CQLSyntaxError(ScannerError, ValueError):
    """The statement is not a SELECT the scanner can rewrite."""


class TableMetadataError(ScannerError):
    """Partition/clustering key metadata could not be resolved."""


class CheckpointDecodeError(ScannerError):
    """A stored checkpoint payload is not a valid scan state record."""


class CheckpointEncodeError(ScannerError):
    """A scan state could not be serialized."""


class RowFetchError(ScannerError):
    """The driver failed while fetching rows; the scan was ended early."""
