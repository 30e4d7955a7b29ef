"""Custom exceptions for the fouriergrid package."""


class GridMergeError(Exception):
    """Base exception for all grid merging errors."""

    pass


class ConfigurationError(GridMergeError):
    """Raised when there are configuration-related issues."""

    pass


class DataValidationError(GridMergeError):
    """Raised when input sample arrays fail validation."""

    pass


class InvalidGroupError(GridMergeError):
    """Raised when a group is empty or its boundaries are inconsistent."""

    def __init__(self, message: str, group_index=None):
        super().__init__(message)
        self.group_index = group_index
