from __future__ import annotations


class ContextFlowError(Exception):
    pass


class ConfigUnavailable(ContextFlowError):
    """Config file missing or unreadable; callers fall back to defaults."""


class ConfigMalformed(ContextFlowError):
    """Config file could not be parsed into a mapping."""


class IgnoreSourceUnavailable(ContextFlowError):
    pass


class DiffUnavailable(ContextFlowError):
    """No version-controlled tree, or the diff process failed or timed out."""


class PatternInvalid(ContextFlowError):
    pass


class PublishFailure(ContextFlowError):
    def __init__(self, target: str, message: str):
        super().__init__(f"{target}: {message}")
        self.target = target


class WatcherFault(ContextFlowError):
    """The watch subscription itself failed. Not recoverable."""
