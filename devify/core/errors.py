"""
Exceptions for Devify.

Expected outcomes (validation failures, security blocks) are returned as
values. These exceptions are reserved for genuine faults.
"""


class DevifyError(Exception):
    """Base exception for Devify."""


class ProviderError(DevifyError):
    """The model provider call failed outright."""

    def __init__(self, message: str, cause: Exception = None):
        super().__init__(message)
        self.cause = cause


class ToolExecutionError(DevifyError):
    """A collaborator failed while a tool was running."""

    def __init__(self, tool: str, message: str):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.message = message
