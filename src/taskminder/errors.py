# src/taskminder/errors.py

"""Error taxonomy shared by the scheduling subsystem."""

from __future__ import annotations


class TaskminderError(Exception):
    error_type = "Error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TaskminderError):
    """Malformed or missing input. Surfaced to the caller, never retried."""

    error_type = "ValidationError"


class NotFoundError(TaskminderError):
    error_type = "NotFoundError"

    def __init__(self, resource: str, identifier: str | None = None) -> None:
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class ChannelDeliveryError(TaskminderError):
    """A notification channel failed (timeout, provider error)."""

    error_type = "ChannelDeliveryError"

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(f"{channel} delivery failed: {reason}")
        self.channel = channel
        self.reason = reason


class TemplateExpansionError(TaskminderError):
    error_type = "TemplateExpansionError"

    def __init__(self, template_id: str, reason: str) -> None:
        super().__init__(f"template {template_id} failed to expand: {reason}")
        self.template_id = template_id
        self.reason = reason


class InternalError(TaskminderError):
    """Unexpected backend failure (store unreachable, corrupt row)."""

    error_type = "InternalError"
