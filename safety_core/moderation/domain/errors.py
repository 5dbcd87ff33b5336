"""Exceptions raised by the moderation workflow."""

from __future__ import annotations


class ModerationWorkflowError(Exception):
    """Base class for moderation workflow failures."""


class NotFoundError(ModerationWorkflowError):
    pass


class ReportNotFound(NotFoundError):
    pass


class SuspensionNotFound(NotFoundError):
    pass


class SuspensionValidationError(ModerationWorkflowError):
    pass


class CannotModifyInactive(SuspensionValidationError):
    pass


class CannotModifyPermanent(SuspensionValidationError):
    pass


class CannotModifyWarning(SuspensionValidationError):
    pass


class ReporterBanned(ModerationWorkflowError):
    pass


class ReportAlreadyResolved(ModerationWorkflowError):
    pass


class InvalidResolutionAction(ModerationWorkflowError):
    pass


class InvalidStatusTransition(ModerationWorkflowError):
    pass


class CollaboratorFailure(ModerationWorkflowError):
    """A store, reputation or content call failed while serving ``operation``."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation}: {cause}")
        self.operation = operation
        self.cause = cause
