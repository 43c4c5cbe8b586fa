from __future__ import annotations


class TableVaultError(Exception):
    """Base class for archive/restore failures.

    ``filtered`` marks errors caused by the requester (bad input, missing
    grants, absent artifacts). They are reported to the requester only and
    never retried. ``retryable`` marks errors that leave the warehouse in a
    state where running the same job again is safe.
    """

    code = "INTERNAL_ERROR"
    filtered = False
    retryable = False

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(TableVaultError):
    code = "VALIDATION_ERROR"
    filtered = True


class PermissionDeniedError(TableVaultError):
    code = "PERMISSION_DENIED"
    filtered = True


class DependencyError(TableVaultError):
    code = "DEPENDENT_OBJECTS"
    filtered = True


class SchemaExportError(TableVaultError):
    code = "SCHEMA_EXPORT_FAILED"


class ConstraintResolutionError(TableVaultError):
    code = "CONSTRAINT_RESOLUTION_FAILED"


class ConsistencyError(ConstraintResolutionError):
    code = "CATALOG_INCONSISTENT"


class TransportError(TableVaultError):
    code = "TRANSPORT_ERROR"
    retryable = True


class TransactionError(TableVaultError):
    code = "TRANSACTION_FAILED"
    retryable = True


class ArtifactMissingError(TableVaultError):
    code = "ARTIFACT_MISSING"
    filtered = True


class ArtifactCorruptError(TableVaultError):
    code = "ARTIFACT_CORRUPT"
    filtered = True


class ConcurrentOperationError(TableVaultError):
    code = "OPERATION_IN_PROGRESS"
    filtered = True


class NotFoundError(TableVaultError):
    code = "NOT_FOUND"
    filtered = True


class CleanupWarning(UserWarning):
    """Cleanup after a successful archive or restore did not complete."""


def is_filtered(exc: BaseException) -> bool:
    return isinstance(exc, TableVaultError) and exc.filtered


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, TableVaultError):
        return exc.retryable
    return True
