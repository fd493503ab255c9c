# app/services/rbac_errors.py
"""
Error types raised by the RBAC catalog, grant stores and permission service.

A missing grant is not an error (it resolves to "no access"). These are for
infrastructure failures and rejected writes.
"""


class RbacError(Exception):
    """Base class for RBAC errors."""


class PermissionBackendError(RbacError):
    """The backing store could not be read or written. Callers must fail closed."""


class InvalidGrantError(RbacError, ValueError):
    """A write was rejected at the boundary (unknown role, undeclared action, ...)."""


class ResourceNotFoundError(RbacError):
    pass


class GrantNotFoundError(RbacError):
    pass


class BulkUpdateError(RbacError):
    """
    A bulk grant update stopped part-way. Items before `failed_index` are
    committed; `updated` reports how many.
    """

    def __init__(self, updated: int, failed_index: int, cause: Exception):
        self.updated = updated
        self.failed_index = failed_index
        self.cause = cause
        super().__init__(
            f"Bulk update failed at item {failed_index} ({cause}); {updated} item(s) were saved."
        )
