class BedManagementError(Exception):
    """Base class for every failure raised by the bed lifecycle services."""

    kind = "error"
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(BedManagementError):
    kind = "not_found"
    status_code = 404


class ValidationError(BedManagementError):
    kind = "validation_error"
    status_code = 400


class ConflictError(BedManagementError):
    kind = "conflict"
    status_code = 409


class UnavailableError(BedManagementError):
    kind = "unavailable"
    status_code = 409


class UnknownTenantError(NotFoundError):
    kind = "unknown_tenant"
