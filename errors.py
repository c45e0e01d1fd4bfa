# ─────────────────────────────────────────────────────────────────
# errors.py — Failure Classification
#
# Every failure the dashboard expects is one of these classes.
# Each carries:
#   code        → short token appended to browser redirects (?error=...)
#   status_code → HTTP status used by the JSON API routes
#
# Messages are safe to show to users: they never include a
# connection string, an access key or a stack trace.
# ─────────────────────────────────────────────────────────────────


class DashboardError(Exception):
    """Base class for every classified dashboard failure."""

    code = "internal"
    status_code = 500
    message = "Internal Server Error"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


# ── (a) validation failures ──────────────────────────────────────

class CredentialError(DashboardError):
    """The uploaded credential bundle could not be turned into a valid bundle."""

    code = "invalid_file"
    status_code = 400
    message = "Invalid configuration file"


class NoFileError(CredentialError):
    code = "no_file"
    message = "No configuration file was uploaded"


class InvalidBundleError(CredentialError):
    code = "invalid_file"
    message = "Configuration file could not be read"


class MissingFieldError(CredentialError):
    """A required bundle field is absent or blank."""

    def __init__(self, field: str):
        self.field = field
        self.code = f"missing_{field.lower()}"
        super().__init__(f"Configuration file is missing {field}")


class InvalidRequest(DashboardError):
    code = "invalid_request"
    status_code = 400
    message = "Invalid request"


# ── (b) connection failures ──────────────────────────────────────

class StoreConnectionError(DashboardError):
    code = "db_unreachable"
    status_code = 503
    message = "Could not connect to the database"


# ── (c) authorization failures ───────────────────────────────────

class GuestModeForbidden(DashboardError):
    code = "guest_forbidden"
    status_code = 403
    message = "This action is not available in guest mode"


class InvalidApiKeyError(DashboardError):
    code = "invalid_api_key"
    status_code = 403
    message = "Forbidden: Invalid API Key"


# ── (d) unauthenticated access ───────────────────────────────────

class Unauthenticated(DashboardError):
    code = "auth_required"
    status_code = 401
    message = "Upload a configuration file or continue as guest"


# ── (e) anticipated data conflicts ───────────────────────────────

class TargetConflict(DashboardError):
    code = "conflict"
    status_code = 409
    message = "Server with this name already exists"


class TargetNotFound(DashboardError):
    code = "not_found"
    status_code = 404
    message = "Server not found"
