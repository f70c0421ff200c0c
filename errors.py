"""
Error types raised by the catalog, order and auth logic.

Each carries the HTTP status it maps to; the app turns them into a
``{"message": ...}`` response.
"""


class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequest(MarketplaceError):
    status_code = 400


class Unauthorized(MarketplaceError):
    status_code = 401


class Forbidden(MarketplaceError):
    status_code = 403


class NotFound(MarketplaceError):
    status_code = 404


class Conflict(MarketplaceError):
    status_code = 409


class PersistenceError(MarketplaceError):
    status_code = 500
