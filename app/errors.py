"""Failure taxonomy shared by catalog clients and the coordination core."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for every failure raised by a catalog client."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class AuthorizationFailure(CatalogError):
    """The server rejected the session (HTTP 401/403).

    Never shown to the user directly; it drives session recovery instead.
    """

    def __init__(self, status_code: int | None = None) -> None:
        super().__init__("Authentication required.", status_code=status_code)


class TransportFailure(CatalogError):
    """Network or server failure, shown as a scoped, dismissible message."""


class DecodingFailure(TransportFailure):
    """The server answered with a payload that could not be interpreted."""

    def __init__(self, message: str = "Invalid response from server.") -> None:
        super().__init__(message)
