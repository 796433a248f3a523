"""Errors shared by the repositories and services."""

from __future__ import annotations

from http import HTTPStatus


class NoDataError(LookupError):
    """Raised when a lookup that expects a record finds none."""

    def __init__(self, message: str = "no data") -> None:
        super().__init__(message)
        self.message = message


class AppError(Exception):
    """An error meant for the client, carrying an HTTP status code."""

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(code, message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        if self.message:
            return self.message
        try:
            return HTTPStatus(self.code).phrase
        except ValueError:
            return f"error {self.code}"

    def __repr__(self) -> str:
        return f"AppError(code={self.code!r}, message={self.message!r})"