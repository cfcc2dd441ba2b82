"""
Error kinds raised by the mapping registry.

Each carries the HTTP status the API layer answers with, so the transport
can map them without knowing every subclass.
"""


class RegistryError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(RegistryError):
    status_code = 400


class ReservedPathError(ValidationError):
    status_code = 400


class DuplicatePathError(RegistryError):
    status_code = 409


class NotFoundError(RegistryError):
    status_code = 404


class StoreUnavailableError(RegistryError):
    status_code = 503


class SchemaError(RegistryError):
    status_code = 500
