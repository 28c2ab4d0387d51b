"""Status definitions and exceptions for FinTrack.

This module provides:
    - Status: enumeration of possible application states
    - STATUS_MESSAGE: user-facing messages for each status
    - get_message: retrieve the message for a status
    - BaseStatusException: base exception carrying a Status
    - Specific exceptions raised by the table store, auth and validation layers
"""
import enum
import logging
from typing import Dict


class Status(enum.StrEnum):
    """Enumeration of application status codes."""
    UnknownStatus = enum.auto()
    Okay = enum.auto()

    # Config status
    ConfigNotFound = enum.auto()
    ConfigInvalid = enum.auto()

    # Authentication status
    ClientSecretNotFound = enum.auto()
    ClientSecretInvalid = enum.auto()
    CredsInvalid = enum.auto()
    NotAuthenticated = enum.auto()

    # Remote table store status
    SpreadsheetIdNotConfigured = enum.auto()
    TableNotFound = enum.auto()
    RecordNotFound = enum.auto()
    ServiceUnavailable = enum.auto()

    # Input status
    ValidationFailed = enum.auto()


STATUS_MESSAGE: Dict[Status, str] = {
    Status.UnknownStatus: 'Unknown status. Please check the settings.',
    Status.Okay: 'Everything is okay.',

    Status.ConfigNotFound: 'Could not find the settings file.',
    Status.ConfigInvalid: 'The settings file seems to be incomplete, or contains invalid values.',

    Status.ClientSecretNotFound: 'Could not find the google client secret. Have you set up a valid Google client secret?',
    Status.ClientSecretInvalid: 'Could not verify the client secret. Have you set up a valid Google client secret?',
    Status.CredsInvalid: 'Could not verify the credentials. Please sign in again to your Google account.',
    Status.NotAuthenticated: 'Authentication error. Try signing in again to your Google account.',

    Status.SpreadsheetIdNotConfigured: 'Could not find a valid spreadsheet id. Have you set up a valid spreadsheet id in the settings?',
    Status.TableNotFound: 'Could not find the table. Does the spreadsheet have a worksheet for every collection?',
    Status.RecordNotFound: 'Could not find the record in the remote table.',
    Status.ServiceUnavailable: 'The remote service is unavailable. Please check your connection.',

    Status.ValidationFailed: 'Some of the entered values are missing or invalid.',
}


def get_message(status: Status) -> str:
    """
    Get the message for a given status.

    Args:
        status (Status): The status enum.

    Returns:
        str: The message associated with the status.
    """
    return STATUS_MESSAGE.get(status, 'Unknown status')


class BaseStatusException(Exception):
    """Base exception for status-based errors in FinTrack.

    Attributes:
        status (Status): Status code associated with this error.
        status_message (str): User-facing message for the status.

    Args:
        message (str): Optional additional context for the error.
    """
    status = Status.UnknownStatus

    def __init__(self, message: str = None):
        self.status_message = get_message(self.status)
        self.detail = message
        exception_message = f'{self.status_message} {message}' if message else self.status_message
        super().__init__(exception_message)

        logging.error(exception_message)

        from ..core.signals import signals
        signals.error.emit(message or self.status_message)


class ConfigNotFoundException(BaseStatusException):
    """Exception raised when the settings file cannot be found."""
    status = Status.ConfigNotFound


class ConfigInvalidException(BaseStatusException):
    """Exception raised when the settings file is invalid or malformed."""
    status = Status.ConfigInvalid


class ClientSecretNotFoundException(BaseStatusException):
    """Exception raised when the Google OAuth client secret file cannot be found."""
    status = Status.ClientSecretNotFound


class ClientSecretInvalidException(BaseStatusException):
    """Exception raised when the Google OAuth client secret is invalid or malformed."""
    status = Status.ClientSecretInvalid


class CredsInvalidException(BaseStatusException):
    """Exception raised when stored Google credentials are invalid or expired."""
    status = Status.CredsInvalid


class AuthenticationExceptionException(BaseStatusException):
    """Exception raised when user is not authenticated with Google services."""
    status = Status.NotAuthenticated


class SpreadsheetIdNotConfiguredException(BaseStatusException):
    """Exception raised when the spreadsheet ID is not configured in settings."""
    status = Status.SpreadsheetIdNotConfigured


class TableNotFoundException(BaseStatusException):
    """Exception raised when a collection has no backing table in the remote store."""
    status = Status.TableNotFound


class RecordNotFoundException(BaseStatusException):
    """Exception raised when a remote update or delete matches no row."""
    status = Status.RecordNotFound


class ServiceUnavailableException(BaseStatusException):
    """Exception raised when the remote table store cannot be reached."""
    status = Status.ServiceUnavailable


class ValidationFailedException(BaseStatusException):
    """Exception raised when user input is rejected before reaching the ledger store."""
    status = Status.ValidationFailed
