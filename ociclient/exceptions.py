"""
Exceptions raised by the ociclient package.
"""
from typing import Optional

import requests


class RegistryException(Exception):
    """
    Base class for all errors raised by ociclient.
    """


class ParseError(RegistryException, ValueError):
    """
    Raised when an image reference or an authentication challenge is
    malformed.
    """


class CredentialError(RegistryException):
    """
    Raised when a credential provider fails to produce credentials.
    """


class ResponseError(RegistryException):
    """
    Raised when a registry sends a response that cannot be used. The
    offending response is attached for diagnostics.
    """

    def __init__(
        self, message: str, response: Optional[requests.Response] = None
    ) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status_code(self) -> Optional[int]:
        """
        Returns the HTTP status of the attached response, if any.
        """
        if self.response is None:
            return None
        return self.response.status_code


class ProtocolError(ResponseError):
    """
    Raised when a registry or its token service violates the authentication
    protocol.
    """
