"""
Exceptions raised by the xAPI client.

Every error carries a human readable message plus, where the broker supplied
them, its error code and the raw response frame.
"""

from typing import Optional


class XApiError(Exception):
    """Base exception for xAPI errors."""

    def __init__(self, message: str, code: Optional[str] = None, response: Optional[dict] = None):
        self.message = message
        self.code = code
        self.response = response
        super().__init__(message)


class XApiNotLoggedInError(XApiError):
    """Operation attempted before a successful login."""

    def __init__(self, message: str = "Not logged in"):
        super().__init__(message)


class XApiLoginError(XApiError):
    """Broker refused the login."""

    def __init__(self, code: Optional[str], description: str, response: Optional[dict] = None):
        self.description = description
        super().__init__(f"Could not log in: {description} ({code})", code=code, response=response)


class XApiOperationError(XApiError):
    """Broker reported an error for a tagged request or stream."""

    def __init__(self, tag: str, code: Optional[str], description: str, response: Optional[dict] = None):
        self.tag = tag
        self.description = description
        super().__init__(
            f"Call with customTag {tag} failed: {description} (code: {code})",
            code=code,
            response=response,
        )


class XApiRequestInProgressError(XApiError):
    """A request with the same custom tag is still awaiting its reply."""
    pass


class XApiConnectionError(XApiError):
    """Connection could not be opened or is missing."""
    pass


class XApiTransportError(XApiConnectionError):
    """Connection closed abnormally or failed while reading."""

    def __init__(self, message: str, close_code: Optional[int] = None):
        self.close_code = close_code
        super().__init__(message)


class XApiProtocolError(XApiError):
    """Received frame could not be decoded."""
    pass


class XApiConsistencyError(XApiError):
    """Broker response failed a sanity check."""
    pass
