"""
Custom exceptions for djstar.

Every error raised by the protocol core derives from ``DjstarError`` and
carries an optional ``hint`` with an actionable suggestion, printed under the
message in development tracebacks.
"""

from typing import Dict, List, Optional


class DjstarError(Exception):
    """Base exception for djstar errors."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class SignalTamperedError(DjstarError):
    """
    Raised when a locked signal submitted by the client does not match the
    server-side record, or the record itself fails decryption.

    Always fatal to the request. The middleware renders it as a security
    violation response; it is never retried.
    """

    status_code = 400

    def __init__(self, message: str = "Signal tampering detected", signal_name: Optional[str] = None):
        super().__init__(message)
        self.signal_name = signal_name


class UnexpectedLockedSignalError(SignalTamperedError):
    """Raised when the client submits a locked signal the server never issued."""

    def __init__(self, signal_name: str):
        super().__init__(
            f"Unexpected locked signal '{signal_name}' was added.",
            signal_name=signal_name,
        )


class InvalidNavigationError(DjstarError, ValueError):
    """Raised for malformed, cross-origin or unresolvable navigation targets."""


class UrlAlreadySetError(InvalidNavigationError):
    """Raised when a response tries to mutate the browser URL more than once."""

    def __init__(self):
        message = "URL can only be set once per response."
        hint = (
            "\n    Use exactly one of url(), push_url(), replace_url(), route_url()\n"
            "    or navigate() per response. Several History API calls in one\n"
            "    response race each other in the browser."
        )
        super().__init__(message, hint)


class NoFallbackResponseError(DjstarError):
    """Raised when a StarResponse is finalized for a plain request without web()."""

    def __init__(self):
        message = "No web response provided for a non-Datastar request."
        hint = (
            "\n    Provide a fallback for ordinary page loads:\n"
            "        return star(request).signals(count=1).web(\n"
            "            lambda: render(request, 'counter.html')\n"
            "        )"
        )
        super().__init__(message, hint)


class StreamTerminated(DjstarError):
    """
    Control-flow exception that ends a streaming callback after a final
    event (redirect, dump or error page) has been written.
    """

    def __init__(self, reason: str = "terminated"):
        super().__init__(f"Stream terminated: {reason}")
        self.reason = reason


class StreamClosed(DjstarError):
    """Raised inside a streaming callback when the client has disconnected."""

    def __init__(self):
        super().__init__("Client disconnected from the event stream.")


class SignalValidationError(DjstarError):
    """
    Raised when signal values fail their declared rules.

    Not a hard failure: the middleware turns it into a ``patch-signals`` event
    pushing ``errors`` back to the client.
    """

    def __init__(self, errors: Dict[str, List[str]]):
        fields = ", ".join(sorted(errors)) or "unknown"
        super().__init__(f"Signal validation failed for: {fields}")
        self.errors = errors


__all__ = [
    "DjstarError",
    "SignalTamperedError",
    "UnexpectedLockedSignalError",
    "InvalidNavigationError",
    "UrlAlreadySetError",
    "NoFallbackResponseError",
    "StreamTerminated",
    "StreamClosed",
    "SignalValidationError",
]
