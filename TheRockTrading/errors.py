import json
from enum import Enum


class TheRockTradingError(Exception):
    """Base class for errors raised by the TheRockTrading client."""


class ParseError(TheRockTradingError, ValueError):
    """A response body that should have been JSON could not be decoded."""

    def __init__(self, message, body=None):
        super().__init__(message)
        self.body = body


class HttpStatusError(TheRockTradingError):
    """The server answered with a non-2xx status that carries no error envelope."""

    def __init__(self, status_code, body=None):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class UnprocessableEntityError(TheRockTradingError):
    """The server rejected the request with 422 Unprocessable Entity."""

    status_code = 422

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class OrderCreationError(UnprocessableEntityError):
    pass


class OrderCancellationError(UnprocessableEntityError):
    pass


class WithdrawalError(UnprocessableEntityError):
    pass


class ErrorKind(Enum):
    """Which error an operation raises when the server answers 422."""

    GENERIC = "generic"
    ORDER_CREATION = "order_creation"
    ORDER_CANCELLATION = "order_cancellation"
    WITHDRAWAL = "withdrawal"

    @property
    def error_class(self):
        return _ERROR_CLASSES[self]


_ERROR_CLASSES = {
    ErrorKind.GENERIC: UnprocessableEntityError,
    ErrorKind.ORDER_CREATION: OrderCreationError,
    ErrorKind.ORDER_CANCELLATION: OrderCancellationError,
    ErrorKind.WITHDRAWAL: WithdrawalError,
}


def describe_response(status_code, reason, body):
    """Plain text rendering of a failed response, used when it has no usable error envelope."""
    return f"{status_code} {reason}: {body}"


def error_messages(body):
    """
    Extracts the messages from an error envelope.

    Args:
        body (str): The raw response body, e.g '{"errors": [{"message": "Insufficient funds"}]}'.

    Returns (list of str): The 'message' of every entry under 'errors', or None if the body
        is not JSON or is not shaped like an error envelope.
    """
    try:
        error = json.loads(body)
    except (TypeError, ValueError):
        return None
    if not isinstance(error, dict) or not isinstance(error.get("errors"), list):
        return None
    messages = [
        str(entry["message"])
        for entry in error["errors"]
        if isinstance(entry, dict) and "message" in entry
    ]
    return messages or None


def map_error(kind, status_code, reason, body):
    """
    Builds the exception for a 422 response according to the operation's error kind.

    The messages of the error envelope are joined with a single space. A body that is not an
    error envelope (empty, HTML, truncated JSON...) falls back to describe_response(), so this
    never raises on its own.

    Args:
        kind (ErrorKind): The error kind selected by the operation.
        status_code (int): The HTTP status of the failed response.
        reason (str): The HTTP reason phrase.
        body (str): The response body text.

    Returns (UnprocessableEntityError): An instance of kind.error_class, ready to be raised.

    Example:
        >>> map_error(ErrorKind.ORDER_CREATION, 422, "Unprocessable Entity",
        ...           '{"errors": [{"message": "Insufficient funds"}]}')
        OrderCreationError('Insufficient funds')
    """
    messages = error_messages(body)
    if messages is None:
        message = describe_response(status_code, reason, body)
    else:
        message = " ".join(messages)
    return ErrorKind(kind).error_class(message)
