class EchoServerError(Exception):
    """Base class for everything the echo server raises."""


class InvalidArgument(EchoServerError, TypeError):
    pass


class AlreadyStarted(EchoServerError, RuntimeError):
    pass


class StartFailed(EchoServerError):
    """
    The server could not be started. The lower level failure is kept as __cause__.
    """


class AddressParseFailed(StartFailed):
    pass


class BindFailed(StartFailed):
    pass


class ListenFailed(StartFailed):
    pass


class WriteRejected(EchoServerError):
    """A write was submitted to a connection that no longer accepts writes."""
