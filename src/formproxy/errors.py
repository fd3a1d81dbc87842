from __future__ import annotations


class FormProxyError(Exception):
    """Base class for errors raised by the proxy core."""


class ValidationError(FormProxyError):
    """Bad user input: malformed trigger, empty name, bad URL."""


class NotFoundError(FormProxyError):
    """A form, alias or linkage row does not exist."""


class AuthorizationError(FormProxyError):
    """The actor does not own the resource and holds no override."""


class TransportError(FormProxyError):
    """Store or channel I/O failed."""


class RemoteNotFoundError(TransportError):
    """The remote message is already gone."""


class RemoteForbiddenError(TransportError):
    """The remote side refused the operation."""
