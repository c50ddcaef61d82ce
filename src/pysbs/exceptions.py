"""Custom exception hierarchy for pysbs."""

from __future__ import annotations


class SbsError(Exception):
    """Base exception for all pysbs errors."""


class SbsConfigError(SbsError):
    """Invalid or missing configuration."""


class SbsTransportError(SbsError):
    """Stream or channel failure (connect, read, broker disconnect)."""

    def __init__(
        self,
        message: str,
        *,
        endpoint: str = "",
    ) -> None:
        self.endpoint = endpoint
        super().__init__(message)


class SbsSessionFailedError(SbsError):
    """Subscriber session exhausted its reconnect attempts.

    The session stays in the terminal ``failed`` state until
    :meth:`pysbs.session.SubscriberSession.connect` is called again.
    """
