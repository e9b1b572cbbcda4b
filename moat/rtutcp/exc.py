"""
Errors raised by the RTU-over-TCP adapter.
"""

from __future__ import annotations

__all__ = [
    "RtuTcpError",
    "FramingError",
    "PortClosedError",
    "PortFaultedError",
]


class RtuTcpError(RuntimeError):
    """Base class for adapter errors"""


class FramingError(RtuTcpError):
    """
    The incoming byte stream could not be split into frames.

    This is fatal for the connection: the port that saw it is faulted and
    must be replaced.
    """

    def __init__(self, msg, transaction_id=None):
        super().__init__(msg)
        self.transaction_id = transaction_id


class PortClosedError(RtuTcpError):
    """The port is not connected."""


class PortFaultedError(RtuTcpError):
    """The port hit a framing error earlier and cannot be used any more."""
