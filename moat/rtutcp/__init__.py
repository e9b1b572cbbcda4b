"""
This module lets Modbus-RTU clients talk to Modbus-TCP servers.

`TcpPort` accepts RTU frames, sends them as Modbus-TCP packets, and
reassembles the replies into RTU frames with a freshly computed CRC.

The framing code in `moat.rtutcp.framer` does no I/O and can be used on
its own.
"""

from __future__ import annotations

from .crc import *  # noqa: 403
from .exc import *  # noqa: 403
from .framer import *  # noqa: 403
from .port import *  # noqa: 403
