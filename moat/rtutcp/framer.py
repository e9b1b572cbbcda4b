"""
Translation between Modbus-RTU frames and Modbus-TCP packets.

Nothing in here does any I/O. `FrameEncoder` turns an RTU request into a
TCP packet, `FrameReassembler` turns a TCP byte stream back into RTU
frames. Both share a `TransactionTable` which remembers how long the
reply to each outstanding request will be.
"""

from __future__ import annotations

import enum
import logging
import struct

from .crc import crc_bytes
from .exc import FramingError

_logger = logging.getLogger(__name__)

__all__ = [
    "MAX_TRANSACTIONS",
    "MBAP_LEN",
    "EXCEPTION_FRAME_LEN",
    "TransactionTable",
    "FrameEncoder",
    "FrameReassembler",
    "ReassemblerState",
    "expected_reply_len",
]

MAX_TRANSACTIONS = 64  # transaction IDs wrap at this value
MBAP_LEN = 6  # transaction ID, protocol ID, length
MIN_FRAME_LEN = MBAP_LEN + 3
EXCEPTION_FRAME_LEN = MBAP_LEN + 3  # unit, function|0x80, exception code
EXCEPTION_MARK = 0x80
CRC_LEN = 2

_header = struct.Struct(">HHH")


def expected_reply_len(pdu: bytes) -> int:
    """
    The length of the reply to a register read request, header excluded.

    Unit, function code and byte count, plus two bytes for each register
    requested.
    """
    (count,) = struct.unpack_from(">H", pdu, 4)
    return 3 + count * 2


class TransactionTable:
    """
    Maps transaction IDs (0 to size-1) to the number of bytes the reply
    will carry after the TCP header.

    Entries are overwritten when their ID comes around again; reading an
    entry does not remove it.
    """

    def __init__(self, size=MAX_TRANSACTIONS):
        self.size = size
        self._lengths = [None] * size

    def __repr__(self):
        return f"<TransactionTable:{len(self)}/{self.size}>"

    def __len__(self):
        return sum(1 for x in self._lengths if x is not None)

    def __contains__(self, tid):
        return 0 <= tid < self.size and self._lengths[tid] is not None

    def __setitem__(self, tid, length):
        if not 0 <= tid < self.size:
            raise IndexError(f"Transaction ID {tid} out of range")
        self._lengths[tid] = length

    def __getitem__(self, tid):
        if tid not in self:
            raise FramingError(f"Unknown transaction ID {tid}", transaction_id=tid)
        return self._lengths[tid]

    def clear(self):
        "Forget all transactions"
        self._lengths = [None] * self.size


class FrameEncoder:
    """
    Converts RTU requests to TCP packets.

    The RTU request's trailing CRC is dropped, TCP has its own checks.
    """

    def __init__(self, table: TransactionTable):
        self.table = table
        # the first request gets ID zero
        self.last_transaction_id = table.size - 1

    def next_transaction_id(self) -> int:
        "Allocate the ID for the next request."
        self.last_transaction_id = (self.last_transaction_id + 1) % self.table.size
        return self.last_transaction_id

    def encode(self, pdu: bytes) -> bytes:
        """
        Wrap the RTU request @pdu into a TCP packet.

        The reply length is noted in the transaction table.
        """
        tid = self.next_transaction_id()
        self.table[tid] = expected_reply_len(pdu)
        return _header.pack(tid, 0, len(pdu) - CRC_LEN) + bytes(pdu[:-CRC_LEN])


class ReassemblerState(enum.Enum):
    "States of a `FrameReassembler`"

    ACCUMULATING = "accumulating"
    FRAME_READY = "frame_ready"
    FAULTED = "faulted"


class FrameReassembler:
    """
    Collects TCP data and splits it into RTU frames.

    Usage::

        r = FrameReassembler(table)
        for frame in r.decode(data):
            ...

    A reply whose transaction ID is not in the table raises `FramingError`.
    The reassembler is then faulted; it discards its buffer and refuses
    any more data, as there is no way to find the start of the next frame.
    """

    def __init__(self, table: TransactionTable):
        self.table = table
        self.buffer = bytearray()
        self.state = ReassemblerState.ACCUMULATING
        self.last_transaction_id = None

    def __repr__(self):
        return f"<FrameReassembler:{self.state.name}:{len(self.buffer)}>"

    @property
    def faulted(self):
        "Did an earlier frame have an unknown transaction ID?"
        return self.state is ReassemblerState.FAULTED

    def feed(self, data: bytes):
        """Add received bytes to the buffer."""
        if self.faulted:
            raise FramingError("Reassembler is faulted")
        self.buffer += data

    def _frame_len(self) -> int | None:
        buf = self.buffer
        if len(buf) < MIN_FRAME_LEN:
            return None
        if buf[7] > EXCEPTION_MARK:
            return EXCEPTION_FRAME_LEN
        tid = int.from_bytes(buf[0:2], "big")
        return self.table[tid] + MBAP_LEN

    def next_frame(self) -> bytes | None:
        """
        Return the next complete RTU frame, or `None` if more data is
        required.
        """
        if self.faulted:
            raise FramingError("Reassembler is faulted")
        try:
            flen = self._frame_len()
        except FramingError:
            self._fault()
            raise
        if flen is None or len(self.buffer) < flen:
            return None

        self.state = ReassemblerState.FRAME_READY
        pdu = bytes(self.buffer[MBAP_LEN:flen])
        self.last_transaction_id = int.from_bytes(self.buffer[0:2], "big")
        del self.buffer[:flen]
        self.state = ReassemblerState.ACCUMULATING
        return pdu + crc_bytes(pdu)

    def __iter__(self):
        while True:
            frame = self.next_frame()
            if frame is None:
                return
            yield frame

    def decode(self, data: bytes) -> list[bytes]:
        """Feed @data and return all frames that are now complete."""
        self.feed(data)
        return list(self)

    def reset(self):
        "Drop partial data, e.g. after reconnecting."
        if self.faulted:
            raise FramingError("Reassembler is faulted")
        self.buffer = bytearray()

    def _fault(self):
        _logger.debug("Discarding %d buffered bytes", len(self.buffer))
        self.state = ReassemblerState.FAULTED
        self.buffer = bytearray()
