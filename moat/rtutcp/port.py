"""
A Modbus-RTU "port" that actually talks Modbus-TCP.

Clients hand RTU frames (including their CRC) to `TcpPort.write` and get
RTU frames back; on the wire the port speaks Modbus-TCP.
"""

from __future__ import annotations

import enum
import logging
import math
from contextlib import asynccontextmanager

import anyio
from anyio import ClosedResourceError

from .exc import FramingError, PortClosedError, PortFaultedError
from .framer import FrameEncoder, FrameReassembler, TransactionTable

_logger = logging.getLogger(__name__)

__all__ = [
    "TcpPort",
    "PortState",
    "MODBUS_PORT",
]

MODBUS_PORT = 502
DEFAULT_TIMEOUT = 10
RECV_SIZE = 4096

_TRANSPORT_ERRORS = (
    OSError,
    ClosedResourceError,
    anyio.BrokenResourceError,
)


class PortState(enum.Enum):
    "Connection states of a `TcpPort`"

    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    FAULTED = "faulted"


class TcpPort:
    """
    Simulate a Modbus-RTU port using a Modbus-TCP connection.

    Use as::

        async with TcpPort("plc.example", on_frame=handle) as port:
            await port.open()
            await port.write(rtu_request)
            ...
            await port.close()

    Replies are passed to @on_frame. Without that callback they are
    queued; read them with `receive` or by iterating the port.

    @on_close is called with ``None`` or the error whenever an open
    connection ends, including when a framing error faults the port.

    `open` and `close` accept a completion callback. Only one can be
    pending: a second `open` or `close` before the first one completes
    replaces it, and the earlier callback is never called. An `open`
    while connecting waits for the attempt in progress; an `open` while
    closing drops the old connection at once.
    """

    _tg = None
    __ctx = None

    def __init__(
        self,
        addr,
        port=None,
        *,
        timeout=DEFAULT_TIMEOUT,
        debug=False,
        on_frame=None,
        on_close=None,
    ):
        self.addr = addr
        self.port = port or MODBUS_PORT
        self.timeout = timeout

        self.stream = None
        self.state = PortState.CLOSED
        self.fault = None
        self._callback = None
        self._on_frame = on_frame
        self._on_close = on_close
        self._closed = None
        self._connect_done = None
        self._send_lock = None

        self.table = TransactionTable()
        self.encoder = FrameEncoder(self.table)
        self.reassembler = FrameReassembler(self.table)
        self._frames_w, self._frames_r = anyio.create_memory_object_stream(math.inf)

        log = logging.getLogger(f"modbus.rtutcp.{addr}")
        self._trace = log.info if debug else log.debug

    @classmethod
    def from_cfg(cls, cfg, **kw):
        """
        Build a port from a config mapping.

        Recognized keys: ``host`` (or ``addr``), ``port``, ``timeout``,
        ``debug``. Keyword arguments (callbacks, mostly) are passed through.
        """
        try:
            addr = cfg["host"]
        except KeyError:
            try:
                addr = cfg["addr"]
            except KeyError:
                raise ValueError("No host in config") from None
        for k in ("timeout", "debug"):
            if k in cfg:
                kw.setdefault(k, cfg[k])
        return cls(addr, cfg.get("port", None), **kw)

    def __repr__(self):
        return f"<TcpPort:{self.addr}:{self.port}:{self.state.name}>"

    # context management #

    async def __aenter__(self):
        if self.__ctx is not None:
            raise RuntimeError("Nested contexts")
        ctx = self._ctx()
        self.__ctx = ctx
        return await ctx.__aenter__()

    def __aexit__(self, *tb):
        try:
            return self.__ctx.__aexit__(*tb)
        finally:
            self.__ctx = None

    @asynccontextmanager
    async def _ctx(self):
        self._send_lock = anyio.Lock()
        self._frames_w, self._frames_r = anyio.create_memory_object_stream(math.inf)
        try:
            async with anyio.create_task_group() as tg:
                self._tg = tg
                yield self
                tg.cancel_scope.cancel()
        finally:
            self._tg = None
            if self.stream is not None:
                await self._shutdown(self.stream, None)
            elif self.state is not PortState.FAULTED:
                self.state = PortState.CLOSED
            self._frames_w.close()

    # lifecycle #

    def isOpen(self):  # noqa: N802
        "Check if the port is open"
        return self.is_open

    @property
    def is_open(self):
        return self.state is PortState.OPEN

    def _check_usable(self):
        if self.state is PortState.FAULTED:
            raise PortFaultedError(f"{self!r} is faulted") from self.fault

    def _set_callback(self, callback):
        if self._callback is not None:
            _logger.warning("%r: dropping pending callback %r", self, self._callback)
        self._callback = callback

    def _handle_callback(self, *err):
        # call the pending callback only once, for the first event
        # that triggers it
        cb, self._callback = self._callback, None
        if cb is not None:
            cb(*err)

    async def open(self, callback=None):
        """
        Connect to the Modbus-TCP server.

        @callback is called with ``None`` when the connection is up, or
        with the error if it fails. Without a callback, errors are raised.
        """
        self._check_usable()
        if self._tg is None:
            raise RuntimeError(f"{self!r}: use 'async with'")
        if self.is_open:
            if callback is not None:
                callback(None)
            return

        if self.state is PortState.CONNECTING:
            # the connection attempt in progress reports to the new callback
            self._set_callback(callback)
            await self._connect_done.wait()
            if callback is None and not self.is_open:
                raise PortClosedError(f"{self!r}: connecting failed")
            return

        self._set_callback(callback)
        if self.state is PortState.CLOSING:
            await self._shutdown(self.stream, None, notify=False)

        self.state = PortState.CONNECTING
        self._connect_done = done = anyio.Event()
        try:
            with anyio.fail_after(self.timeout):
                stream = await anyio.connect_tcp(self.addr, self.port)
        except (OSError, TimeoutError) as exc:
            done.set()
            _logger.error("Connect to %s:%d: %r", self.addr, self.port, exc)
            if self.state is PortState.CONNECTING:
                self.state = PortState.CLOSED
            if self._callback is None:
                raise
            self._handle_callback(exc)
            return

        done.set()
        _logger.debug("Connected to %s:%d", self.addr, self.port)
        self.stream = stream
        self.reassembler.reset()
        self.state = PortState.OPEN
        self._closed = anyio.Event()
        self._tg.start_soon(self._reader, stream)
        self._handle_callback(None)

    async def close(self, callback=None):
        """
        Gracefully shut down the connection.

        If the port is not open, @callback is called immediately without
        arguments. Otherwise it's called with the reason once the
        connection is closed: ``None``, or the error that ended it.
        """
        if not self.is_open:
            if callback is not None:
                callback()
            return

        self._set_callback(callback)
        self.state = PortState.CLOSING
        stream = self.stream
        closed = self._closed
        try:
            await stream.send_eof()
        except _TRANSPORT_ERRORS as exc:
            await self._shutdown(stream, exc)
            return

        with anyio.move_on_after(self.timeout):
            await closed.wait()
            return
        _logger.debug("%r: no EOF from peer, closing", self)
        await self._shutdown(stream, None)

    async def _shutdown(self, stream, exc, notify=True):
        if stream is not self.stream:
            return
        self.stream = None
        await anyio.aclose_forcefully(stream)
        if exc is None:
            _logger.debug("Closed %s:%d", self.addr, self.port)
        else:
            _logger.error("Connection to %s:%d: %r", self.addr, self.port, exc)
        if self.state is not PortState.FAULTED:
            self.state = PortState.CLOSED
        self._closed.set()
        if notify:
            self._handle_callback(exc)
        if self._on_close is not None:
            self._on_close(exc)

    # data #

    async def write(self, pdu: bytes):
        """
        Send an RTU request to the Modbus-TCP server.

        The request's CRC is removed and a TCP header is prepended. The
        reply will be reassembled and delivered as an RTU frame.
        """
        self._check_usable()
        if not self.is_open:
            raise PortClosedError(f"{self!r} is not open")

        packet = self.encoder.encode(pdu)
        self._trace("send: %s", packet.hex(" "))
        stream = self.stream
        try:
            async with self._send_lock:
                await stream.send(packet)
        except _TRANSPORT_ERRORS as exc:
            await self._shutdown(stream, exc)
            raise PortClosedError(f"{self!r}: write failed") from exc

    async def _reader(self, stream):
        while True:
            try:
                data = await stream.receive(RECV_SIZE)
            except anyio.EndOfStream:
                await self._shutdown(stream, None)
                return
            except _TRANSPORT_ERRORS as exc:
                await self._shutdown(stream, exc)
                return

            self._trace("recv: %s", data.hex(" "))
            self.reassembler.feed(data)
            try:
                while (frame := self.reassembler.next_frame()) is not None:
                    self._deliver(frame)
            except FramingError as exc:
                await self._fail(stream, exc)
                return

    def _deliver(self, frame):
        self._trace("frame: %s", frame.hex(" "))
        if self._on_frame is not None:
            self._on_frame(frame)
        else:
            self._frames_w.send_nowait(frame)

    async def _fail(self, stream, exc):
        # the buffer cannot be resynchronized: kill the connection
        # and refuse to do anything else
        self.state = PortState.FAULTED
        self.fault = exc
        self._frames_w.close()
        await self._shutdown(stream, exc)

    async def receive(self) -> bytes:
        """
        Return the next reassembled RTU frame.

        Only useful without an ``on_frame`` callback.
        """
        try:
            return await self._frames_r.receive()
        except anyio.EndOfStream:
            self._check_usable()
            raise

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return await self.receive()
        except anyio.EndOfStream:
            raise StopAsyncIteration from None
