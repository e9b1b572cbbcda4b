#!/usr/bin/env python3
"""
Basic "moat-rtutcp" tool: send Modbus-RTU frames to a Modbus-TCP server

"""

from __future__ import annotations

import logging
import struct

import anyio
import asyncclick as click

from .crc import crc_bytes
from .port import DEFAULT_TIMEOUT, MODBUS_PORT, TcpPort

log = logging.getLogger()

# function codes whose reply length the encoder knows
map_kind = {
    "h": 3,  # holding registers
    "i": 4,  # input registers
}


@click.group()
async def main():
    """Modbus-RTU to Modbus-TCP adapter"""

    FORMAT = (
        "%(asctime)-15s %(threadName)-15s %(levelname)-8s %(module)-15s:%(lineno)-8s %(message)s"
    )
    logging.basicConfig(format=FORMAT)
    log.setLevel(logging.WARNING)


def add_host_cfg(c):
    """Helper for server address options"""
    c = click.option("--debug", "-d", is_flag=True, help="Log debug messages")(c)
    c = click.option(
        "--timeout",
        "-t",
        type=float,
        default=DEFAULT_TIMEOUT,
        help="Error if no reply (seconds)",
    )(c)
    c = click.option("--port", "-p", type=int, default=MODBUS_PORT, help="destination port")(c)
    c = click.option("--host", "-h", default="localhost", help="destination host")(c)
    return c


def read_request(unit, function, start, count) -> bytes:
    """Build an RTU request to read @count registers at @start."""
    pdu = struct.pack(">BBHH", unit, function, start, count)
    return pdu + crc_bytes(pdu)


def parse_frame(text, add_crc=False) -> bytes:
    """Hex text to bytes, optionally with the CRC appended"""
    try:
        frame = bytes.fromhex(text)
    except ValueError:
        raise click.BadParameter(f"not a hex string: {text!r}", param_hint="FRAMES") from None
    if add_crc:
        frame += crc_bytes(frame)
    if len(frame) < 8:
        raise click.BadParameter(f"too short for a read request: {text!r}", param_hint="FRAMES")
    return frame


async def _exchange(host, port, timeout, debug, frames):
    if debug:
        log.setLevel(logging.DEBUG)

    async with TcpPort(host, port, timeout=timeout, debug=debug) as p:
        await p.open()
        for frame in frames:
            await p.write(frame)
            try:
                with anyio.fail_after(timeout):
                    reply = await p.receive()
            except TimeoutError:
                raise click.ClickException(f"No reply to {frame.hex(' ')}") from None
            print(reply.hex(" "))
        await p.close()


@main.command(context_settings=dict(show_default=True))
@add_host_cfg
@click.option("--crc", "-c", "add_crc", is_flag=True, help="append the CRC to each frame")
@click.argument("frames", nargs=-1, required=True)
async def send(host, port, timeout, debug, add_crc, frames):
    """
    Send RTU frames to a Modbus-TCP server.

    Each frame is a hex string, including the trailing CRC unless you use
    ``--crc``. The reply is printed as an RTU frame.
    """
    frames = [parse_frame(f, add_crc) for f in frames]
    await _exchange(host, port, timeout, debug, frames)


@main.command(context_settings=dict(show_default=True))
@add_host_cfg
@click.option("--unit", "-u", type=int, default=1, help="unit to query")
@click.option("--kind", "-k", default="h", help="query type: holding, input")
@click.option("--start", "-s", type=int, default=0, help="starting register")
@click.option("--num", "-n", type=int, default=1, help="number of registers")
async def read(host, port, timeout, debug, unit, kind, start, num):
    """
    Read registers from a Modbus-TCP server, via RTU framing.
    """
    try:
        function = map_kind[kind[0]]
    except (KeyError, IndexError):
        raise click.UsageError(f"Unknown kind: {kind!r}") from None
    await _exchange(host, port, timeout, debug, [read_request(unit, function, start, num)])


if __name__ == "__main__":
    main(_anyio_backend="trio")  # pylint: disable=unexpected-keyword-arg
