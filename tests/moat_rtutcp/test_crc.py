from __future__ import annotations  # noqa: D100

from moat.rtutcp.crc import check_crc, crc16, crc_bytes


def test_crc16():  # noqa: D103
    assert crc16(b"\x01\x03\x00\x00\x00\x01") == 0x0A84
    assert crc16(b"") == 0xFFFF


def test_crc_bytes():  # noqa: D103
    assert crc_bytes(b"\x01\x03\x00\x00\x00\x01") == bytes.fromhex("84 0a")
    assert crc_bytes(b"\x12\x34\x23\x45\x34\x56\x45\x67") == bytes.fromhex("e2 db")
    assert crc_bytes(bytearray(b"\x01\x03\x00\x00\x00\x01")) == bytes.fromhex("84 0a")


def test_check_crc():  # noqa: D103
    assert check_crc(bytes.fromhex("01 03 00 00 00 01 84 0a"))
    assert not check_crc(bytes.fromhex("01 03 00 00 00 01 0a 84"))
    assert not check_crc(b"\x01")
