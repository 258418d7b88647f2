"""
Tests for the loopback link and the TCP bridge framing.
"""
import asyncio

import pytest

from uniprov.engine.transport import (
    LoopbackTransport,
    encode_bridge_write,
    read_bridge_write,
)
from uniprov.exceptions import SendError, TransportError


class TestLoopbackTransport:

    @pytest.mark.asyncio
    async def test_writes_are_delivered_to_peer(self):
        central, peripheral = LoopbackTransport.pair()
        received = []
        peripheral.on_receive(received.append)

        await central.send(b"\x01\x02")
        await central.send(b"\x03")

        assert received == [b"\x01\x02", b"\x03"]
        assert central.sent == [b"\x01\x02", b"\x03"]

    @pytest.mark.asyncio
    async def test_async_handler_completes_before_send_returns(self):
        central, peripheral = LoopbackTransport.pair()
        replies = []
        central.on_receive(replies.append)

        async def echo(data):
            await peripheral.send(data[::-1])

        peripheral.on_receive(echo)
        await central.send(b"abc")

        assert replies == [b"cba"]

    @pytest.mark.asyncio
    async def test_close_notifies_both_ends(self):
        central, peripheral = LoopbackTransport.pair()
        events = []
        central.on_disconnect(lambda: events.append("central"))
        peripheral.on_disconnect(lambda: events.append("peripheral"))

        await central.close()
        await central.close()

        assert events == ["central", "peripheral"]
        assert not central.connected
        assert not peripheral.connected

    @pytest.mark.asyncio
    async def test_send_after_close_fails(self):
        central, peripheral = LoopbackTransport.pair()
        await peripheral.close()

        with pytest.raises(TransportError):
            await central.send(b"\x00")


class TestBridgeFraming:

    def test_length_prefix_is_big_endian(self):
        assert encode_bridge_write(b"abc") == b"\x00\x03abc"
        assert encode_bridge_write(bytes(300))[:2] == b"\x01\x2c"

    def test_oversized_write_rejected(self):
        with pytest.raises(SendError):
            encode_bridge_write(bytes(0x10000))

    @pytest.mark.asyncio
    async def test_read_until_eof(self):
        reader = asyncio.StreamReader()
        reader.feed_data(encode_bridge_write(b"first") + encode_bridge_write(b""))
        reader.feed_data(encode_bridge_write(b"third")[:3])
        reader.feed_eof()

        assert await read_bridge_write(reader) == b"first"
        assert await read_bridge_write(reader) == b""
        assert await read_bridge_write(reader) is None
