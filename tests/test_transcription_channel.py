"""
Deepgram channel adapter: result parsing, FIFO forwarding, idempotent close,
failure containment. Uses an in-memory upstream socket; no network.
"""
import asyncio
import json
import unittest
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

from streaming.transcription_channel import (
    CLOSE_STREAM_MESSAGE,
    KEEPALIVE_MESSAGE,
    DeepgramChannel,
    DeepgramClient,
    TranscriptEvent,
    build_listen_url,
    parse_result,
)


def results(transcript, is_final=True):
    return json.dumps({
        "type": "Results",
        "is_final": is_final,
        "channel": {"alternatives": [{"transcript": transcript, "confidence": 0.98}]},
    })


class FakeUpstream:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    def push(self, message):
        self._incoming.put_nowait(message)

    def hang_up(self):
        self._incoming.put_nowait(None)

    async def send(self, data):
        if self.closed:
            raise OSError("socket closed")
        self.sent.append(data)

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


async def collect(channel):
    return [event async for event in channel.events()]


class TestParseResult(unittest.TestCase):
    def test_final_result(self):
        self.assertEqual(parse_result(results("  Hello there. ")), TranscriptEvent("Hello there.", True))

    def test_interim_result(self):
        self.assertEqual(parse_result(results("hel", is_final=False)), TranscriptEvent("hel", False))

    def test_empty_transcript_dropped(self):
        self.assertIsNone(parse_result(results("   ")))

    def test_other_message_types_ignored(self):
        self.assertIsNone(parse_result(json.dumps({"type": "Metadata", "request_id": "x"})))
        self.assertIsNone(parse_result(json.dumps({"type": "SpeechStarted"})))

    def test_malformed_payloads(self):
        self.assertIsNone(parse_result("not json"))
        self.assertIsNone(parse_result(json.dumps({"type": "Results", "channel": {}})))
        self.assertIsNone(parse_result(json.dumps({"type": "Results", "channel": {"alternatives": []}})))
        self.assertIsNone(parse_result(json.dumps({"type": "Results", "channel": {"alternatives": [{"transcript": 5}]}})))
        self.assertIsNone(parse_result(json.dumps([1, 2])))

    def test_bytes_message(self):
        self.assertEqual(parse_result(results("hi").encode("utf-8")), TranscriptEvent("hi", True))


class TestListenUrl(unittest.TestCase):
    def test_fixed_parameters(self):
        url = build_listen_url("wss://api.deepgram.com/v1/listen", "nova-2", "en-US")
        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        self.assertEqual(parsed.netloc, "api.deepgram.com")
        self.assertEqual(params["model"], "nova-2")
        self.assertEqual(params["language"], "en-US")
        self.assertEqual(params["encoding"], "linear16")
        self.assertEqual(params["sample_rate"], "16000")
        self.assertEqual(params["channels"], "1")
        self.assertEqual(params["punctuate"], "true")
        self.assertEqual(params["smart_format"], "true")


class TestDeepgramChannel(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.upstream = FakeUpstream()
        self.connect = AsyncMock(return_value=self.upstream)
        self.channel = DeepgramChannel(
            "wss://example/v1/listen?model=nova-2",
            {"Authorization": "Token abc"},
            connect=self.connect,
            keepalive_seconds=0,
            session_id="t",
        )

    async def asyncTearDown(self):
        await self.channel.close()

    async def test_open_passes_auth_header(self):
        ok = await self.channel.open()
        self.assertTrue(ok)
        self.assertTrue(self.channel.is_open)
        args, kwargs = self.connect.call_args
        self.assertEqual(args[0], "wss://example/v1/listen?model=nova-2")
        self.assertEqual(kwargs["additional_headers"], {"Authorization": "Token abc"})

    async def test_send_preserves_order(self):
        await self.channel.open()
        for i in range(5):
            await self.channel.send(bytes([i]) * 4)
        self.assertEqual(self.upstream.sent, [bytes([i]) * 4 for i in range(5)])

    async def test_send_before_open_is_noop(self):
        await self.channel.send(b"\x00\x00")
        self.assertEqual(self.upstream.sent, [])

    async def test_events_skip_empty_and_malformed(self):
        await self.channel.open()
        self.upstream.push(results("HELLO"))
        self.upstream.push("garbage")
        self.upstream.push(results("  "))
        self.upstream.push(json.dumps({"type": "Metadata"}))
        self.upstream.push(results("WORLD"))
        self.upstream.hang_up()
        events = await asyncio.wait_for(collect(self.channel), timeout=1.0)
        self.assertEqual([e.text for e in events], ["HELLO", "WORLD"])

    async def test_close_sends_close_stream_once(self):
        await self.channel.open()
        await self.channel.close()
        await self.channel.close()
        self.assertEqual(self.upstream.sent.count(CLOSE_STREAM_MESSAGE), 1)
        self.assertTrue(self.upstream.closed)
        self.assertTrue(self.channel.is_closed)
        self.assertFalse(self.channel.is_open)
        events = await asyncio.wait_for(collect(self.channel), timeout=1.0)
        self.assertEqual(events, [])

    async def test_send_after_close_is_noop(self):
        await self.channel.open()
        await self.channel.close()
        await self.channel.send(b"late")
        self.assertNotIn(b"late", self.upstream.sent)

    async def test_upstream_drop_ends_stream_without_raising(self):
        await self.channel.open()
        self.upstream.push(results("partial"))
        self.upstream.hang_up()
        events = await asyncio.wait_for(collect(self.channel), timeout=1.0)
        self.assertEqual([e.text for e in events], ["partial"])
        self.assertFalse(self.channel.is_open)
        await self.channel.send(b"\x00")  # no-op, no exception

    async def test_connect_failure_reported_not_raised(self):
        self.connect.side_effect = OSError("connection refused")
        ok = await self.channel.open()
        self.assertFalse(ok)
        self.assertFalse(self.channel.is_open)
        events = await asyncio.wait_for(collect(self.channel), timeout=1.0)
        self.assertEqual(events, [])
        await self.channel.close()

    async def test_send_error_marks_channel_closed(self):
        await self.channel.open()
        self.upstream.closed = True
        await self.channel.send(b"\x01")
        self.assertFalse(self.channel.is_open)

    async def test_keepalive_during_silence(self):
        channel = DeepgramChannel("wss://example", {}, connect=self.connect, keepalive_seconds=0.05)
        await channel.open()
        await asyncio.sleep(0.2)
        await channel.close()
        self.assertIn(KEEPALIVE_MESSAGE, self.upstream.sent)


class TestDeepgramClient(unittest.IsolatedAsyncioTestCase):
    async def test_open_channel_uses_token_and_fixed_params(self):
        upstream = FakeUpstream()
        connect = AsyncMock(return_value=upstream)
        client = DeepgramClient("secret", model="nova-2", keepalive_seconds=0, connect=connect)
        channel = await client.open_channel("abc")
        try:
            self.assertTrue(channel.is_open)
            url = connect.call_args[0][0]
            self.assertTrue(url.startswith("wss://api.deepgram.com/v1/listen?"))
            self.assertIn("encoding=linear16", url)
            self.assertIn("sample_rate=16000", url)
            self.assertEqual(connect.call_args[1]["additional_headers"], {"Authorization": "Token secret"})
        finally:
            await channel.close()

    async def test_each_session_gets_its_own_channel(self):
        connect = AsyncMock(side_effect=lambda *a, **k: FakeUpstream())
        client = DeepgramClient("secret", keepalive_seconds=0, connect=connect)
        first = await client.open_channel("a")
        second = await client.open_channel("b")
        self.assertIsNot(first, second)
        self.assertEqual(connect.await_count, 2)
        await first.close()
        await second.close()


if __name__ == "__main__":
    unittest.main()
