"""
Stream Tests
============

Frame buffer, DevTools screencast source and frame worker.
"""

import asyncio
import json

import pytest

from conftest import FakeControl, FakeLink, FakeWebSocket, make_frame
from ft_screencast.pipeline.gate import FailureGate
from ft_screencast.pipeline.handler import FrameHandler
from ft_screencast.pipeline.worker import FrameWorker
from ft_screencast.raster.encoder import RasterEncoder
from ft_screencast.stream.buffer import FrameBuffer
from ft_screencast.stream.frame import Frame, ImageFormat
from ft_screencast.stream.source import (
    CdpError,
    ControlCallError,
    ScreencastOptions,
    ScreencastSource,
)


def screencast_event(session_id, data="abc", timestamp=1700000000.5):
    return {
        "method": "Page.screencastFrame",
        "params": {
            "data": data,
            "metadata": {"timestamp": timestamp, "deviceWidth": 45, "deviceHeight": 35},
            "sessionId": session_id,
        },
    }


class TestFrame:
    """Frame data model."""

    def test_repr_hides_payload(self):
        frame = make_frame("A" * 10000, session_id=5)
        assert "AAAA" not in repr(frame)
        assert "session_id=5" in repr(frame)

    def test_frozen(self):
        frame = make_frame("abc")
        with pytest.raises(Exception):
            frame.session_id = 2


class TestFrameBuffer:
    """Bounded drop-oldest queue."""

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            FrameBuffer(maxsize=0)

    def test_fifo(self):
        async def scenario():
            buffer = FrameBuffer(maxsize=4)
            for i in range(3):
                assert await buffer.put(make_frame("x", session_id=i)) is None
            return [(await buffer.get()).session_id for _ in range(3)]

        assert asyncio.run(scenario()) == [0, 1, 2]

    def test_drops_oldest_and_returns_it(self):
        async def scenario():
            buffer = FrameBuffer(maxsize=2)
            await buffer.put(make_frame("x", session_id=1))
            await buffer.put(make_frame("x", session_id=2))
            dropped = await buffer.put(make_frame("x", session_id=3))
            remaining = [(await buffer.get(timeout=1.0)).session_id for _ in range(2)]
            return dropped, remaining, buffer.metrics()

        dropped, remaining, metrics = asyncio.run(scenario())

        assert dropped.session_id == 1
        assert remaining == [2, 3]
        assert metrics["dropped_count"] == 1
        assert metrics["total_put"] == 3

    def test_get_timeout_returns_none(self):
        async def scenario():
            return await FrameBuffer().get(timeout=0.01)

        assert asyncio.run(scenario()) is None


class TestScreencastOptions:
    """Capture parameter negotiation."""

    def test_to_params(self):
        options = ScreencastOptions(max_width=45, max_height=35, format=ImageFormat.PNG, every_nth_frame=2)
        assert options.to_params() == {
            "format": "png",
            "quality": 100,
            "maxWidth": 45,
            "maxHeight": 35,
            "everyNthFrame": 2,
        }

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_width": 0, "max_height": 10},
            {"max_width": 10, "max_height": 10, "quality": 101},
            {"max_width": 10, "max_height": 10, "every_nth_frame": 0},
        ],
    )
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            ScreencastOptions(**kwargs)


class TestScreencastSource:
    """DevTools message handling against an in-memory websocket."""

    def test_start_sends_screencast_command(self):
        async def scenario():
            ws = FakeWebSocket()
            source = ScreencastSource("ws://test", FrameBuffer())
            source.attach(ws)
            await source.start(ScreencastOptions(max_width=45, max_height=35))
            await source.close()
            return ws.sent

        sent = asyncio.run(scenario())

        assert sent[0]["method"] == "Page.startScreencast"
        assert sent[0]["params"] == {
            "format": "jpeg",
            "quality": 100,
            "maxWidth": 45,
            "maxHeight": 35,
            "everyNthFrame": 1,
        }

    def test_frame_events_become_frames(self):
        async def scenario():
            ws = FakeWebSocket()
            buffer = FrameBuffer()
            source = ScreencastSource("ws://test", buffer)
            source.attach(ws)
            await source.start(ScreencastOptions(max_width=4, max_height=4, format=ImageFormat.PNG))
            ws.push(screencast_event(17, data="iVBORw0KGgo="))
            frame = await buffer.get(timeout=1.0)
            await source.close()
            return frame, source.metrics

        frame, metrics = asyncio.run(scenario())

        assert frame == Frame(
            session_id=17,
            timestamp=1700000000.5,
            format=ImageFormat.PNG,
            data="iVBORw0KGgo=",
        )
        assert metrics.frames_received == 1
        assert metrics.last_session_id == 17

    def test_event_without_session_id_is_skipped(self):
        async def scenario():
            ws = FakeWebSocket()
            buffer = FrameBuffer()
            source = ScreencastSource("ws://test", buffer)
            source.attach(ws)
            ws.push({"method": "Page.screencastFrame", "params": {"data": "abc"}})
            ws.push("not json")
            ws.push(screencast_event(2, data=None))
            frame = await buffer.get(timeout=1.0)
            await source.close()
            return frame, source.metrics

        frame, metrics = asyncio.run(scenario())

        assert frame.session_id == 2
        assert frame.data == ""
        assert metrics.parse_errors == 2

    def test_malformed_metadata_keeps_stream_alive(self):
        """A frame with list metadata is still delivered; the reader keeps going."""
        async def scenario():
            ws = FakeWebSocket()
            buffer = FrameBuffer()
            source = ScreencastSource("ws://test", buffer)
            source.attach(ws)
            ws.push({
                "method": "Page.screencastFrame",
                "params": {"sessionId": 1, "data": "x", "metadata": [1, 2]},
            })
            ws.push({"method": "Page.screencastFrame", "params": [1, 2]})
            ws.push(screencast_event(2))
            first = await buffer.get(timeout=1.0)
            second = await buffer.get(timeout=1.0)
            finished = source.finished
            await source.close()
            return first, second, finished, source.metrics

        first, second, finished, metrics = asyncio.run(scenario())

        assert (first.session_id, first.timestamp, first.data) == (1, 0.0, "x")
        assert second.session_id == 2
        assert not finished
        assert metrics.parse_errors == 2
        assert metrics.frames_received == 2

    def test_message_error_does_not_end_stream(self):
        class FlakySource(ScreencastSource):
            async def _on_frame(self, params):
                if params["sessionId"] == 1:
                    raise RuntimeError("boom")
                await super()._on_frame(params)

        async def scenario():
            ws = FakeWebSocket()
            buffer = FrameBuffer()
            source = FlakySource("ws://test", buffer)
            source.attach(ws)
            ws.push(screencast_event(1))
            ws.push(screencast_event(2))
            frame = await buffer.get(timeout=1.0)
            finished = source.finished
            await source.close()
            return frame, finished, source.metrics

        frame, finished, metrics = asyncio.run(scenario())

        assert frame.session_id == 2
        assert not finished
        assert metrics.parse_errors == 1

    def test_ack_and_stop(self):
        async def scenario():
            ws = FakeWebSocket()
            source = ScreencastSource("ws://test", FrameBuffer())
            source.attach(ws)
            await source.ack(7)
            assert not source.finished
            await source.stop()
            finished = source.finished
            await source.close()
            return ws.sent, finished

        sent, finished = asyncio.run(scenario())

        assert sent[0]["method"] == "Page.screencastFrameAck"
        assert sent[0]["params"] == {"sessionId": 7}
        assert sent[1]["method"] == "Page.stopScreencast"
        assert finished

    def test_error_response_raises(self):
        def responder(command):
            return [{"id": command["id"], "error": {"code": -32000, "message": "No session"}}]

        async def scenario():
            source = ScreencastSource("ws://test", FrameBuffer())
            source.attach(FakeWebSocket(responder))
            with pytest.raises(ControlCallError, match="No session"):
                await source.ack(1)
            with pytest.raises(CdpError, match="No session"):
                await source.send_command("Page.enable")
            await source.close()

        asyncio.run(scenario())

    def test_command_timeout(self):
        async def scenario():
            source = ScreencastSource("ws://test", FrameBuffer(), command_timeout=0.05)
            source.attach(FakeWebSocket(lambda command: []))
            with pytest.raises(CdpError, match="No response"):
                await source.send_command("Page.enable")
            await source.close()

        asyncio.run(scenario())

    def test_not_connected(self):
        async def scenario():
            source = ScreencastSource("ws://test", FrameBuffer())
            with pytest.raises(ControlCallError):
                await source.ack(1)

        asyncio.run(scenario())

    def test_navigate_waits_for_load_event(self):
        def responder(command):
            replies = [{"id": command["id"], "result": {}}]
            if command["method"] == "Page.navigate":
                replies[0]["result"] = {"frameId": "F1"}
                replies.append({"method": "Page.loadEventFired", "params": {"timestamp": 1.0}})
            return replies

        async def scenario():
            ws = FakeWebSocket(responder)
            source = ScreencastSource("ws://test", FrameBuffer())
            source.attach(ws)
            await source.navigate("https://example.com", timeout=1.0)
            await source.close()
            return ws.sent

        sent = asyncio.run(scenario())

        assert [c["method"] for c in sent] == ["Page.enable", "Page.navigate"]
        assert sent[1]["params"] == {"url": "https://example.com"}

    def test_navigate_error(self):
        def responder(command):
            result = {"errorText": "net::ERR_NAME_NOT_RESOLVED"} if command["method"] == "Page.navigate" else {}
            return [{"id": command["id"], "result": result}]

        async def scenario():
            source = ScreencastSource("ws://test", FrameBuffer())
            source.attach(FakeWebSocket(responder))
            with pytest.raises(CdpError, match="ERR_NAME_NOT_RESOLVED"):
                await source.navigate("https://nowhere.invalid", timeout=1.0)
            await source.close()

        asyncio.run(scenario())

    def test_dropped_frames_are_acknowledged(self):
        async def scenario():
            ws = FakeWebSocket()
            buffer = FrameBuffer(maxsize=1)
            source = ScreencastSource("ws://test", buffer)
            source.attach(ws)
            ws.push(screencast_event(1))
            ws.push(screencast_event(2))
            await asyncio.sleep(0.05)
            frame = await buffer.get(timeout=1.0)
            await source.close()
            return frame, ws.sent, source.metrics

        frame, sent, metrics = asyncio.run(scenario())

        assert frame.session_id == 2
        assert sent == [
            {"id": sent[0]["id"], "method": "Page.screencastFrameAck", "params": {"sessionId": 1}}
        ]
        assert metrics.frames_dropped == 1

    def test_disconnect_finishes_stream(self):
        async def scenario():
            ws = FakeWebSocket(lambda command: [])
            source = ScreencastSource("ws://test", FrameBuffer(), command_timeout=5.0)
            source.attach(ws)
            pending = asyncio.create_task(source.send_command("Page.enable"))
            await asyncio.sleep(0.01)
            ws.disconnect()
            await asyncio.wait_for(source.wait_finished(), timeout=1.0)
            with pytest.raises(CdpError, match="closed"):
                await pending
            await source.close()

        asyncio.run(scenario())

    def test_inspector_detached_finishes_stream(self):
        async def scenario():
            ws = FakeWebSocket()
            source = ScreencastSource("ws://test", FrameBuffer())
            source.attach(ws)
            ws.push({"method": "Inspector.detached", "params": {"reason": "target_closed"}})
            await asyncio.wait_for(source.wait_finished(), timeout=1.0)
            await source.close()

        asyncio.run(scenario())


class TestFrameWorker:
    """Buffer consumption."""

    def test_drains_buffer_then_exits_when_finished(self, red_png_b64):
        control, link = FakeControl(), FakeLink()
        handler = FrameHandler(RasterEncoder(), link, FailureGate(), control)

        async def scenario():
            buffer = FrameBuffer(maxsize=8)
            for i in range(5):
                await buffer.put(make_frame(red_png_b64, ImageFormat.PNG, session_id=i))
            worker = FrameWorker(buffer, handler, is_finished=lambda: True, poll_interval=0.01)
            await asyncio.wait_for(worker.run(), timeout=5.0)
            return worker

        worker = asyncio.run(scenario())

        assert worker.frames_processed == 5
        assert control.calls == [("ack", i) for i in range(5)]
        assert len(link.sent) == 5

    def test_unexpected_errors_do_not_kill_worker(self, red_png_b64):
        class ExplodingHandler:
            def __init__(self):
                self.calls = 0

            async def handle(self, frame):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("boom")

        handler = ExplodingHandler()

        async def scenario():
            buffer = FrameBuffer()
            await buffer.put(make_frame(red_png_b64, session_id=1))
            await buffer.put(make_frame(red_png_b64, session_id=2))
            worker = FrameWorker(buffer, handler, is_finished=lambda: True, poll_interval=0.01)
            await asyncio.wait_for(worker.run(), timeout=5.0)
            return worker

        worker = asyncio.run(scenario())

        assert handler.calls == 2
        assert worker.errors == 1
        assert worker.frames_processed == 1

    def test_cancellation(self):
        async def scenario():
            worker = FrameWorker(
                FrameBuffer(), FakeControl(), is_finished=lambda: False, poll_interval=0.01
            )
            task = asyncio.create_task(worker.run())
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
