"""Tests for TransferController.

Downloads and uploads run against the real transport and receive thread
over a scripted in-memory modem.
"""

import io
import threading
import time

import pytest

from fotalink.config import TransferConfig
from fotalink.modem.events import EVENT_CHUNK_PROGRESS, EVENT_RETRY
from fotalink.modem.exceptions import (
    ChunkError,
    PatternTimeoutError,
    ProtocolDesyncError,
    RetryBudgetExhaustedError,
    TransferError,
    WriteTimeoutError,
)
from fotalink.modem.transfer import DownloadState, TransferController


PAYLOAD = bytes(range(256)) * 4


@pytest.fixture
def config():
    return TransferConfig(
        chunk_size=256,
        chunk_timeout=0.5,
        segment_timeout=0.5,
        upload_write_timeout=0.5,
        upload_drain_timeout=0.2,
        upload_ack_timeout=0.5,
        prompt_timeout=0.3,
    )


@pytest.fixture
def controller(transport, reader, config, emitter):
    return TransferController(transport, reader, config, emitter)


def events_of(events, event_type):
    return [e for e in events if e["event_type"] == event_type]


class TestDownloadState:
    """Tests for DownloadState."""

    def test_percent_and_complete(self):
        state = DownloadState(total_size=200, offset=50, bytes_received=50)
        assert state.percent == 25.0
        assert not state.complete

        state.offset = 200
        assert state.complete

    def test_zero_size_is_complete(self):
        assert DownloadState(total_size=0).percent == 100.0


class TestDownload:
    """Tests for chunked download."""

    def test_download_in_chunks(self, controller, modem, fake_port, make_httpread):
        modem.on("AT+HTTPREAD=", make_httpread(PAYLOAD), prefix=True)
        sink = io.BytesIO()

        state = controller.download(sink, len(PAYLOAD))

        assert sink.getvalue() == PAYLOAD
        assert state.offset == len(PAYLOAD)
        assert state.requests_sent == 4
        assert fake_port.commands == [
            "AT+HTTPREAD=0,256",
            "AT+HTTPREAD=256,256",
            "AT+HTTPREAD=512,256",
            "AT+HTTPREAD=768,256",
        ]

    def test_segments_within_one_chunk(
        self, transport, reader, emitter, modem, make_httpread, recorded_events
    ):
        """Headers 100, 100, 0 deliver a 200-byte chunk from one request."""
        payload = bytes(range(200))
        modem.on("AT+HTTPREAD=", make_httpread(payload, segments=2), prefix=True)
        controller = TransferController(
            transport, reader, TransferConfig(chunk_size=4096, chunk_timeout=0.5), emitter
        )
        sink = io.BytesIO()

        state = controller.download(sink, 200)

        assert sink.getvalue() == payload
        assert state.requests_sent == 1
        progress = events_of(recorded_events, EVENT_CHUNK_PROGRESS)
        assert [e["segment_length"] for e in progress] == [100, 100]
        assert [e["segment_start"] for e in progress] == [0, 100]
        assert progress[-1]["bytes_received"] == 200
        assert progress[0]["data"] == payload[:100]

    def test_last_chunk_is_short(self, controller, modem, fake_port, make_httpread):
        payload = PAYLOAD[:300]
        modem.on("AT+HTTPREAD=", make_httpread(payload), prefix=True)
        sink = io.BytesIO()

        controller.download(sink, 300)

        assert sink.getvalue() == payload
        assert fake_port.commands[-1] == "AT+HTTPREAD=256,44"

    def test_recovers_after_five_failures(
        self, controller, modem, fake_port, make_httpread, recorded_events
    ):
        """Five consecutive errors at one offset are still within budget."""
        good = make_httpread(PAYLOAD[:256])
        modem.on("AT+HTTPREAD=", *([b"+CME ERROR: 3\r\n"] * 5 + [good]), prefix=True)
        sink = io.BytesIO()

        state = controller.download(sink, 256)

        assert sink.getvalue() == PAYLOAD[:256]
        assert state.requests_sent == 6
        retries = events_of(recorded_events, EVENT_RETRY)
        assert [e["attempt"] for e in retries] == [1, 2, 3, 4, 5]
        assert all(e["offset"] == 0 for e in retries)
        assert "Operation not allowed" in retries[0]["reason"]

    def test_gives_up_after_six_failures(self, controller, modem, fake_port):
        modem.on("AT+HTTPREAD=", b"ERROR\r\n", prefix=True)

        with pytest.raises(RetryBudgetExhaustedError) as exc_info:
            controller.download(io.BytesIO(), 256)

        assert exc_info.value.offset == 0
        assert exc_info.value.attempts == 6
        assert isinstance(exc_info.value.last_error, ChunkError)
        assert len(fake_port.commands) == 6

    def test_budget_resets_when_offset_advances(self, controller, modem, make_httpread):
        """Failures at different offsets draw on separate budgets."""
        good = make_httpread(PAYLOAD[:512])
        errors = [b"+CME ERROR: 31\r\n"] * 4
        modem.on("AT+HTTPREAD=0,", *(errors + [good]), prefix=True)
        modem.on("AT+HTTPREAD=256,", *(errors + [good]), prefix=True)
        sink = io.BytesIO()

        state = controller.download(sink, 512)

        assert sink.getvalue() == PAYLOAD[:512]
        assert state.requests_sent == 10

    def test_empty_chunk_is_retried(self, controller, modem, make_httpread):
        good = make_httpread(PAYLOAD[:256])
        modem.on("AT+HTTPREAD=", b"OK\r\n+HTTPREAD: 0\r\n", good, prefix=True)
        sink = io.BytesIO()

        state = controller.download(sink, 256)

        assert sink.getvalue() == PAYLOAD[:256]
        assert state.requests_sent == 2

    def test_malformed_header_is_desync(self, controller, modem):
        modem.on("AT+HTTPREAD=", b"+HTTPREAD: DATA,abc\r\n", prefix=True)
        with pytest.raises(ProtocolDesyncError):
            controller.download(io.BytesIO(), 256)

    def test_short_segment_is_desync(self, controller, modem):
        modem.on("AT+HTTPREAD=", b"+HTTPREAD: DATA,256\r\nshort", prefix=True)
        with pytest.raises(ProtocolDesyncError):
            controller.download(io.BytesIO(), 256)

    def test_silent_modem_times_out(self, controller):
        with pytest.raises(PatternTimeoutError) as exc_info:
            controller.download(io.BytesIO(), 256)
        assert exc_info.value.command == "AT+HTTPREAD=0,256"

    def test_unsolicited_lines_do_not_extend_wait(self, controller, fake_port):
        """A stream of URCs without a control line still times out."""
        stop = threading.Event()

        def chatter():
            while not stop.wait(0.1):
                fake_port.feed(b"+CREG: 1\r\n")

        feeder = threading.Thread(target=chatter, daemon=True)
        feeder.start()
        started = time.monotonic()
        try:
            with pytest.raises(PatternTimeoutError):
                controller.download(io.BytesIO(), 256)
        finally:
            stop.set()
            feeder.join(1.0)

        assert time.monotonic() - started < 2.0

    def test_zero_size_sends_nothing(self, controller, fake_port):
        state = controller.download(io.BytesIO(), 0)
        assert state.requests_sent == 0
        assert fake_port.writes == []


class TestUpload:
    """Tests for single-write upload."""

    def test_upload_after_prompt(self, controller, modem, fake_port):
        payload = PAYLOAD[:600]
        modem.on("AT+LFOTA=1,600", b"\r\n>")
        modem.fallback = b"\r\nOK\r\n"

        controller.upload(io.BytesIO(payload), 600, command="AT+LFOTA=1,600")

        assert fake_port.writes[0] == b"AT+LFOTA=1,600\r\n"
        assert fake_port.writes[1] == payload
        assert len(fake_port.writes) == 2

    def test_upload_without_command(self, controller, modem, fake_port):
        modem.fallback = b"OK\r\n"
        controller.upload(io.BytesIO(b"abc"), 3)
        assert fake_port.writes == [b"abc"]

    def test_prompt_after_unrelated_lines(self, controller, modem):
        modem.on("AT+LFOTA=1,3", b"+CREG: 1\r\n\r\n>")
        modem.fallback = b"OK\r\n"
        controller.upload(io.BytesIO(b"abc"), 3, command="AT+LFOTA=1,3")

    def test_command_refused(self, controller, modem, fake_port):
        modem.on("AT+LFOTA=1,3", b"+CME ERROR: 4\r\n")
        with pytest.raises(TransferError, match="refused"):
            controller.upload(io.BytesIO(b"abc"), 3, command="AT+LFOTA=1,3")
        assert len(fake_port.writes) == 1

    def test_no_prompt(self, controller, fake_port):
        with pytest.raises(PatternTimeoutError):
            controller.upload(io.BytesIO(b"abc"), 3, command="AT+LFOTA=1,3")
        assert len(fake_port.writes) == 1

    def test_short_source(self, controller, fake_port):
        with pytest.raises(TransferError, match="2 of 3 bytes"):
            controller.upload(io.BytesIO(b"ab"), 3, command="AT+LFOTA=1,3")
        assert fake_port.writes == []

    def test_stalled_write(self, controller, fake_port):
        fake_port.stall_writes = True
        with pytest.raises(WriteTimeoutError):
            controller.upload(io.BytesIO(b"abc"), 3)

    def test_output_never_drains(self, controller, fake_port):
        fake_port.pending_output = 3
        with pytest.raises(WriteTimeoutError):
            controller.upload(io.BytesIO(b"abc"), 3)

    def test_missing_acknowledgement(self, controller, fake_port):
        with pytest.raises(PatternTimeoutError):
            controller.upload(io.BytesIO(b"abc"), 3)
