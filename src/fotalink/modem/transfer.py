"""Chunked download and bulk upload over an AT session.

Downloads are pulled chunk by chunk: each request is answered by one or
more control lines announcing a binary segment length, the raw segment
itself, and a zero-length control line closing the chunk. Uploads push
the whole payload in one write after the modem prompts for it.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from fotalink.config import TransferConfig
from fotalink.modem.events import (
    EVENT_CHUNK_PROGRESS,
    EVENT_RETRY,
    EventEmitter,
)
from fotalink.modem.exceptions import (
    ChunkError,
    PatternTimeoutError,
    ProtocolDesyncError,
    RetryBudgetExhaustedError,
    TransferError,
    WriteTimeoutError,
)
from fotalink.modem.frame_reader import FrameKind, FrameReader, decode_line
from fotalink.modem.polling import Deadline
from fotalink.modem.serial_transport import SerialTransport

logger = logging.getLogger(__name__)

MAX_OFFSET_RETRIES = 5


class Sink(Protocol):
    def write(self, data: bytes) -> Optional[int]: ...


class Source(Protocol):
    def read(self, max_bytes: int) -> bytes: ...


@dataclass
class DownloadState:
    """Progress of one download.

    Attributes:
        total_size: Size declared by the modem.
        offset: Bytes confirmed written to the sink.
        bytes_received: Bytes pulled from the stream.
        retries_remaining: Re-requests left at the current failing offset.
        requests_sent: Chunk requests issued, retries included.
    """

    total_size: int
    offset: int = 0
    bytes_received: int = 0
    retries_remaining: int = MAX_OFFSET_RETRIES
    requests_sent: int = 0
    retry_offset: int = -1

    @property
    def complete(self) -> bool:
        return self.offset >= self.total_size

    @property
    def percent(self) -> float:
        if self.total_size <= 0:
            return 100.0
        return self.bytes_received / self.total_size * 100


class TransferController:
    """Drives multi-step download/upload exchanges.

    Example:
        >>> controller = TransferController(transport, reader)
        >>> with open("firmware.bin", "wb") as sink:
        ...     state = controller.download(sink, total_size=1048576)
        >>> with open("firmware.bin", "rb") as source:
        ...     controller.upload(source, 1048576, command="AT+LFOTA=1,1048576")
    """

    def __init__(
        self,
        transport: SerialTransport,
        reader: FrameReader,
        config: Optional[TransferConfig] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        """Initialize transfer controller.

        Args:
            transport: Transport used for requests and payload writes.
            reader: Framing over the transport's receive buffer.
            config: Transfer settings (defaults to SIMCom HTTPREAD).
            emitter: Observer for progress, retry and error events.
        """
        self.transport = transport
        self.reader = reader
        self.config = config or TransferConfig()
        self.emitter = emitter or transport.emitter

        self._header_re = re.compile(self.config.header_pattern)
        self._error_re = re.compile(self.config.error_pattern)

    # =========================================================================
    # Download
    # =========================================================================

    def download(self, sink: Sink, total_size: int) -> DownloadState:
        """Download total_size bytes into sink.

        Raises:
            RetryBudgetExhaustedError: An offset failed too many times.
            ProtocolDesyncError: A control line or segment was malformed.
            PatternTimeoutError: The modem stopped answering mid-chunk.
            WriteError: A chunk request could not be sent.
        """
        cfg = self.config
        state = DownloadState(total_size=total_size, retries_remaining=cfg.max_offset_retries)
        logger.info("Downloading %d bytes in chunks of %d", total_size, cfg.chunk_size)

        while state.offset < total_size:
            length = min(cfg.chunk_size, total_size - state.offset)
            command = cfg.request_template.format(offset=state.offset, length=length)
            self.transport.send_command(command)
            state.requests_sent += 1

            try:
                received = self._receive_chunk(sink, state, command)
                if received == 0:
                    raise ChunkError(state.offset, "chunk ended without data")
            except ChunkError as e:
                self._handle_chunk_error(state, e)
                continue

            state.retries_remaining = cfg.max_offset_retries

        if state.offset > total_size:
            logger.warning(
                "Received %d bytes, more than the declared %d", state.offset, total_size
            )
        logger.info("Download complete: %d bytes", state.bytes_received)
        return state

    def _receive_chunk(self, sink: Sink, state: DownloadState, command: str) -> int:
        """Consume control lines and segments for one chunk request.

        Unrelated lines (URCs, echoes) do not extend the wait: the next
        control line must arrive within chunk_timeout of the request or
        of the previous segment.
        """
        cfg = self.config
        received = 0
        deadline = Deadline(cfg.chunk_timeout)

        while True:
            line = None if deadline.expired else self.reader.next_line(deadline.remaining())
            if line is None:
                raise PatternTimeoutError(cfg.header_prefix, cfg.chunk_timeout, command)

            text = decode_line(line)
            if self._error_re.search(text):
                raise ChunkError.from_line(state.offset, text)

            match = self._header_re.search(text)
            if match is None:
                if text.startswith(cfg.header_prefix):
                    raise ProtocolDesyncError(f"Malformed control line: {text!r}", line)
                continue

            length = int(match.group(1))
            if length == 0:
                return received

            data = self.reader.read_binary_segment(length, cfg.segment_timeout)
            sink.write(data)

            segment_start = state.bytes_received
            state.offset += length
            state.bytes_received += length
            received += length
            deadline = Deadline(cfg.chunk_timeout)

            logger.debug(
                "Received %d bytes, total progress: %d/%d (%.1f%%)",
                length,
                state.bytes_received,
                state.total_size,
                state.percent,
            )
            self.emitter.emit(
                EVENT_CHUNK_PROGRESS,
                {
                    "segment_length": length,
                    "segment_start": segment_start,
                    "bytes_received": state.bytes_received,
                    "offset": state.offset,
                    "total_size": state.total_size,
                    "data": data,
                },
            )

    def _handle_chunk_error(self, state: DownloadState, error: ChunkError) -> None:
        """Spend one retry at the current offset or give up."""
        max_retries = self.config.max_offset_retries
        if state.offset != state.retry_offset:
            state.retry_offset = state.offset
            state.retries_remaining = max_retries

        if state.retries_remaining <= 0:
            exhausted = RetryBudgetExhaustedError(state.offset, max_retries + 1, error)
            raise exhausted from error

        state.retries_remaining -= 1
        attempt = max_retries - state.retries_remaining
        logger.warning("%s; retry %d/%d", error, attempt, max_retries)
        self.emitter.emit(
            EVENT_RETRY,
            {
                "offset": state.offset,
                "attempt": attempt,
                "max_retries": max_retries,
                "reason": str(error),
            },
        )

    # =========================================================================
    # Upload
    # =========================================================================

    def upload(
        self,
        source: Source,
        size: int,
        command: Optional[str] = None,
        prompt: str = ">",
    ) -> None:
        """Upload size bytes from source in a single write.

        Args:
            source: Payload provider.
            size: Exact number of bytes to send.
            command: Optional command that opens the upload window.
            prompt: Pattern the modem sends when ready for the payload.

        Raises:
            TransferError: The source is short or the command was refused.
            PatternTimeoutError: No prompt or acknowledgement in time.
            WriteTimeoutError: The payload did not leave the host in time.
            WriteShortError: The driver accepted only part of the payload.
        """
        cfg = self.config
        payload = self._read_source(source, size)

        if command:
            self.transport.send_command(command)
            self._wait_for_prompt(prompt, command)

        logger.info("Uploading %d bytes (single write)", size)
        self.transport.write_exact(payload, cfg.upload_write_timeout)

        if not self.transport.drain_output_queue(cfg.upload_drain_timeout):
            raise WriteTimeoutError(cfg.upload_drain_timeout, expected=size, written=size)

        if not self.reader.wait_for_response(cfg.upload_ack, cfg.upload_ack_timeout):
            raise PatternTimeoutError(cfg.upload_ack, cfg.upload_ack_timeout, command)

        logger.info("Upload of %d bytes acknowledged", size)

    def _wait_for_prompt(self, prompt: str, command: str) -> None:
        timeout = self.config.prompt_timeout
        deadline = Deadline(timeout)
        while True:
            result = self.reader.wait_for_pattern_or_line(prompt, deadline.remaining())
            if result.kind is FrameKind.MATCHED:
                return
            if result.kind is FrameKind.TIMEOUT:
                raise PatternTimeoutError(prompt, timeout, command)
            if self._error_re.search(result.text):
                raise TransferError(f"'{command}' refused: {result.text}")

    @staticmethod
    def _read_source(source: Source, size: int) -> bytes:
        payload = bytearray()
        while len(payload) < size:
            data = source.read(size - len(payload))
            if not data:
                break
            payload += data

        if len(payload) != size:
            raise TransferError(f"Source yielded {len(payload)} of {size} bytes")
        return bytes(payload)
