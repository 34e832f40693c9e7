"""Console rendering of session events.

ConsoleObserver subscribes to a session's EventEmitter and prints what
the modem says and how the transfer is going, using rich markup.
"""

from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape

from fotalink.modem.events import (
    EVENT_CHUNK_PROGRESS,
    EVENT_COMMAND_SENT,
    EVENT_ERROR,
    EVENT_LINE_RECEIVED,
    EVENT_RETRY,
    EVENT_STATE_TRANSITION,
    EVENT_STEP_COMPLETED,
    EVENT_STEP_STARTED,
    EVENT_UPDATE_PROGRESS,
    EventEmitter,
)

HEXDUMP_WIDTH = 16


def format_hexdump(data: bytes, base_offset: int = 0, width: int = HEXDUMP_WIDTH) -> List[str]:
    """Format data as hex rows prefixed with their stream offset.

    Example:
        >>> format_hexdump(b"\\x00\\x01", base_offset=32)
        ['00000020: 00 01']
    """
    rows = []
    for start in range(0, len(data), width):
        row = data[start:start + width]
        hex_bytes = " ".join(f"{b:02X}" for b in row)
        rows.append(f"{base_offset + start:08X}: {hex_bytes}")
    return rows


class ConsoleObserver:
    """Prints session events to a rich console.

    Example:
        >>> observer = ConsoleObserver(Console(), hexdump=True)
        >>> observer.attach(transport.emitter)
        >>> ...
        >>> observer.detach()
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        hexdump: bool = False,
        show_lines: bool = True,
    ):
        self.console = console or Console()
        self.hexdump = hexdump
        self.show_lines = show_lines

        self._emitter: Optional[EventEmitter] = None
        self._subscriptions: List[str] = []
        self._handlers = {
            EVENT_COMMAND_SENT: self._on_command_sent,
            EVENT_LINE_RECEIVED: self._on_line_received,
            EVENT_CHUNK_PROGRESS: self._on_chunk_progress,
            EVENT_RETRY: self._on_retry,
            EVENT_ERROR: self._on_error,
            EVENT_STATE_TRANSITION: self._on_state_transition,
            EVENT_UPDATE_PROGRESS: self._on_update_progress,
            EVENT_STEP_STARTED: self._on_step_started,
            EVENT_STEP_COMPLETED: self._on_step_completed,
        }

    def attach(self, emitter: EventEmitter) -> None:
        """Subscribe to every event type this observer renders."""
        self.detach()
        self._emitter = emitter
        for event_type, handler in self._handlers.items():
            self._subscriptions.append(emitter.subscribe(event_type, handler))

    def detach(self) -> None:
        if self._emitter is None:
            return
        for subscription_id in self._subscriptions:
            self._emitter.unsubscribe(subscription_id)
        self._subscriptions.clear()
        self._emitter = None

    # =========================================================================
    # Handlers
    # =========================================================================

    def _on_command_sent(self, data: Dict[str, Any]) -> None:
        self.console.print(f"[cyan]>>[/cyan] {escape(data['command'])}")

    def _on_line_received(self, data: Dict[str, Any]) -> None:
        if self.show_lines and data["line"].strip():
            self.console.print(f"[dim]<<[/dim] {escape(data['line'])}")

    def _on_chunk_progress(self, data: Dict[str, Any]) -> None:
        if self.hexdump:
            for row in format_hexdump(data["data"], data["segment_start"]):
                self.console.print(row, highlight=False)

        total = data["total_size"]
        received = data["bytes_received"]
        percent = received / total * 100 if total else 100.0
        self.console.print(
            f"Received {data['segment_length']} bytes, "
            f"total progress: {received}/{total} ({percent:.1f}%)"
        )

    def _on_retry(self, data: Dict[str, Any]) -> None:
        self.console.print(
            f"[yellow]Retry {data['attempt']}/{data['max_retries']} "
            f"at offset {data['offset']}:[/yellow] {escape(data['reason'])}"
        )

    def _on_error(self, data: Dict[str, Any]) -> None:
        self.console.print(
            f"[bold red]Error:[/bold red] {escape(data.get('step', ''))} "
            f"{escape(data['error'])}"
        )

    def _on_state_transition(self, data: Dict[str, Any]) -> None:
        self.console.print(f"[magenta]Update state:[/magenta] {data['from']} -> {data['to']}")

    def _on_update_progress(self, data: Dict[str, Any]) -> None:
        self.console.print(f"[green]Update progress:[/green] {data['progress']}")

    def _on_step_started(self, data: Dict[str, Any]) -> None:
        self.console.print(
            f"[bold]Step {data['index']}/{data['total']}:[/bold] {escape(data['step'])}"
        )

    def _on_step_completed(self, data: Dict[str, Any]) -> None:
        self.console.print(
            f"[green]Done[/green] {escape(data['step'])} ({data['duration_ms']:.0f} ms)"
        )
