"""Thread-safe circular byte buffer.

The receive thread is the only writer; the session driver and the
transfer/update layers are readers. Every operation holds a single lock
for its own duration and never blocks waiting for space or data, so
callers implement their own poll loops.
"""

import threading
from typing import Optional

DEFAULT_CAPACITY = 8192


class RingBuffer:
    """Fixed-capacity FIFO of bytes with wrap-around.

    Invariants:
        0 <= count <= capacity
        (tail + count) % capacity == head

    Example:
        >>> rb = RingBuffer(8)
        >>> rb.put_bulk(b"AT\\r\\n")
        4
        >>> rb.find_byte(ord("\\n"))
        3
        >>> rb.read_bulk(4)
        b'AT\\r\\n'
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        """Initialize ring buffer.

        Args:
            capacity: Number of bytes the buffer can hold.

        Raises:
            ValueError: If capacity is not positive.
        """
        if capacity <= 0:
            raise ValueError(f"Invalid capacity: {capacity}")

        self._capacity = capacity
        self._buffer = bytearray(capacity)
        self._head = 0
        self._tail = 0
        self._count = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def put(self, byte: int) -> bool:
        """Enqueue one byte. Returns False if the buffer is full."""
        with self._lock:
            if self._count >= self._capacity:
                return False
            self._buffer[self._head] = byte
            self._head = (self._head + 1) % self._capacity
            self._count += 1
            return True

    def put_bulk(self, data: bytes) -> int:
        """Write as much of data as fits.

        Args:
            data: Bytes to enqueue.

        Returns:
            Number of bytes written (0 when full). The caller retries
            the remainder.
        """
        with self._lock:
            to_write = min(len(data), self._capacity - self._count)
            if to_write <= 0:
                return 0

            first = min(to_write, self._capacity - self._head)
            self._buffer[self._head:self._head + first] = data[:first]
            second = to_write - first
            if second > 0:
                self._buffer[0:second] = data[first:to_write]

            self._head = (self._head + to_write) % self._capacity
            self._count += to_write
            return to_write

    def get(self) -> Optional[int]:
        """Dequeue one byte, or None when empty."""
        with self._lock:
            if self._count <= 0:
                return None
            byte = self._buffer[self._tail]
            self._tail = (self._tail + 1) % self._capacity
            self._count -= 1
            return byte

    def read_bulk(self, max_len: int) -> bytes:
        """Dequeue up to max_len bytes."""
        with self._lock:
            data = self._copy_out(max_len)
            self._tail = (self._tail + len(data)) % self._capacity
            self._count -= len(data)
            return data

    def peek(self, index: int) -> Optional[int]:
        """Return the byte at logical offset index from the tail.

        Does not change occupancy. Returns None if index >= count.
        """
        with self._lock:
            if index < 0 or index >= self._count:
                return None
            return self._buffer[(self._tail + index) % self._capacity]

    def peek_bulk(self, max_len: Optional[int] = None) -> bytes:
        """Snapshot up to max_len live bytes (all of them by default).

        The copy is sized to current occupancy and nothing is removed.
        """
        with self._lock:
            return self._copy_out(self._count if max_len is None else max_len)

    def find_byte(self, target: int) -> int:
        """Find the first logical offset of target, or -1 if absent.

        A wrapped region is scanned as two contiguous slices.
        """
        with self._lock:
            count = self._count
            if count <= 0:
                return -1

            if self._tail + count <= self._capacity:
                idx = self._buffer.find(target, self._tail, self._tail + count)
                return idx - self._tail if idx >= 0 else -1

            first = self._capacity - self._tail
            idx = self._buffer.find(target, self._tail, self._capacity)
            if idx >= 0:
                return idx - self._tail

            idx = self._buffer.find(target, 0, count - first)
            return first + idx if idx >= 0 else -1

    def available(self) -> int:
        """Current occupancy. Advisory only; may be stale once returned."""
        return self._count

    def free_space(self) -> int:
        """Remaining capacity. Advisory only."""
        return self._capacity - self._count

    def clear(self) -> None:
        """Drop all buffered bytes."""
        with self._lock:
            self._head = 0
            self._tail = 0
            self._count = 0

    def _copy_out(self, max_len: int) -> bytes:
        """Copy up to max_len bytes starting at tail (lock must be held)."""
        to_read = min(max_len, self._count)
        if to_read <= 0:
            return b""

        first = min(to_read, self._capacity - self._tail)
        data = bytes(self._buffer[self._tail:self._tail + first])
        if to_read > first:
            data += bytes(self._buffer[0:to_read - first])
        return data

    def __len__(self) -> int:
        return self._count

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self._capacity}, count={self._count})"
