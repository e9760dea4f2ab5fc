"""
Buffers used by connections to read into and write from.

A Buffer is a single-owner handle over a bytearray. Whoever holds the handle is responsible
for releasing it exactly once. Reads hand their buffer over to the write that echoes it with
Buffer.move(), which returns a new handle over the same memory and leaves the old handle
inert, so a `with buffer:` block around the read releases the memory only if it was not moved.
"""
import logging


logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 256 * 1024
DEFAULT_MAX_FREE = 64


class Buffer:
    __slots__ = ("_pool", "_data", "nbytes", "_moved", "_released")

    def __init__(self, pool: "BufferPool | None", data: bytearray, nbytes: int | None = None):
        self._pool = pool
        self._data = data
        # number of meaningful bytes, i.e. what a write should send
        self.nbytes = len(data) if nbytes is None else nbytes
        self._moved = False
        self._released = False

    def __len__(self) -> int:
        return len(self._data)

    def __bool__(self) -> bool:
        return len(self._data) > 0

    def __repr__(self) -> str:
        return f"<Buffer size={len(self._data)} nbytes={self.nbytes} released={self._released}>"

    @property
    def view(self) -> memoryview:
        """Writable view over the whole buffer, the target of a read."""
        if self._released:
            raise BufferError("buffer used after release")
        return memoryview(self._data)

    @property
    def payload(self) -> memoryview:
        """The first `nbytes` bytes, the source of a write."""
        return self.view[:self.nbytes]

    @property
    def released(self) -> bool:
        return self._released

    def move(self, nbytes: int) -> "Buffer":
        """
        Transfer ownership of the first `nbytes` bytes to a new handle without copying.
        """
        if self._moved or self._released:
            raise BufferError("buffer is no longer owned by this handle")
        self._moved = True
        return Buffer(self._pool, self._data, nbytes)

    def release(self) -> None:
        if self._moved:
            raise BufferError("buffer was moved, release the new owner instead")
        if self._released:
            raise BufferError("buffer released twice")
        self._released = True
        if self._pool is not None:
            self._pool.release(self)

    def __enter__(self) -> "Buffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._moved and not self._released:
            self.release()


class BufferPool:
    """
    Allocates read buffers and takes them back once the write that echoed them finished.

    `allocate` never raises for lack of memory. It returns an empty buffer instead, which the
    caller has to check before reading into it.
    """

    def __init__(self,
                 chunk_size: int = 64 * 1024,
                 max_size: int = DEFAULT_MAX_SIZE,
                 limit: int | None = None,
                 max_free: int = DEFAULT_MAX_FREE):
        self.chunk_size = chunk_size
        self.max_size = max(max_size, chunk_size)
        self.limit = limit
        self.max_free = max_free
        self._free: list[bytearray] = []

        self.allocated = 0
        self.released = 0
        self.failed = 0
        self.outstanding_bytes = 0

    @property
    def outstanding(self) -> int:
        return self.allocated - self.released

    def allocate(self, suggested_size: int) -> Buffer:
        # The suggested size is advisory only.
        size = min(max(suggested_size, 1), self.max_size)
        if self.limit is not None and self.outstanding_bytes + size > self.limit:
            self.failed += 1
            logger.debug("Buffer limit of %d bytes reached", self.limit)
            return Buffer(None, bytearray())

        if size == self.chunk_size and self._free:
            data = self._free.pop()
        else:
            try:
                data = bytearray(size)
            except MemoryError:
                self.failed += 1
                return Buffer(None, bytearray())

        self.allocated += 1
        self.outstanding_bytes += size
        return Buffer(self, data)

    def release(self, buffer: Buffer) -> None:
        data = buffer._data
        self.released += 1
        self.outstanding_bytes -= len(data)
        if len(data) == self.chunk_size and len(self._free) < self.max_free:
            self._free.append(data)
