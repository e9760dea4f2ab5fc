"""
Tests for the buffer pool and single-owner buffer handles.
"""

import pytest

from echoserver.buffers import Buffer, BufferPool


class TestBufferPool:
    """Tests for BufferPool.allocate / release."""

    def test_allocate_uses_suggested_size(self):
        pool = BufferPool(chunk_size=1024)
        buffer = pool.allocate(512)

        assert len(buffer) == 512
        assert buffer
        assert pool.allocated == 1
        assert pool.outstanding == 1
        assert pool.outstanding_bytes == 512

    def test_suggested_size_is_clamped(self):
        pool = BufferPool(chunk_size=1024, max_size=2048)

        assert len(pool.allocate(10_000_000)) == 2048
        assert len(pool.allocate(0)) == 1

    def test_release_updates_counters(self):
        pool = BufferPool(chunk_size=1024)
        buffer = pool.allocate(1024)
        buffer.release()

        assert buffer.released
        assert pool.released == 1
        assert pool.outstanding == 0
        assert pool.outstanding_bytes == 0

    def test_released_chunks_are_reused(self):
        pool = BufferPool(chunk_size=64)
        first = pool.allocate(64)
        data = first._data
        first.release()

        second = pool.allocate(64)
        assert second._data is data

    def test_free_list_is_bounded(self):
        pool = BufferPool(chunk_size=64, max_free=1)
        buffers = [pool.allocate(64) for _ in range(3)]
        for buffer in buffers:
            buffer.release()

        assert len(pool._free) == 1

    def test_limit_makes_allocation_fail(self):
        pool = BufferPool(chunk_size=64, limit=100)
        kept = pool.allocate(64)
        failed = pool.allocate(64)

        assert kept
        assert not failed
        assert len(failed) == 0
        assert pool.failed == 1
        assert pool.allocated == 1

    def test_failed_allocation_release_is_harmless(self):
        pool = BufferPool(chunk_size=64, limit=0)
        failed = pool.allocate(64)
        failed.release()

        assert pool.released == 0


class TestBufferOwnership:
    """Tests for moving and releasing buffers."""

    def test_double_release_raises(self):
        buffer = BufferPool().allocate(16)
        buffer.release()

        with pytest.raises(BufferError):
            buffer.release()

    def test_use_after_release_raises(self):
        buffer = BufferPool().allocate(16)
        buffer.release()

        with pytest.raises(BufferError):
            buffer.view

    def test_move_shares_memory(self):
        pool = BufferPool()
        buffer = pool.allocate(16)
        buffer.view[:5] = b"hello"

        moved = buffer.move(5)

        assert bytes(moved.payload) == b"hello"
        assert moved._data is buffer._data

    def test_moved_handle_cannot_release(self):
        pool = BufferPool()
        buffer = pool.allocate(16)
        moved = buffer.move(4)

        with pytest.raises(BufferError):
            buffer.release()
        with pytest.raises(BufferError):
            buffer.move(4)

        moved.release()
        assert pool.released == 1

    def test_context_manager_releases_unmoved_buffer(self):
        pool = BufferPool()
        with pool.allocate(16):
            pass

        assert pool.outstanding == 0

    def test_context_manager_skips_moved_buffer(self):
        pool = BufferPool()
        with pool.allocate(16) as buffer:
            moved = buffer.move(3)

        assert pool.outstanding == 1
        moved.release()
        assert pool.outstanding == 0

    def test_context_manager_releases_on_error(self):
        pool = BufferPool()
        with pytest.raises(ValueError):
            with pool.allocate(16):
                raise ValueError("boom")

        assert pool.outstanding == 0

    def test_context_manager_after_explicit_release(self):
        pool = BufferPool()
        with pool.allocate(16) as buffer:
            buffer.release()

        assert pool.released == 1

    def test_poolless_buffer(self):
        buffer = Buffer(None, bytearray(b"abc"))

        assert buffer.nbytes == 3
        buffer.release()
        assert buffer.released
