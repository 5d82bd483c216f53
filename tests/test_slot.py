"""Tests for slot buffers, sinks and the slot pool."""

import os

import pytest

from mpssh.hosts import Host
from mpssh.pool import PoolFullError, SlotPool
from mpssh.slot import FileSink, LineBuffer, exit_status


def _host(name: str) -> Host:
    return Host("ops", name)


class TestLineBuffer:
    def test_newline_completes_record(self):
        buf = LineBuffer(120)
        assert buf.feed(b"hello\nwor") == [b"hello"]
        assert buf.feed(b"ld\n") == [b"world"]
        assert len(buf) == 0

    def test_empty_lines_are_records(self):
        assert LineBuffer(120).feed(b"\n\n") == [b"", b""]

    def test_overflow_forces_record_break(self):
        buf = LineBuffer(4)
        assert buf.feed(b"abcdefghij") == [b"abcd", b"efgh"]
        assert buf.flush() == b"ij"

    def test_newline_after_forced_break_adds_no_record(self):
        buf = LineBuffer(4)
        assert buf.feed(b"abcd\nef\n") == [b"abcd", b"ef"]

    def test_newline_after_break_split_across_reads(self):
        buf = LineBuffer(4)
        assert buf.feed(b"abcd") == [b"abcd"]
        assert buf.feed(b"\n\n") == [b""]

    def test_exact_multiple_of_capacity(self):
        assert LineBuffer(2).feed(b"abcd\n") == [b"ab", b"cd"]

    def test_flush_returns_partial_once(self):
        buf = LineBuffer(120)
        buf.feed(b"partial")
        assert buf.flush() == b"partial"
        assert buf.flush() is None

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            LineBuffer(0)


class TestExitStatus:
    def test_normal_exit(self):
        assert exit_status(42) == 42

    def test_signal_maps_to_sentinel(self):
        assert exit_status(-9) == 255


class TestFileSink:
    def test_not_created_until_written(self, tmp_path):
        sink = FileSink(tmp_path / "ops@web1.out")
        assert not sink.path.exists()
        sink.close()
        assert not sink.path.exists()

    def test_written_file_kept(self, tmp_path):
        sink = FileSink(tmp_path / "ops@web1.out")
        sink.write("line one")
        sink.close()
        assert sink.path.read_text() == "line one\n"
        assert sink.bytes_written == 9

    def test_empty_existing_file_removed(self, tmp_path):
        path = tmp_path / "ops@web1.err"
        path.touch()
        FileSink(path).close()
        assert not path.exists()


class TestSlotPool:
    def test_admit_respects_capacity(self):
        pool = SlotPool(2, 120)
        pool.admit(_host("a"))
        pool.admit(_host("b"))
        assert not pool.has_capacity
        with pytest.raises(PoolFullError):
            pool.admit(_host("c"))

    def test_remove_returns_next_slot(self):
        pool = SlotPool(3, 120)
        a = pool.admit(_host("a"))
        b = pool.admit(_host("b"))
        c = pool.admit(_host("c"))
        assert pool.remove(b) is c
        assert pool.remove(c) is a
        assert len(pool) == 1

    def test_removing_last_slot_empties_pool(self):
        pool = SlotPool(2, 120)
        a = pool.admit(_host("a"))
        assert pool.remove(a) is None
        assert pool.cursor is None
        assert not pool
        assert list(pool.walk()) == []

    def test_removed_index_is_reused(self):
        pool = SlotPool(3, 120)
        pool.admit(_host("a"))
        b = pool.admit(_host("b"))
        pool.admit(_host("c"))
        index = b.index
        pool.remove(b)
        d = pool.admit(_host("d"))
        assert d.index == index

    def test_remove_twice_fails(self):
        pool = SlotPool(2, 120)
        a = pool.admit(_host("a"))
        pool.admit(_host("b"))
        pool.remove(a)
        with pytest.raises(KeyError):
            pool.remove(a)

    def test_find_by_process(self):
        pool = SlotPool(2, 120)
        a = pool.admit(_host("a"))
        pool.bind(a, 4242)
        assert pool.find_by_process(4242) is a
        pool.remove(a)
        assert pool.find_by_process(4242) is None

    def test_walk_follows_admission_order(self):
        pool = SlotPool(3, 120)
        for name in "abc":
            pool.admit(_host(name))
        assert [s.host.hostname for s in pool.walk()] == ["a", "b", "c"]
        # Walking does not move the cursor
        assert [s.host.hostname for s in pool.walk()] == ["a", "b", "c"]

    def test_ring_order_survives_index_reuse(self):
        pool = SlotPool(3, 120)
        a = pool.admit(_host("a"))
        b = pool.admit(_host("b"))
        c = pool.admit(_host("c"))
        pool.remove(b)
        d = pool.admit(_host("d"))
        assert d.index == 1
        assert [s.host.hostname for s in pool.walk()] == ["a", "c", "d"]
        assert pool.remove(c) is d
        assert pool.remove(d) is a
        assert pool.remove(a) is None

    def test_pool_reusable_after_emptying(self):
        pool = SlotPool(2, 120)
        pool.remove(pool.admit(_host("a")))
        b = pool.admit(_host("b"))
        c = pool.admit(_host("c"))
        assert pool.cursor == b.index
        assert [s.host.hostname for s in pool] == ["b", "c"]
        assert pool.remove(b) is c

    def test_walk_survives_removal(self):
        pool = SlotPool(3, 120)
        for name in "abc":
            pool.admit(_host(name))
        seen = []
        for slot in pool.walk():
            seen.append(slot.host.hostname)
            pool.remove(slot)
        assert sorted(seen) == ["a", "b", "c"]
        assert not pool

    def test_remove_moves_cursor_off_removed_slot(self):
        pool = SlotPool(3, 120)
        a = pool.admit(_host("a"))
        b = pool.admit(_host("b"))
        assert pool.cursor == a.index
        pool.remove(a)
        assert pool.cursor == b.index


class TestSlotPipes:
    def test_release_closes_everything(self, tmp_path):
        pool = SlotPool(1, 120)
        slot = pool.admit(_host("a"))
        slot.open_pipes()
        slot.open_sinks(tmp_path)
        fds = [slot.stdout.read_fd, slot.stdout.write_fd, slot.stderr.read_fd, slot.stderr.write_fd]
        slot.release()
        for fd in fds:
            with pytest.raises(OSError):
                os.fstat(fd)
        assert list(tmp_path.iterdir()) == []
