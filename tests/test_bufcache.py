import pytest

from xv6fs.bufcache import BlockDevice, BufferCache
from xv6fs.layout import BSIZE, FSSIZE, KernelPanic


def test_device_default_size():
    assert BlockDevice().nblocks == FSSIZE


def test_device_block_round_trip():
    dev = BlockDevice(8)
    payload = bytes(range(256)) * 2
    dev.write_block(3, payload)
    assert dev.read_block(3) == payload
    assert dev.read_block(2) == bytes(BSIZE)


def test_device_rejects_wrong_block_size():
    with pytest.raises(ValueError):
        BlockDevice(4).write_block(0, b"short")


def test_device_rejects_out_of_range_block():
    with pytest.raises(KernelPanic):
        BlockDevice(4).read_block(4)


def test_device_file_round_trip(tmp_path):
    dev = BlockDevice(4)
    dev.write_block(1, b"\x5a" * BSIZE)
    path = tmp_path / "disk.img"
    dev.save(path)
    back = BlockDevice.from_file(path)
    assert back.nblocks == 4
    assert back.read_block(1) == b"\x5a" * BSIZE


def test_device_from_file_pads_partial_block(tmp_path):
    path = tmp_path / "short.img"
    path.write_bytes(b"abc")
    dev = BlockDevice.from_file(path)
    assert dev.nblocks == 1
    assert dev.read_block(0)[:3] == b"abc"


def test_bread_reads_device_contents():
    dev = BlockDevice(8)
    dev.write_block(5, b"\x11" * BSIZE)
    cache = BufferCache({1: dev})
    buf = cache.bread(1, 5)
    assert bytes(buf.data) == b"\x11" * BSIZE
    assert buf.valid and not buf.dirty


def test_bread_twice_shares_buffer():
    cache = BufferCache({1: BlockDevice(8)})
    a = cache.bread(1, 2)
    b = cache.bread(1, 2)
    assert a is b
    assert a.refcnt == 2


def test_cached_block_not_reread():
    dev = BlockDevice(8)
    cache = BufferCache({1: dev})
    buf = cache.bread(1, 0)
    cache.brelse(buf)
    dev.write_block(0, b"\x22" * BSIZE)
    assert bytes(cache.bread(1, 0).data) == bytes(BSIZE)


def test_bwrite_reaches_device():
    dev = BlockDevice(8)
    cache = BufferCache({1: dev})
    buf = cache.bread(1, 4)
    buf.data[:] = b"\x33" * BSIZE
    cache.bwrite(buf)
    assert dev.read_block(4) == b"\x33" * BSIZE
    assert buf.valid and not buf.dirty


def test_least_recently_used_buffer_is_recycled():
    cache = BufferCache({1: BlockDevice(8)}, nbuf=2)
    first = cache.bread(1, 0)
    second = cache.bread(1, 1)
    cache.brelse(first)
    cache.brelse(second)
    third = cache.bread(1, 2)
    assert third is first
    assert cache.bread(1, 1) is second


def test_no_free_buffer_panics():
    cache = BufferCache({1: BlockDevice(8)}, nbuf=1)
    cache.bread(1, 0)
    with pytest.raises(KernelPanic):
        cache.bread(1, 1)


def test_dirty_buffer_is_not_recycled():
    cache = BufferCache({1: BlockDevice(8)}, nbuf=1)
    buf = cache.bread(1, 0)
    buf.dirty = True
    cache.brelse(buf)
    with pytest.raises(KernelPanic):
        cache.bread(1, 1)


def test_missing_device_panics():
    cache = BufferCache({1: BlockDevice(8)})
    with pytest.raises(KernelPanic):
        cache.bread(0, 0)


def test_brelse_without_reference_panics():
    cache = BufferCache({1: BlockDevice(8)})
    buf = cache.bread(1, 0)
    cache.brelse(buf)
    with pytest.raises(KernelPanic):
        cache.brelse(buf)