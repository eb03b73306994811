import struct

import pytest

from xv6fs.bufcache import BlockDevice, BufferCache
from xv6fs.layout import BSIZE, FSSIZE, LOGSIZE, ROOTDEV, KernelPanic, Superblock
from xv6fs.log import Log

PAYLOAD = b"\xab" * BSIZE


def make_disk(nlog=LOGSIZE):
    dev = BlockDevice()
    sb = Superblock(
        size=FSSIZE,
        nblocks=FSSIZE - (2 + nlog + 27),
        ninodes=200,
        nlog=nlog,
        logstart=2,
        inodestart=2 + nlog,
        bmapstart=2 + nlog + 26,
    )
    block = bytearray(BSIZE)
    block[: Superblock.SIZE] = sb.pack()
    dev.write_block(1, bytes(block))
    return dev, BufferCache({ROOTDEV: dev}), sb


def modify(cache, log, blockno, payload=PAYLOAD):
    buf = cache.bread(ROOTDEV, blockno)
    buf.data[:] = payload
    log.write(buf)
    cache.brelse(buf)
    return buf


def header_count(dev, sb):
    return struct.unpack_from("<i", dev.read_block(sb.logstart))[0]


def test_commit_installs_block_at_end_of_transaction():
    dev, cache, sb = make_disk()
    log = Log(cache, ROOTDEV)
    with log.transaction():
        modify(cache, log, 100)
        assert dev.read_block(100) == bytes(BSIZE)
    assert dev.read_block(100) == PAYLOAD
    assert dev.read_block(sb.logstart + 1) == PAYLOAD
    assert header_count(dev, sb) == 0
    assert log.pending == []


def test_write_pins_buffer_until_commit():
    dev, cache, sb = make_disk()
    log = Log(cache, ROOTDEV)
    log.begin_op()
    buf = modify(cache, log, 100)
    assert buf.dirty
    log.end_op()
    assert not buf.dirty


def test_repeated_writes_are_absorbed():
    dev, cache, sb = make_disk()
    log = Log(cache, ROOTDEV)
    log.begin_op()
    modify(cache, log, 100)
    modify(cache, log, 100)
    modify(cache, log, 101)
    assert log.pending == [100, 101]
    log.end_op()


def test_too_big_transaction_panics():
    dev, cache, sb = make_disk(nlog=3)
    log = Log(cache, ROOTDEV)
    log.begin_op()
    modify(cache, log, 100)
    modify(cache, log, 101)
    assert log.pending == [100, 101]
    with pytest.raises(KernelPanic):
        modify(cache, log, 102)
    assert log.pending == [100, 101]


def test_nested_operations_commit_once_at_outermost_end():
    dev, cache, sb = make_disk()
    log = Log(cache, ROOTDEV)
    log.begin_op()
    log.begin_op()
    modify(cache, log, 120)
    log.end_op()
    assert dev.read_block(120) == bytes(BSIZE)
    log.end_op()
    assert dev.read_block(120) == PAYLOAD


def test_transaction_commits_when_body_raises():
    dev, cache, sb = make_disk()
    log = Log(cache, ROOTDEV)
    with pytest.raises(ValueError):
        with log.transaction():
            modify(cache, log, 110)
            raise ValueError("stop")
    assert dev.read_block(110) == PAYLOAD


def test_recovery_installs_committed_log():
    dev, cache, sb = make_disk()
    header = struct.pack("<ii", 1, 50)
    dev.write_block(sb.logstart, header + bytes(BSIZE - len(header)))
    dev.write_block(sb.logstart + 1, PAYLOAD)
    log = Log(cache, ROOTDEV)
    assert dev.read_block(50) == PAYLOAD
    assert header_count(dev, sb) == 0
    assert log.pending == []


def test_recover_on_empty_log_changes_nothing():
    dev, cache, sb = make_disk()
    before = [dev.read_block(b) for b in range(sb.bmapstart + 1)]
    Log(cache, ROOTDEV)
    assert [dev.read_block(b) for b in range(sb.bmapstart + 1)] == before


def test_corrupt_header_panics():
    dev, cache, sb = make_disk()
    header = struct.pack("<i", LOGSIZE + 1)
    dev.write_block(sb.logstart, header + bytes(BSIZE - len(header)))
    with pytest.raises(KernelPanic):
        Log(cache, ROOTDEV)