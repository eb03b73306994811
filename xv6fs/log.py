"""Redo log that makes multi-block file-system updates atomic."""

from __future__ import annotations

import struct
from contextlib import contextmanager
from typing import Iterator

from xv6fs.bufcache import Buffer, BufferCache
from xv6fs.layout import BSIZE, LOGSIZE, KernelPanic, Superblock

_HEADER_SIZE = 4 + 4 * LOGSIZE


class Log:
    """On-disk log: a header block listing block numbers, then their copies."""

    def __init__(self, cache: BufferCache, dev: int) -> None:
        if _HEADER_SIZE >= BSIZE:
            raise KernelPanic("initlog: too big logheader")
        buf = cache.bread(dev, 1)
        sb = Superblock.unpack(buf.data)
        cache.brelse(buf)
        self.cache = cache
        self.dev = dev
        self.start = sb.logstart
        self.size = sb.nlog
        self.pending: list[int] = []
        self.outstanding = 0
        self.recover()

    def _read_head(self) -> None:
        buf = self.cache.bread(self.dev, self.start)
        (n,) = struct.unpack_from("<i", buf.data, 0)
        if not 0 <= n <= LOGSIZE:
            self.cache.brelse(buf)
            raise KernelPanic("read_head: corrupt log header")
        self.pending = list(struct.unpack_from(f"<{n}i", buf.data, 4))
        self.cache.brelse(buf)

    def _write_head(self) -> None:
        """Write the in-memory header; this is the real commit point."""
        buf = self.cache.bread(self.dev, self.start)
        n = len(self.pending)
        struct.pack_into(f"<i{n}i", buf.data, 0, n, *self.pending)
        self.cache.bwrite(buf)
        self.cache.brelse(buf)

    def _install_trans(self) -> None:
        for tail, blockno in enumerate(self.pending):
            lbuf = self.cache.bread(self.dev, self.start + tail + 1)
            dbuf = self.cache.bread(self.dev, blockno)
            dbuf.data[:] = lbuf.data
            self.cache.bwrite(dbuf)
            self.cache.brelse(lbuf)
            self.cache.brelse(dbuf)

    def _write_log(self) -> None:
        for tail, blockno in enumerate(self.pending):
            to = self.cache.bread(self.dev, self.start + tail + 1)
            src = self.cache.bread(self.dev, blockno)
            to.data[:] = src.data
            self.cache.bwrite(to)
            self.cache.brelse(src)
            self.cache.brelse(to)

    def _commit(self) -> None:
        if self.pending:
            self._write_log()
            self._write_head()
            self._install_trans()
            self.pending = []
            self._write_head()

    def recover(self) -> None:
        """Install any committed transaction, then clear the log."""
        self._read_head()
        self._install_trans()
        self.pending = []
        self._write_head()

    def begin_op(self) -> None:
        """Mark the start of a file-system operation."""
        self.outstanding += 1

    def end_op(self) -> None:
        """Mark the end of an operation; commit when none is outstanding."""
        self.outstanding = max(0, self.outstanding - 1)
        if self.outstanding == 0:
            self._commit()

    def write(self, buf: Buffer) -> None:
        """Record a modified buffer in the current transaction and pin it."""
        if len(self.pending) >= LOGSIZE or len(self.pending) >= self.size - 1:
            raise KernelPanic("too big a transaction")
        if buf.blockno not in self.pending:
            self.pending.append(buf.blockno)
        buf.dirty = True

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the enclosed operations as one operation of the log."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()