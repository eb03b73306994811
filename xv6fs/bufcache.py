"""Block devices and an LRU cache of disk blocks."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from xv6fs.layout import BSIZE, FSSIZE, NBUF, KernelPanic


class BlockDevice:
    """An in-memory disk made of BSIZE blocks."""

    def __init__(self, nblocks: int = FSSIZE, *, image: bytes | None = None) -> None:
        if image is None:
            self._data = bytearray(nblocks * BSIZE)
        else:
            if len(image) % BSIZE:
                raise ValueError(f"image size must be a multiple of {BSIZE}")
            self._data = bytearray(image)

    @property
    def nblocks(self) -> int:
        return len(self._data) // BSIZE

    def __len__(self) -> int:
        return self.nblocks

    def _span(self, blockno: int) -> slice:
        if not 0 <= blockno < self.nblocks:
            raise KernelPanic("incorrect blockno")
        return slice(blockno * BSIZE, (blockno + 1) * BSIZE)

    def read_block(self, blockno: int) -> bytes:
        return bytes(self._data[self._span(blockno)])

    def write_block(self, blockno: int, data: bytes) -> None:
        if len(data) != BSIZE:
            raise ValueError(f"a block is {BSIZE} bytes, got {len(data)}")
        self._data[self._span(blockno)] = data

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> BlockDevice:
        """Load a disk image, padding a partial last block with zeros."""
        with open(path, "rb") as fh:
            data = fh.read()
        remainder = len(data) % BSIZE
        if remainder:
            data += bytes(BSIZE - remainder)
        return cls(image=data)

    def save(self, path: str | os.PathLike[str]) -> None:
        with open(path, "wb") as fh:
            fh.write(self._data)


@dataclass(eq=False)
class Buffer:
    """A cached copy of one disk block."""

    dev: int | None = None
    blockno: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    valid: bool = False  # data has been read from disk
    dirty: bool = False  # data must be written to disk
    refcnt: int = 0


class BufferCache:
    """A fixed set of buffers kept in most-recently-used order."""

    def __init__(self, devices: Mapping[int, BlockDevice], nbuf: int = NBUF) -> None:
        self.devices = dict(devices)
        # Index 0 is the most recently used buffer.
        self._lru = [Buffer() for _ in range(nbuf)]

    def _bget(self, dev: int, blockno: int) -> Buffer:
        for b in self._lru:
            if b.dev == dev and b.blockno == blockno:
                b.refcnt += 1
                return b
        # A dirty buffer with no references is still owned by the log.
        for b in reversed(self._lru):
            if b.refcnt == 0 and not b.dirty:
                b.dev = dev
                b.blockno = blockno
                b.valid = False
                b.dirty = False
                b.refcnt = 1
                return b
        raise KernelPanic("bget: no buffers")

    def _iderw(self, b: Buffer) -> None:
        if b.valid and not b.dirty:
            raise KernelPanic("iderw: nothing to do")
        device = self.devices.get(b.dev)
        if device is None:
            raise KernelPanic(f"iderw: ide disk {b.dev} not present")
        if b.dirty:
            device.write_block(b.blockno, b.data)
        else:
            b.data[:] = device.read_block(b.blockno)
        b.valid = True
        b.dirty = False

    def bread(self, dev: int, blockno: int) -> Buffer:
        """Return a referenced buffer holding the block's contents."""
        b = self._bget(dev, blockno)
        if not b.valid:
            self._iderw(b)
        return b

    def bwrite(self, buf: Buffer) -> None:
        """Write the buffer's contents to disk."""
        buf.dirty = True
        self._iderw(buf)

    def brelse(self, buf: Buffer) -> None:
        """Drop a reference; an unreferenced buffer becomes most recently used."""
        if buf.refcnt < 1:
            raise KernelPanic("brelse")
        buf.refcnt -= 1
        if buf.refcnt == 0:
            self._lru.remove(buf)
            self._lru.insert(0, buf)