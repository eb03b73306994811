"""Inodes, directories and path names on top of the buffer cache and log."""

from __future__ import annotations

import errno
import struct
from dataclasses import dataclass, field
from typing import Callable

from xv6fs.bufcache import BufferCache
from xv6fs.layout import (
    BPB,
    BSIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDEV,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTDEV,
    ROOTINO,
    DiskInode,
    Dirent,
    FileType,
    KernelPanic,
    Stat,
    Superblock,
    bitmap_block,
    inode_block,
)
from xv6fs.log import Log

DeviceRead = Callable[["Inode", int], bytes]
DeviceWrite = Callable[["Inode", bytes], int]

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode, plus cache bookkeeping."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = FileType.FREE
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    def _to_disk(self) -> DiskInode:
        return DiskInode(
            self.type, self.major, self.minor, self.nlink, self.size, list(self.addrs)
        )

    def _load(self, dip: DiskInode) -> None:
        self.type = dip.type
        self.major = dip.major
        self.minor = dip.minor
        self.nlink = dip.nlink
        self.size = dip.size
        self.addrs = list(dip.addrs)


@dataclass
class _DeviceSwitch:
    read: DeviceRead | None = None
    write: DeviceWrite | None = None


def _name_bytes(name: str) -> bytes:
    raw = name.encode("utf-8", "surrogateescape").split(b"\0", 1)[0]
    return raw[:DIRSIZ].ljust(DIRSIZ, b"\0")


def namecmp(s: str, t: str) -> int:
    """Compare two names over at most DIRSIZ bytes; 0 when they match."""
    for a, b in zip(_name_bytes(s), _name_bytes(t)):
        if a != b:
            return a - b
        if a == 0:
            break
    return 0


def skipelem(path: str) -> tuple[str, str] | None:
    """Split off the first path element.

    Returns (name, rest) where rest has no leading slashes, or None
    when the path holds no element. Names are cut to DIRSIZ bytes.
    """
    stripped = path.lstrip("/")
    if not stripped:
        return None
    elem, _, rest = stripped.partition("/")
    raw = elem.encode("utf-8", "surrogateescape")[:DIRSIZ]
    return raw.decode("utf-8", "surrogateescape"), rest.lstrip("/")


class FileSystem:
    """Block allocation, inode cache, file contents and directories."""

    def __init__(
        self, cache: BufferCache, dev: int = ROOTDEV, log: Log | None = None
    ) -> None:
        self.cache = cache
        self.dev = dev
        self.sb = self._readsb()
        self.log = log if log is not None else Log(cache, dev)
        self._icache = [Inode() for _ in range(NINODE)]
        self._devsw = [_DeviceSwitch() for _ in range(NDEV)]

    # Superblock and devices.

    def _readsb(self) -> Superblock:
        bp = self.cache.bread(self.dev, 1)
        sb = Superblock.unpack(bp.data)
        self.cache.brelse(bp)
        return sb

    def register_device(
        self, major: int, read: DeviceRead | None, write: DeviceWrite | None
    ) -> None:
        """Attach read and write handlers to a major device number."""
        if not 0 <= major < NDEV:
            raise ValueError(f"major device number must be below {NDEV}")
        self._devsw[major] = _DeviceSwitch(read, write)

    def _device(self, ip: Inode) -> _DeviceSwitch | None:
        if 0 <= ip.major < NDEV:
            return self._devsw[ip.major]
        return None

    # Blocks.

    def _bzero(self, bno: int) -> None:
        bp = self.cache.bread(self.dev, bno)
        bp.data[:] = bytes(BSIZE)
        self.log.write(bp)
        self.cache.brelse(bp)

    def _balloc(self) -> int:
        for b in range(0, self.sb.size, BPB):
            bp = self.cache.bread(self.dev, bitmap_block(b, self.sb))
            for bi in range(min(BPB, self.sb.size - b)):
                m = 1 << (bi % 8)
                if bp.data[bi // 8] & m == 0:
                    bp.data[bi // 8] |= m
                    self.log.write(bp)
                    self.cache.brelse(bp)
                    self._bzero(b + bi)
                    return b + bi
            self.cache.brelse(bp)
        raise KernelPanic("balloc: out of blocks")

    def _bfree(self, b: int) -> None:
        bp = self.cache.bread(self.dev, bitmap_block(b, self.sb))
        bi = b % BPB
        m = 1 << (bi % 8)
        if bp.data[bi // 8] & m == 0:
            self.cache.brelse(bp)
            raise KernelPanic("freeing free block")
        bp.data[bi // 8] &= ~m & 0xFF
        self.log.write(bp)
        self.cache.brelse(bp)

    # Inodes.

    def _inode_slot(self, inum: int) -> tuple[int, slice]:
        start = (inum % IPB) * DiskInode.SIZE
        return inode_block(inum, self.sb), slice(start, start + DiskInode.SIZE)

    def ialloc(self, type: int) -> Inode:
        """Allocate a free on-disk inode of the given type and return it."""
        for inum in range(1, self.sb.ninodes):
            blockno, span = self._inode_slot(inum)
            bp = self.cache.bread(self.dev, blockno)
            dip = DiskInode.unpack(bp.data[span])
            if dip.type == FileType.FREE:
                bp.data[span] = DiskInode(type=type).pack()
                self.log.write(bp)
                self.cache.brelse(bp)
                return self.iget(inum)
            self.cache.brelse(bp)
        raise KernelPanic("ialloc: no inodes")

    def iget(self, inum: int) -> Inode:
        """Return a referenced in-memory inode without reading the disk."""
        empty = None
        for ip in self._icache:
            if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                ip.ref += 1
                return ip
            if empty is None and ip.ref == 0:
                empty = ip
        if empty is None:
            raise KernelPanic("iget: no inodes")
        empty.dev = self.dev
        empty.inum = inum
        empty.ref = 1
        empty.valid = False
        return empty

    def iread(self, ip: Inode | None) -> None:
        """Load the inode from disk unless it is already valid."""
        if ip is None or ip.ref < 1:
            raise KernelPanic("iread")
        if ip.valid:
            return
        blockno, span = self._inode_slot(ip.inum)
        bp = self.cache.bread(ip.dev, blockno)
        ip._load(DiskInode.unpack(bp.data[span]))
        self.cache.brelse(bp)
        ip.valid = True
        if ip.type == FileType.FREE:
            raise KernelPanic("iread: no type")

    def iupdate(self, ip: Inode) -> None:
        """Write the in-memory inode's on-disk fields through the log."""
        blockno, span = self._inode_slot(ip.inum)
        bp = self.cache.bread(ip.dev, blockno)
        bp.data[span] = ip._to_disk().pack()
        self.log.write(bp)
        self.cache.brelse(bp)

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode when unlinked and unreferenced."""
        if ip.valid and ip.nlink == 0 and ip.ref == 1:
            self._itrunc(ip)
            ip.type = FileType.FREE
            self.iupdate(ip)
            ip.valid = False
        ip.ref -= 1

    def _bmap(self, ip: Inode, bn: int) -> int:
        if bn < NDIRECT:
            addr = ip.addrs[bn]
            if addr == 0:
                addr = ip.addrs[bn] = self._balloc()
            return addr
        bn -= NDIRECT
        if bn < NINDIRECT:
            indirect = ip.addrs[NDIRECT]
            if indirect == 0:
                indirect = ip.addrs[NDIRECT] = self._balloc()
            bp = self.cache.bread(ip.dev, indirect)
            (addr,) = struct.unpack_from("<I", bp.data, bn * 4)
            if addr == 0:
                addr = self._balloc()
                struct.pack_into("<I", bp.data, bn * 4, addr)
                self.log.write(bp)
            self.cache.brelse(bp)
            return addr
        raise KernelPanic("bmap: out of range")

    def _itrunc(self, ip: Inode) -> None:
        for i, addr in enumerate(ip.addrs[:NDIRECT]):
            if addr:
                self._bfree(addr)
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            bp = self.cache.bread(ip.dev, ip.addrs[NDIRECT])
            entries = _INDIRECT.unpack_from(bp.data)
            for addr in entries:
                if addr:
                    self._bfree(addr)
            self.cache.brelse(bp)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        """Metadata of an inode."""
        return Stat(type=ip.type, dev=ip.dev, ino=ip.inum, nlink=ip.nlink, size=ip.size)

    # Contents.

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to n bytes at offset off; reads stop at the end of file."""
        if ip.type == FileType.DEV:
            sw = self._device(ip)
            if sw is None or sw.read is None:
                raise OSError(errno.ENODEV, f"no read handler for device {ip.major}")
            return sw.read(ip, n)
        if off < 0 or n < 0 or off > ip.size or ip.nlink < 1:
            raise ValueError(f"cannot read {n} bytes at offset {off}")
        n = min(n, ip.size - off)
        chunks = []
        tot = 0
        while tot < n:
            bp = self.cache.bread(ip.dev, self._bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            chunks.append(bytes(bp.data[start : start + m]))
            self.cache.brelse(bp)
            tot += m
            off += m
        return b"".join(chunks)

    def writei(self, ip: Inode, off: int, data: bytes) -> int:
        """Write data at offset off, growing the file; returns bytes written."""
        if ip.type == FileType.DEV:
            sw = self._device(ip)
            if sw is None or sw.write is None:
                raise OSError(errno.ENODEV, f"no write handler for device {ip.major}")
            return sw.write(ip, bytes(data))
        n = len(data)
        if off < 0 or off > ip.size:
            raise ValueError(f"cannot write at offset {off} past end {ip.size}")
        if off + n > MAXFILE * BSIZE:
            raise ValueError("write would exceed the maximum file size")
        view = memoryview(data)
        tot = 0
        while tot < n:
            bp = self.cache.bread(ip.dev, self._bmap(ip, off // BSIZE))
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            bp.data[start : start + m] = view[tot : tot + m]
            self.log.write(bp)
            self.cache.brelse(bp)
            tot += m
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.iupdate(ip)
        return n

    # Directories.

    def _entries(self, dp: Inode, what: str):
        for off in range(0, dp.size, Dirent.SIZE):
            raw = self.readi(dp, off, Dirent.SIZE)
            if len(raw) != Dirent.SIZE:
                raise KernelPanic(what)
            yield off, Dirent.unpack(raw)

    def dirlookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find name in directory dp; return its inode and entry offset."""
        if dp.type != FileType.DIR:
            raise KernelPanic("dirlookup not DIR")
        for off, de in self._entries(dp, "dirlookup read"):
            if de.inum != 0 and namecmp(name, de.name) == 0:
                return self.iget(de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to directory dp."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(errno.EEXIST, "name already in directory", name)
        slot = dp.size
        for off, de in self._entries(dp, "dirlink read"):
            if de.inum == 0:
                slot = off
                break
        if self.writei(dp, slot, Dirent(inum, name).pack()) != Dirent.SIZE:
            raise KernelPanic("dirlink")

    # Paths.

    def _namex(self, path: str, parent: bool) -> tuple[Inode, str]:
        ip = self.iget(ROOTINO)
        name = ""
        rest = path
        while (elem := skipelem(rest)) is not None:
            name, rest = elem
            self.iread(ip)
            if ip.type != FileType.DIR:
                self.iput(ip)
                raise NotADirectoryError(errno.ENOTDIR, "not a directory", path)
            if parent and rest == "":
                return ip, name
            found = self.dirlookup(ip, name)
            if found is None:
                self.iput(ip)
                raise FileNotFoundError(errno.ENOENT, "no such file or directory", path)
            self.iput(ip)
            ip = found[0]
        if parent:
            self.iput(ip)
            raise FileNotFoundError(errno.ENOENT, "path has no parent", path)
        return ip, name

    def namei(self, path: str) -> Inode:
        """Return a referenced inode for the path."""
        return self._namex(path, False)[0]

    def nameiparent(self, path: str) -> tuple[Inode, str]:
        """Return the parent directory's inode and the final path element."""
        return self._namex(path, True)