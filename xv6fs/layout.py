"""On-disk file system format: sizes, limits and record layouts."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import ClassVar

# System limits.
NPROC = 64
KSTACKSIZE = 4096
NCPU = 8
NINODE = 50
ROOTDEV = 1
MAXOPBLOCKS = 10
NOFILE = 16
NFILE = 100
NDEV = 10
LOGSIZE = MAXOPBLOCKS * 3
NBUF = MAXOPBLOCKS * 3
FSSIZE = 1000

# Disk format.
ROOTINO = 1
BSIZE = 512
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14
BPB = BSIZE * 8

# Open flags.
O_RDONLY = 0x000
O_WRONLY = 0x001
O_RDWR = 0x002
O_CREATE = 0x200


class KernelPanic(RuntimeError):
    """An unrecoverable inconsistency inside the file system."""


class FileType(enum.IntEnum):
    """Type stored in an inode; FREE marks an unallocated inode."""

    FREE = 0
    DIR = 1
    FILE = 2
    DEV = 3


def _check_length(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass
class Superblock:
    """Describes the disk layout."""

    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0
    logstart: int = 0
    inodestart: int = 0
    bmapstart: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<7I")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.size,
            self.nblocks,
            self.ninodes,
            self.nlog,
            self.logstart,
            self.inodestart,
            self.bmapstart,
        )

    @classmethod
    def unpack(cls, data: bytes) -> Superblock:
        _check_length(data, cls.SIZE, "superblock")
        return cls(*cls._FORMAT.unpack_from(data))


@dataclass
class DiskInode:
    """An inode as stored on disk."""

    type: int = FileType.FREE
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(f"<4hI{NDIRECT + 1}I")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds {NDIRECT + 1} block addresses")
        return self._FORMAT.pack(
            self.type, self.major, self.minor, self.nlink, self.size, *self.addrs
        )

    @classmethod
    def unpack(cls, data: bytes) -> DiskInode:
        _check_length(data, cls.SIZE, "inode")
        type_, major, minor, nlink, size, *addrs = cls._FORMAT.unpack_from(data)
        return cls(type_, major, minor, nlink, size, list(addrs))


# Inodes per block.
IPB = BSIZE // DiskInode.SIZE


@dataclass
class Dirent:
    """A directory entry: inode number and a name of at most DIRSIZ bytes."""

    inum: int = 0
    name: str = ""

    _FORMAT: ClassVar[struct.Struct] = struct.Struct(f"<H{DIRSIZ}s")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        raw = self.name.encode("utf-8", "surrogateescape")[:DIRSIZ]
        return self._FORMAT.pack(self.inum, raw)

    @classmethod
    def unpack(cls, data: bytes) -> Dirent:
        _check_length(data, cls.SIZE, "directory entry")
        inum, raw = cls._FORMAT.unpack_from(data)
        name = raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")
        return cls(inum, name)


@dataclass
class Stat:
    """Metadata about a file."""

    type: int
    dev: int
    ino: int
    nlink: int
    size: int


def inode_block(inum: int, sb: Superblock) -> int:
    """Block holding inode number inum."""
    return inum // IPB + sb.inodestart


def bitmap_block(b: int, sb: Superblock) -> int:
    """Free-map block holding the bit for block b."""
    return b // BPB + sb.bmapstart