"""Build a file-system image holding a root directory and some files."""

from __future__ import annotations

import os
import struct
import sys
from typing import Iterable, Sequence

from xv6fs.bufcache import BlockDevice
from xv6fs.layout import (
    BPB,
    BSIZE,
    FSSIZE,
    IPB,
    LOGSIZE,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DiskInode,
    Dirent,
    FileType,
    KernelPanic,
    Superblock,
    inode_block,
)

NINODES = 200

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """Lays out a fresh image and appends files to its root directory.

    Layout: boot block, superblock, log, inode blocks, free bitmap, data.
    """

    def __init__(self) -> None:
        self.nbitmap = FSSIZE // BPB + 1
        self.ninodeblocks = NINODES // IPB + 1
        self.nlog = LOGSIZE
        self.nmeta = 2 + self.nlog + self.ninodeblocks + self.nbitmap
        self.nblocks = FSSIZE - self.nmeta
        self.sb = Superblock(
            size=FSSIZE,
            nblocks=self.nblocks,
            ninodes=NINODES,
            nlog=self.nlog,
            logstart=2,
            inodestart=2 + self.nlog,
            bmapstart=2 + self.nlog + self.ninodeblocks,
        )
        self.device = BlockDevice(FSSIZE)
        self.freeinode = 1
        self.freeblock = self.nmeta  # first block that may be allocated
        self.device.write_block(1, self.sb.pack().ljust(BSIZE, b"\0"))

        self.root = self.ialloc(FileType.DIR)
        if self.root != ROOTINO:
            raise KernelPanic("root inode is not ROOTINO")
        self.iappend(self.root, Dirent(self.root, ".").pack())
        self.iappend(self.root, Dirent(self.root, "..").pack())

    def _inode_slot(self, inum: int) -> tuple[int, slice]:
        start = (inum % IPB) * DiskInode.SIZE
        return inode_block(inum, self.sb), slice(start, start + DiskInode.SIZE)

    def _rinode(self, inum: int) -> DiskInode:
        blockno, span = self._inode_slot(inum)
        return DiskInode.unpack(self.device.read_block(blockno)[span])

    def _winode(self, inum: int, din: DiskInode) -> None:
        blockno, span = self._inode_slot(inum)
        block = bytearray(self.device.read_block(blockno))
        block[span] = din.pack()
        self.device.write_block(blockno, bytes(block))

    def _next_block(self) -> int:
        if self.freeblock >= FSSIZE:
            raise ValueError("image is out of data blocks")
        blockno = self.freeblock
        self.freeblock += 1
        return blockno

    def ialloc(self, type: int) -> int:
        """Allocate the next inode with one link and return its number."""
        if self.freeinode >= NINODES:
            raise ValueError("image is out of inodes")
        inum = self.freeinode
        self.freeinode += 1
        self._winode(inum, DiskInode(type=type, nlink=1, size=0))
        return inum

    def iappend(self, inum: int, data: bytes) -> None:
        """Append data to the inode's contents, allocating blocks in order."""
        din = self._rinode(inum)
        off = din.size
        if off + len(data) > MAXFILE * BSIZE:
            raise ValueError("file too large for the image format")
        view = memoryview(bytes(data))
        pos = 0
        while pos < len(view):
            fbn = off // BSIZE
            if fbn < NDIRECT:
                if din.addrs[fbn] == 0:
                    din.addrs[fbn] = self._next_block()
                x = din.addrs[fbn]
            else:
                if din.addrs[NDIRECT] == 0:
                    din.addrs[NDIRECT] = self._next_block()
                indirect_no = din.addrs[NDIRECT]
                indirect = list(_INDIRECT.unpack(self.device.read_block(indirect_no)))
                if indirect[fbn - NDIRECT] == 0:
                    indirect[fbn - NDIRECT] = self._next_block()
                    self.device.write_block(indirect_no, _INDIRECT.pack(*indirect))
                x = indirect[fbn - NDIRECT]
            n1 = min(len(view) - pos, (fbn + 1) * BSIZE - off)
            block = bytearray(self.device.read_block(x))
            start = off - fbn * BSIZE
            block[start : start + n1] = view[pos : pos + n1]
            self.device.write_block(x, bytes(block))
            pos += n1
            off += n1
        din.size = off
        self._winode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a file to the root directory; a leading "_" is dropped."""
        if "/" in name:
            raise ValueError(f"file name may not contain '/': {name!r}")
        if name.startswith("_"):
            name = name[1:]
        inum = self.ialloc(FileType.FILE)
        self.iappend(self.root, Dirent(inum, name).pack())
        self.iappend(inum, data)
        return inum

    def finish(self) -> BlockDevice:
        """Round the root directory up and write the free bitmap."""
        din = self._rinode(self.root)
        din.size = (din.size // BSIZE + 1) * BSIZE
        self._winode(self.root, din)

        used = self.freeblock
        if used >= BPB:
            raise ValueError("too many blocks used for a single bitmap block")
        bitmap = bytearray(BSIZE)
        for i in range(used):
            bitmap[i // 8] |= 1 << (i % 8)
        self.device.write_block(self.sb.bmapstart, bytes(bitmap))
        return self.device


def build_image(path: str | os.PathLike[str], files: Iterable[str | os.PathLike[str]]) -> ImageBuilder:
    """Write an image at path holding the given host files by base name."""
    builder = ImageBuilder()
    for name in files:
        with open(name, "rb") as fh:
            data = fh.read()
        builder.add_file(os.path.basename(os.fspath(name)), data)
    builder.finish()
    builder.device.save(path)
    return builder


def main(argv: Sequence[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image, *files = args
    try:
        builder = build_image(image, files)
    except OSError as exc:
        print(f"{exc.filename}: {exc.strerror}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1
    print(
        f"nmeta {builder.nmeta} (boot, super, log blocks {builder.nlog} "
        f"inode blocks {builder.ninodeblocks}, bitmap blocks {builder.nbitmap}) "
        f"blocks {builder.nblocks} total {FSSIZE}"
    )
    print(f"balloc: first {builder.freeblock} blocks have been allocated")
    print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")
    return 0


if __name__ == "__main__":
    sys.exit(main())