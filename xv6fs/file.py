"""Open files, the system-wide file table and per-process descriptors."""

from __future__ import annotations

import enum
import errno
from dataclasses import dataclass

from xv6fs.fs import FileSystem, Inode, namecmp
from xv6fs.layout import (
    BSIZE,
    MAXOPBLOCKS,
    NFILE,
    NOFILE,
    Dirent,
    FileType,
    KernelPanic,
    Stat,
)

# Bytes written per transaction, so that one write never overflows the log.
_MAX_WRITE = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE


class OpenMode(enum.IntFlag):
    """Flags accepted by open."""

    RDONLY = 0x000
    WRONLY = 0x001
    RDWR = 0x002
    CREATE = 0x200


@dataclass(eq=False)
class File:
    """An open file: an inode, an offset and access rights."""

    ref: int = 0
    readable: bool = False
    writable: bool = False
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """The system-wide table of open files."""

    def __init__(self, fs: FileSystem, nfile: int = NFILE) -> None:
        self.fs = fs
        self.log = fs.log
        self._files = [File() for _ in range(nfile)]

    def alloc(self) -> File:
        """Take an unused file structure with one reference."""
        for f in self._files:
            if f.ref == 0:
                f.ref = 1
                return f
        raise OSError(errno.ENFILE, "file table is full")

    def dup(self, f: File) -> File:
        """Add a reference to f."""
        if f.ref < 1:
            raise KernelPanic("filedup")
        f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; release the inode when the last one goes."""
        if f.ref < 1:
            raise KernelPanic("fileclose")
        f.ref -= 1
        if f.ref > 0:
            return
        ip = f.ip
        f.ip = None
        f.readable = f.writable = False
        f.off = 0
        if ip is not None:
            with self.log.transaction():
                self.fs.iput(ip)

    def stat(self, f: File) -> Stat:
        """Metadata of the file's inode."""
        if f.ip is None:
            raise OSError(errno.EBADF, "file has no inode")
        self.fs.iread(f.ip)
        return self.fs.stati(f.ip)

    def read(self, f: File, n: int) -> bytes:
        """Read up to n bytes at the file's offset and advance it."""
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.ip is None:
            raise KernelPanic("fileread")
        self.fs.iread(f.ip)
        data = self.fs.readi(f.ip, f.off, n)
        f.off += len(data)
        return data

    def write(self, f: File, data: bytes) -> int:
        """Write data at the file's offset, a few blocks per transaction."""
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        if f.ip is None:
            raise KernelPanic("filewrite")
        view = memoryview(bytes(data))
        written = 0
        while written < len(view):
            chunk = view[written : written + _MAX_WRITE]
            with self.log.transaction():
                self.fs.iread(f.ip)
                r = self.fs.writei(f.ip, f.off, chunk)
                if r > 0:
                    f.off += r
            if r != len(chunk):
                raise KernelPanic("short filewrite")
            written += r
        return written

    def isdirempty(self, dp: Inode) -> bool:
        """True when the directory holds nothing but "." and ".."."""
        for off in range(2 * Dirent.SIZE, dp.size, Dirent.SIZE):
            raw = self.fs.readi(dp, off, Dirent.SIZE)
            if len(raw) != Dirent.SIZE:
                raise KernelPanic("isdirempty: readi")
            if Dirent.unpack(raw).inum != 0:
                return False
        return True

    def _create(self, path: str, type: int, major: int, minor: int) -> Inode:
        fs = self.fs
        dp, name = fs.nameiparent(path)
        fs.iread(dp)
        found = fs.dirlookup(dp, name)
        if found is not None:
            ip = found[0]
            fs.iput(dp)
            fs.iread(ip)
            if type == FileType.FILE and ip.type == FileType.FILE:
                return ip
            fs.iput(ip)
            raise FileExistsError(errno.EEXIST, "file exists", path)

        ip = fs.ialloc(type)
        fs.iread(ip)
        ip.major = major
        ip.minor = minor
        ip.nlink = 1
        fs.iupdate(ip)

        if type == FileType.DIR:
            dp.nlink += 1  # for ".."
            fs.iupdate(dp)
            try:
                fs.dirlink(ip, ".", ip.inum)
                fs.dirlink(ip, "..", dp.inum)
            except FileExistsError as exc:
                raise KernelPanic("create dots") from exc

        try:
            fs.dirlink(dp, name, ip.inum)
        except FileExistsError as exc:
            raise KernelPanic("create: dirlink") from exc
        fs.iput(dp)
        return ip

    def open(self, path: str, omode: int) -> File:
        """Open path with the given mode, creating a file if asked."""
        fs = self.fs
        with self.log.transaction():
            if omode & OpenMode.CREATE:
                ip = self._create(path, FileType.FILE, 0, 0)
            else:
                ip = fs.namei(path)
                fs.iread(ip)
                if ip.type == FileType.DIR and omode != OpenMode.RDONLY:
                    fs.iput(ip)
                    raise IsADirectoryError(errno.EISDIR, "is a directory", path)
            try:
                f = self.alloc()
            except OSError:
                fs.iput(ip)
                raise
            f.ip = ip
            f.off = 0
            f.readable = not omode & OpenMode.WRONLY
            f.writable = bool(omode & OpenMode.WRONLY or omode & OpenMode.RDWR)
            return f

    def mkdir(self, path: str) -> None:
        """Create a directory."""
        with self.log.transaction():
            ip = self._create(path, FileType.DIR, 0, 0)
            self.fs.iput(ip)

    def mknod(self, path: str, major: int, minor: int) -> None:
        """Create a device node."""
        with self.log.transaction():
            ip = self._create(path, FileType.DEV, major, minor)
            self.fs.iput(ip)

    def unlink(self, path: str) -> None:
        """Remove a directory entry; the inode goes with its last link."""
        with self.log.transaction():
            dp, name = self.fs.nameiparent(path)
            try:
                self._unlink_entry(dp, name, path)
            finally:
                self.fs.iput(dp)

    def _unlink_entry(self, dp: Inode, name: str, path: str) -> None:
        fs = self.fs
        fs.iread(dp)
        if namecmp(name, ".") == 0 or namecmp(name, "..") == 0:
            raise OSError(errno.EINVAL, "cannot unlink . or ..", path)
        found = fs.dirlookup(dp, name)
        if found is None:
            raise FileNotFoundError(errno.ENOENT, "no such file or directory", path)
        ip, off = found
        try:
            fs.iread(ip)
            if ip.nlink < 1:
                raise KernelPanic("unlink: nlink < 1")
            if ip.type == FileType.DIR and not self.isdirempty(ip):
                raise OSError(errno.ENOTEMPTY, "directory not empty", path)
            if fs.writei(dp, off, Dirent().pack()) != Dirent.SIZE:
                raise KernelPanic("unlink: writei")
            if ip.type == FileType.DIR:
                dp.nlink -= 1
                fs.iupdate(dp)
            ip.nlink -= 1
            fs.iupdate(ip)
        finally:
            fs.iput(ip)


class FileDescriptors:
    """A process's table of open file descriptors."""

    def __init__(self, table: FileTable, nofile: int = NOFILE) -> None:
        self.table = table
        self._ofile: list[File | None] = [None] * nofile

    def _file(self, fd: int) -> File:
        if not 0 <= fd < len(self._ofile) or self._ofile[fd] is None:
            raise OSError(errno.EBADF, f"bad file descriptor {fd}")
        return self._ofile[fd]

    def open(self, path: str, omode: int) -> int:
        """Open path and return the lowest free descriptor."""
        f = self.table.open(path, omode)
        for fd, slot in enumerate(self._ofile):
            if slot is None:
                self._ofile[fd] = f
                return fd
        self.table.close(f)
        raise OSError(errno.EMFILE, "too many open files")

    def read(self, fd: int, n: int) -> bytes:
        return self.table.read(self._file(fd), n)

    def write(self, fd: int, data: bytes) -> int:
        return self.table.write(self._file(fd), data)

    def close(self, fd: int) -> None:
        f = self._file(fd)
        self._ofile[fd] = None
        self.table.close(f)