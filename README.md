# xv6fs

xv6fs is a small, readable model of a Unix-style file system. It covers each
layer, from raw disk blocks up to file descriptors:

- `xv6fs.layout` defines the on-disk format (`Superblock`, `DiskInode`,
  `Dirent`, `Stat`, `FileType`), the system limits, the `O_*` open flags,
  the block-number helpers `inode_block` and `bitmap_block`, and the
  `KernelPanic` exception.
- `xv6fs.bufcache` holds a disk image in memory as a `BlockDevice`
  (`read_block`, `write_block`, `from_file`, `save`). It also provides an LRU
  `BufferCache` over a mapping of device numbers to devices, with `bread`,
  `bwrite` and `brelse`.
- `xv6fs.log` is a physical redo `Log`. It groups writes into transactions
  through `begin_op` / `end_op` or the `transaction()` context manager, and
  on creation it replays any committed work it finds.
- `xv6fs.fs` is the `FileSystem`: block and inode allocation, the inode cache
  (`iget`, `iread`, `iupdate`, `iput`), file contents (`readi`, `writei`),
  directories (`dirlookup`, `dirlink`), path lookup (`namei`, `nameiparent`)
  and device handlers (`register_device`). It also provides the helpers
  `skipelem` and `namecmp`.
- `xv6fs.file` provides a `FileTable` of open files, with `open`, `read`,
  `write`, `close`, `dup`, `stat`, `mkdir`, `mknod`, `unlink` and
  `isdirempty`. It also provides a per-process `FileDescriptors` table, with
  `open`, `read`, `write` and `close`. The `OpenMode` flags select the access
  mode.
- `xv6fs.mkfs` provides `ImageBuilder`, `build_image` and the `xv6fs-mkfs`
  command.
- `xv6fs.console` provides a line-editing `Console` and the printf-style
  formatters `format_kernel` (`%d %x %p %s %%`) and `format_user`, which also
  accepts `%c` and prints hex digits in upper case.
- `xv6fs.elf` provides `ElfHeader`, `ProgramHeader`, `load_program` (loads an
  executable into a process's memory), `boot_load` (loads a kernel that
  follows the boot sector of a disk) and `ExecError`.

An image is 1000 blocks of 512 bytes. Each inode has 12 direct blocks and one
indirect block. A name can be up to 14 bytes long.

## Install

```
pip install .
```

## Building an image

From the command line:

```
xv6fs-mkfs fs.img _init notes.txt
```

The first argument is the image to create. Each further argument is a host
file, which is copied into the root directory under its base name. A leading
`_` is dropped from the name, so `_init` is stored as `init`.

From Python, pass host file paths to `build_image`:

```python
from xv6fs.mkfs import build_image

build_image("fs.img", ["notes.txt"])
```

To build an image from in-memory data, use `ImageBuilder`:

```python
from xv6fs.mkfs import ImageBuilder

builder = ImageBuilder()
builder.add_file("hello.txt", b"hello, world\n")
device = builder.finish()
device.save("fs.img")
```

## Working with an image

```python
from xv6fs.bufcache import BlockDevice, BufferCache
from xv6fs.file import FileDescriptors, FileTable, OpenMode
from xv6fs.fs import FileSystem
from xv6fs.layout import ROOTDEV

disk = BlockDevice.from_file("fs.img")
cache = BufferCache({ROOTDEV: disk})
fs = FileSystem(cache)          # reads the superblock and recovers the log
files = FileTable(fs)
fds = FileDescriptors(files)

fd = fds.open("/notes.txt", OpenMode.CREATE | OpenMode.RDWR)
fds.write(fd, b"some text")
fds.close(fd)

fd = fds.open("/notes.txt", OpenMode.RDONLY)
print(fds.read(fd, 100))
fds.close(fd)

files.mkdir("/docs")
disk.save("fs.img")
```

A `Console` can serve as a character device:

```python
from xv6fs.console import Console

console = Console()
fs.register_device(1, lambda ip, n: console.read(n), lambda ip, data: console.write(data))
files.mknod("/console", 1, 1)
```

Operations raise ordinary exceptions when something is wrong on the caller's
side:

- `FileNotFoundError` when a path does not exist.
- `FileExistsError` when a name is already taken.
- `IsADirectoryError` when a directory is opened for writing.
- `OSError` with `EBADF`, `ENOTEMPTY`, `ENFILE` or `EMFILE` for a bad
  descriptor, a non-empty directory, a full file table or a full descriptor
  table.
- `ValueError` for an offset or size that is out of range.

When the file system's own invariants are broken, they raise `KernelPanic`.

## What it does not do

Everything runs in memory, on an image loaded into a `BlockDevice`:

- Images cannot be mounted on the host.
- The only command is `xv6fs-mkfs`. There are no tools to list or extract
  files.
- Files and directories can be removed with `unlink`, but there is no rename
  and no way to add a second link to an inode.
- The ELF functions copy segments into a `bytearray`. They do not run
  anything.

## Tests

```
pip install .[test]
pytest
```