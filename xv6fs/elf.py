"""ELF executable headers, loading a program and booting a kernel image."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar, NamedTuple

ELF_MAGIC = 0x464C457F  # "\x7FELF" in little endian

ELF_PROG_LOAD = 1

ELF_PROG_FLAG_EXEC = 1
ELF_PROG_FLAG_WRITE = 2
ELF_PROG_FLAG_READ = 4

SECTSIZE = 512
PROCSIZE = 0x100
PGSIZE = PROCSIZE << 12

_MASK32 = 0xFFFFFFFF
_SENTINEL = 0xFFFFFFFF


class ExecError(Exception):
    """The image cannot be loaded."""


@dataclass
class ElfHeader:
    """ELF file header."""

    magic: int = ELF_MAGIC
    ident: bytes = bytes(12)
    type: int = 0
    machine: int = 0
    version: int = 0
    entry: int = 0
    phoff: int = 0
    shoff: int = 0
    flags: int = 0
    ehsize: int = 0
    phentsize: int = 0
    phnum: int = 0
    shentsize: int = 0
    shnum: int = 0
    shstrndx: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<I12sHHIIIIIHHHHHH")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.magic, self.ident, self.type, self.machine, self.version,
            self.entry, self.phoff, self.shoff, self.flags, self.ehsize,
            self.phentsize, self.phnum, self.shentsize, self.shnum, self.shstrndx,
        )

    @classmethod
    def unpack(cls, data: bytes) -> ElfHeader:
        if len(data) < cls.SIZE:
            raise ExecError(f"ELF header needs {cls.SIZE} bytes, got {len(data)}")
        return cls(*cls._FORMAT.unpack_from(data))


@dataclass
class ProgramHeader:
    """ELF program section header."""

    type: int = 0
    off: int = 0
    vaddr: int = 0
    paddr: int = 0
    filesz: int = 0
    memsz: int = 0
    flags: int = 0
    align: int = 0

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<8I")
    SIZE: ClassVar[int] = _FORMAT.size

    def pack(self) -> bytes:
        return self._FORMAT.pack(
            self.type, self.off, self.vaddr, self.paddr,
            self.filesz, self.memsz, self.flags, self.align,
        )

    @classmethod
    def unpack(cls, data: bytes) -> ProgramHeader:
        if len(data) < cls.SIZE:
            raise ExecError(f"program header needs {cls.SIZE} bytes, got {len(data)}")
        return cls(*cls._FORMAT.unpack_from(data))


class LoadedProgram(NamedTuple):
    """Where a loaded program starts: instruction and stack pointers."""

    entry: int
    esp: int


def _read(image: bytes, off: int, n: int) -> bytes:
    """Read exactly n bytes at off, as a file read that must not come up short."""
    if off > len(image) or len(image) - off < n:
        raise ExecError(f"image too short for {n} bytes at offset {off}")
    return bytes(image[off : off + n])


def load_program(image: bytes, memory: bytearray) -> LoadedProgram:
    """Load an ELF image into a process's memory.

    The last word of memory receives the fake return address; the process
    size is what precedes it. Memory is filled with junk before loading.
    """
    if len(memory) < 4:
        raise ExecError("process memory too small")
    sz = len(memory) - 4
    elf = ElfHeader.unpack(_read(image, 0, ElfHeader.SIZE))
    if elf.magic != ELF_MAGIC:
        raise ExecError("not an ELF executable")

    memory[:] = b"\x01" * len(memory)

    for i in range(elf.phnum):
        ph = ProgramHeader.unpack(
            _read(image, elf.phoff + i * ProgramHeader.SIZE, ProgramHeader.SIZE)
        )
        if ph.type != ELF_PROG_LOAD:
            continue
        if ph.memsz < ph.filesz:
            raise ExecError("segment memory size below file size")
        if ph.vaddr + ph.memsz > _MASK32:
            raise ExecError("segment wraps the address space")
        if ph.vaddr % PGSIZE != 0:
            raise ExecError("segment is not page aligned")
        if ph.vaddr + ph.filesz > sz:
            raise ExecError("segment does not fit in process memory")
        memory[ph.vaddr : ph.vaddr + ph.filesz] = _read(image, ph.off, ph.filesz)

    struct.pack_into("<I", memory, sz, _SENTINEL)
    return LoadedProgram(entry=elf.entry, esp=sz - 4)


def _readsect(disk: bytes, sector: int) -> bytes:
    start = sector * SECTSIZE
    return bytes(disk[start : start + SECTSIZE]).ljust(SECTSIZE, b"\0")


def _readseg(disk: bytes, memory: bytearray, pa: int, count: int, offset: int) -> None:
    """Copy count bytes of the kernel at offset to pa, in whole sectors."""
    epa = pa + count
    pa -= offset % SECTSIZE
    sector = offset // SECTSIZE + 1  # the kernel starts at sector 1
    while pa < epa:
        data = _readsect(disk, sector)
        lo = max(pa, 0)
        hi = min(pa + SECTSIZE, len(memory))
        if lo < hi:
            memory[lo:hi] = data[lo - pa : hi - pa]
        pa += SECTSIZE
        sector += 1


def boot_load(disk: bytes, memory: bytearray) -> int:
    """Load the ELF kernel that follows the boot sector; return its entry."""
    scratch = bytearray(4096)
    _readseg(disk, scratch, 0, len(scratch), 0)
    elf = ElfHeader.unpack(scratch)
    if elf.magic != ELF_MAGIC:
        raise ExecError("not an ELF executable")
    end = elf.phoff + elf.phnum * ProgramHeader.SIZE
    if end > len(scratch):
        raise ExecError("program headers lie outside the first page")
    for i in range(elf.phnum):
        start = elf.phoff + i * ProgramHeader.SIZE
        ph = ProgramHeader.unpack(scratch[start : start + ProgramHeader.SIZE])
        if ph.paddr + max(ph.memsz, ph.filesz) > len(memory):
            raise ExecError("segment lies outside memory")
        _readseg(disk, memory, ph.paddr, ph.filesz, ph.off)
        if ph.memsz > ph.filesz:
            memory[ph.paddr + ph.filesz : ph.paddr + ph.memsz] = bytes(ph.memsz - ph.filesz)
    return elf.entry