import pytest

from xv6fs.elf import (
    ELF_MAGIC,
    ELF_PROG_LOAD,
    ElfHeader,
    ExecError,
    ProgramHeader,
    boot_load,
    load_program,
)

PAYLOAD = b"program text and data"


def make_image(payload=PAYLOAD, *, magic=ELF_MAGIC, entry=0x10, vaddr=0,
               paddr=0, memsz=None, data_off=100, ptype=ELF_PROG_LOAD, extra=()):
    phs = [ProgramHeader(type=ptype, off=data_off, vaddr=vaddr, paddr=paddr,
                         filesz=len(payload),
                         memsz=len(payload) if memsz is None else memsz)]
    phs.extend(extra)
    hdr = ElfHeader(magic=magic, entry=entry, phoff=ElfHeader.SIZE, phnum=len(phs))
    image = bytearray(hdr.pack())
    for ph in phs:
        image += ph.pack()
    image = image.ljust(data_off, b"\0")
    image += payload
    return bytes(image)


def test_header_sizes_fixed_by_format():
    hdr = ElfHeader(magic=ELF_MAGIC, entry=0, phoff=52, phnum=0)
    assert len(hdr.pack()) == 52
    ph = ProgramHeader(type=1, off=0, vaddr=0, paddr=0, filesz=0, memsz=0, flags=0, align=0)
    assert len(ph.pack()) == 32


def test_magic_is_elf_bytes():
    hdr = ElfHeader(magic=ELF_MAGIC, entry=0, phoff=52, phnum=0)
    assert hdr.pack()[:4] == b"\x7fELF"


def test_header_round_trip():
    hdr = ElfHeader(entry=0x1234, phoff=52, phnum=3, ident=b"a" * 12)
    assert ElfHeader.unpack(hdr.pack()) == hdr
    ph = ProgramHeader(type=1, off=2, vaddr=3, paddr=4, filesz=5, memsz=6, flags=7, align=8)
    assert ProgramHeader.unpack(ph.pack()) == ph


def test_unpack_short_data():
    with pytest.raises(ExecError):
        ElfHeader.unpack(b"\x7fELF")
    with pytest.raises(ExecError):
        ProgramHeader.unpack(bytes(8))


def test_load_program():
    memory = bytearray(1024)
    loaded = load_program(make_image(), memory)
    assert loaded.entry == 0x10
    assert loaded.esp == len(memory) - 8
    assert memory[: len(PAYLOAD)] == PAYLOAD
    assert set(memory[len(PAYLOAD) : len(memory) - 4]) == {1}
    assert memory[-4:] == b"\xff\xff\xff\xff"


def test_bad_magic():
    with pytest.raises(ExecError):
        load_program(make_image(magic=0), bytearray(256))


def test_short_image():
    with pytest.raises(ExecError):
        load_program(make_image()[:20], bytearray(256))
    with pytest.raises(ExecError):
        load_program(make_image()[:-1], bytearray(256))


def test_memsz_below_filesz():
    with pytest.raises(ExecError):
        load_program(make_image(memsz=1), bytearray(256))


def test_unaligned_vaddr():
    with pytest.raises(ExecError):
        load_program(make_image(vaddr=4), bytearray(256))


def test_segment_too_large_for_memory():
    with pytest.raises(ExecError):
        load_program(make_image(), bytearray(8))


def test_boot_load():
    kernel = make_image(paddr=1000, memsz=len(PAYLOAD) + 16, entry=0x100000)
    disk = bytes(512) + kernel
    memory = bytearray(b"\xaa" * 4096)
    entry = boot_load(disk, memory)
    assert entry == 0x100000
    assert memory[1000 : 1000 + len(PAYLOAD)] == PAYLOAD
    bss = memory[1000 + len(PAYLOAD) : 1000 + len(PAYLOAD) + 16]
    assert bss == bytes(16)
    assert len(memory) == 4096


def test_boot_load_bad_magic():
    disk = bytes(512) + make_image(magic=0)
    with pytest.raises(ExecError):
        boot_load(disk, bytearray(4096))