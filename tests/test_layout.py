import pytest

from xv6fs.layout import (
    BPB,
    BSIZE,
    DIRSIZ,
    IPB,
    NDIRECT,
    Dirent,
    DiskInode,
    FileType,
    Stat,
    Superblock,
    bitmap_block,
    inode_block,
)


@pytest.fixture
def sb():
    return Superblock(
        size=1000, nblocks=941, ninodes=200, nlog=30, logstart=2, inodestart=32, bmapstart=58
    )


def test_superblock_round_trip(sb):
    data = sb.pack()
    assert len(data) == Superblock.SIZE
    assert Superblock.unpack(data) == sb


def test_superblock_is_little_endian(sb):
    assert sb.pack()[:4] == sb.size.to_bytes(4, "little")


def test_superblock_unpack_ignores_trailing_bytes(sb):
    assert Superblock.unpack(sb.pack() + bytes(100)) == sb


def test_superblock_unpack_short_raises():
    with pytest.raises(ValueError):
        Superblock.unpack(b"\x00" * 3)


def test_dinodes_tile_a_block():
    packed = DiskInode(addrs=[0] * (NDIRECT + 1)).pack()
    assert len(packed) == DiskInode.SIZE
    assert BSIZE % len(packed) == 0
    assert IPB * len(packed) == BSIZE


def test_dinode_round_trip():
    addrs = list(range(100, 100 + NDIRECT + 1))
    din = DiskInode(type=FileType.FILE, major=1, minor=2, nlink=3, size=4000, addrs=addrs)
    back = DiskInode.unpack(din.pack())
    assert back == din
    assert back.addrs == addrs


def test_dinode_wrong_addr_count_raises():
    with pytest.raises(ValueError):
        DiskInode(addrs=[0] * NDIRECT).pack()


def test_dirent_wire_bytes():
    assert Dirent(1, ".").pack() == b"\x01\x00." + bytes(13)


def test_dirents_tile_a_block():
    assert len(Dirent(3, "x").pack()) == Dirent.SIZE
    assert BSIZE % Dirent.SIZE == 0


def test_dirent_round_trip():
    d = Dirent(7, "README")
    assert Dirent.unpack(d.pack()) == d


def test_dirent_truncates_long_name():
    name = "abcdefghijklmnopq"
    assert Dirent.unpack(Dirent(5, name).pack()).name == name[:DIRSIZ]


def test_inode_block(sb):
    assert inode_block(0, sb) == sb.inodestart
    assert inode_block(IPB - 1, sb) == sb.inodestart
    assert inode_block(IPB, sb) == sb.inodestart + 1


def test_bitmap_block(sb):
    assert bitmap_block(0, sb) == sb.bmapstart
    assert bitmap_block(BPB - 1, sb) == sb.bmapstart
    assert bitmap_block(BPB, sb) == sb.bmapstart + 1


def test_file_type_values_match_disk_format():
    assert [FileType.DIR, FileType.FILE, FileType.DEV] == [1, 2, 3]
    assert FileType(0) is FileType.FREE


def test_dinode_packs_to_format_size():
    packed = DiskInode(type=FileType.DIR, addrs=[0] * (NDIRECT + 1)).pack()
    assert len(packed) == 64
    assert packed[:2] == b"\x01\x00"


def test_stat_equality():
    assert Stat(FileType.FILE, 1, 2, 1, 10) == Stat(2, 1, 2, 1, 10)