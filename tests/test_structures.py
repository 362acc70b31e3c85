import struct

import pytest

from ext2shell.structures import (
    EXT2_SUPER_MAGIC,
    DirEntry,
    Ext2Error,
    FileType,
    GroupDesc,
    Inode,
    SuperBlock,
    dir_entry_size,
    permission_string,
)


def make_superblock():
    return SuperBlock(
        s_inodes_count=128,
        s_blocks_count=1024,
        s_free_blocks_count=900,
        s_free_inodes_count=100,
        s_first_data_block=1,
        s_blocks_per_group=8192,
        s_inodes_per_group=128,
        s_inode_size=128,
        s_volume_name=b"vol".ljust(16, b"\0"),
        s_hash_seed=(1, 2, 3, 4),
        s_first_meta_bg=7,
    )


def test_superblock_pack_is_1024_bytes():
    assert len(make_superblock().pack()) == 1024


def test_superblock_round_trip():
    sb = make_superblock()
    assert SuperBlock.unpack(sb.pack()) == sb


def test_superblock_magic_location_matches_ext2_layout():
    data = make_superblock().pack()
    assert struct.unpack_from("<H", data, 56)[0] == EXT2_SUPER_MAGIC


def test_superblock_reads_fields_from_raw_bytes():
    raw = bytearray(1024)
    struct.pack_into("<I", raw, 0, 42)
    struct.pack_into("<H", raw, 88, 256)
    sb = SuperBlock.unpack(bytes(raw))
    assert sb.s_inodes_count == 42
    assert sb.s_inode_size == 256


def test_superblock_too_short_raises():
    with pytest.raises(Ext2Error):
        SuperBlock.unpack(bytes(100))


def test_superblock_bad_hash_seed_raises():
    sb = make_superblock()
    sb.s_hash_seed = (1, 2)
    with pytest.raises(ValueError):
        sb.pack()


def test_inode_round_trip_preserves_extra():
    blocks = list(range(1, 16))
    inode = Inode(i_mode=0x81A4, i_size=5000, i_links_count=1, i_block=blocks, extra=b"\x07" * 28)
    data = inode.pack()
    assert len(data) == Inode.SIZE + 28
    assert Inode.unpack(data) == inode


def test_inode_size_without_extra():
    assert len(Inode().pack()) == 100


def test_inode_type_checks():
    assert Inode(i_mode=0x41ED).is_directory()
    assert not Inode(i_mode=0x41ED).is_regular()
    assert Inode(i_mode=0x81A4).is_regular()
    assert not Inode(i_mode=0x81A4).is_directory()


def test_inode_wrong_block_count_raises():
    with pytest.raises(ValueError):
        Inode(i_block=[0] * 3).pack()


def test_inode_too_short_raises():
    with pytest.raises(Ext2Error):
        Inode.unpack(bytes(10))


def test_group_desc_round_trip():
    gd = GroupDesc(bg_block_bitmap=3, bg_inode_bitmap=4, bg_inode_table=5,
                   bg_free_blocks_count=900, bg_free_inodes_count=100)
    data = gd.pack()
    assert len(data) == GroupDesc.SIZE
    assert GroupDesc.unpack(data) == gd


def test_group_desc_too_short_raises():
    with pytest.raises(Ext2Error):
        GroupDesc.unpack(bytes(4))


def test_dir_entry_unpack_from_block():
    block = bytearray(1024)
    struct.pack_into("<IHBB", block, 12, 11, 20, 5, FileType.REG_FILE)
    block[20:25] = b"hello"
    entry = DirEntry.unpack(bytes(block), 12)
    assert entry.inode == 11
    assert entry.rec_len == 20
    assert entry.name == "hello"
    assert entry.name_len == 5
    assert entry.file_type == FileType.REG_FILE
    assert entry.offset == 12


def test_dir_entry_round_trip():
    entry = DirEntry(inode=2, rec_len=12, file_type=FileType.DIR, name="..")
    data = entry.pack()
    assert len(data) == DirEntry.HEADER_SIZE + 2
    assert DirEntry.unpack(data, 0) == entry


def test_dir_entry_header_past_end_raises():
    with pytest.raises(Ext2Error):
        DirEntry.unpack(bytes(10), 6)


def test_dir_entry_name_past_end_raises():
    data = struct.pack("<IHBB", 5, 12, 10, 1) + b"ab"
    with pytest.raises(Ext2Error):
        DirEntry.unpack(data, 0)


def test_dir_entry_long_name_raises():
    with pytest.raises(ValueError):
        DirEntry(inode=1, rec_len=300, name="x" * 256).pack()


def test_dir_entry_size_for_dot():
    assert dir_entry_size(1) == 12


@pytest.mark.parametrize("n", [0, 1, 2, 3, 4, 5, 13, 100, 255])
def test_dir_entry_size_invariants(n):
    size = dir_entry_size(n)
    assert size % 4 == 0
    assert 8 + n <= size < 8 + n + 4


def test_permission_string_directory():
    assert permission_string(0x41ED, FileType.DIR) == "drwxr-xr-x"


def test_permission_string_regular_file():
    assert permission_string(0x81A4, FileType.REG_FILE) == "frw-r--r--"


def test_permission_string_extremes():
    assert permission_string(0, FileType.SYMLINK) == "f" + "-" * 9
    assert permission_string(0o777, FileType.DIR) == "d" + "rwx" * 3


def test_file_type_values():
    assert FileType(2) is FileType.DIR
    assert FileType(7) is FileType.SYMLINK