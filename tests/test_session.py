import io
import struct

import pytest

from ext2shell.image import Ext2Image
from ext2shell.session import Session
from ext2shell.structures import (
    BLOCK_SIZE,
    DirEntry,
    FileType,
    GroupDesc,
    Inode,
    SuperBlock,
    dir_entry_size,
)

TOTAL_BLOCKS = 64
INODE_SIZE = 128
INODE_TABLE = 5
MTIME = 1_700_000_000

HELLO = b"hello world\n"
INNER = b"inner\n"
BIG_SIZE = 12 * BLOCK_SIZE + 100
BIG = bytes(i % 251 for i in range(BIG_SIZE))


def _dir_block(entries):
    buf = bytearray(BLOCK_SIZE)
    offset = 0
    for index, (ino, name, ftype) in enumerate(entries):
        size = dir_entry_size(len(name))
        if index == len(entries) - 1:
            size = BLOCK_SIZE - offset
        packed = DirEntry(ino, size, ftype, name).pack()
        buf[offset:offset + len(packed)] = packed
        offset += size
    return bytes(buf)


def _put_inode(img, num, inode):
    raw = inode.pack()[:INODE_SIZE].ljust(INODE_SIZE, b"\0")
    start = INODE_TABLE * BLOCK_SIZE + (num - 1) * INODE_SIZE
    img[start:start + INODE_SIZE] = raw


def _put_block(img, num, data):
    img[num * BLOCK_SIZE:num * BLOCK_SIZE + len(data)] = data


def _blocks(*nums):
    return list(nums) + [0] * (15 - len(nums))


def _build_image():
    img = bytearray(TOTAL_BLOCKS * BLOCK_SIZE)
    sb = SuperBlock(
        s_inodes_count=32, s_blocks_count=TOTAL_BLOCKS, s_free_blocks_count=30,
        s_free_inodes_count=18, s_first_data_block=1, s_blocks_per_group=8192,
        s_inodes_per_group=32, s_inode_size=INODE_SIZE, s_rev_level=1, s_first_ino=11,
        s_volume_name=b"testvol".ljust(16, b"\0"),
    )
    img[1024:2048] = sb.pack()
    gd = GroupDesc(bg_block_bitmap=3, bg_inode_bitmap=4, bg_inode_table=INODE_TABLE,
                   bg_free_blocks_count=30, bg_free_inodes_count=18, bg_used_dirs_count=2)
    _put_block(img, 2, gd.pack())

    dir_mode = 0o040755
    reg_mode = 0o100644
    _put_inode(img, 2, Inode(i_mode=dir_mode, i_size=BLOCK_SIZE, i_links_count=3,
                             i_mtime=MTIME, i_block=_blocks(9)))
    _put_block(img, 9, _dir_block([
        (2, ".", FileType.DIR), (2, "..", FileType.DIR),
        (11, "hello.txt", FileType.REG_FILE), (12, "sub", FileType.DIR),
        (13, "big.bin", FileType.REG_FILE),
    ]))

    _put_inode(img, 11, Inode(i_mode=reg_mode, i_size=len(HELLO), i_links_count=1,
                              i_mtime=MTIME, i_block=_blocks(10)))
    _put_block(img, 10, HELLO)

    _put_inode(img, 12, Inode(i_mode=dir_mode, i_size=BLOCK_SIZE, i_links_count=2,
                              i_mtime=MTIME, i_block=_blocks(12)))
    _put_block(img, 12, _dir_block([
        (12, ".", FileType.DIR), (2, "..", FileType.DIR),
        (14, "inner.txt", FileType.REG_FILE),
    ]))

    direct = list(range(13, 25))
    _put_inode(img, 13, Inode(i_mode=reg_mode, i_size=BIG_SIZE, i_links_count=1,
                              i_mtime=MTIME, i_block=direct + [25, 0, 0]))
    for index, block in enumerate(direct + [26]):
        _put_block(img, block, BIG[index * BLOCK_SIZE:(index + 1) * BLOCK_SIZE])
    _put_block(img, 25, struct.pack("<I", 26))

    _put_inode(img, 14, Inode(i_mode=reg_mode, i_size=len(INNER), i_links_count=1,
                              i_mtime=MTIME, i_block=_blocks(27)))
    _put_block(img, 27, INNER)
    return bytes(img)


@pytest.fixture
def session(tmp_path):
    path = tmp_path / "fs.img"
    path.write_bytes(_build_image())
    image = Ext2Image.open(path)
    out = io.StringIO()
    yield Session(image, out)
    image.close()


def _output(session):
    text = session.out.getvalue()
    session.out.seek(0)
    session.out.truncate()
    return text


def test_pwd_starts_at_root(session):
    session.pwd()
    assert _output(session) == "/\n"
    assert session.current_inode_num == 2


def test_info_reports_volume_and_block_size(session):
    session.info()
    lines = _output(session).splitlines()
    assert "Volume name.....: testvol" in lines
    assert f"Block size......: {BLOCK_SIZE} bytes" in lines
    assert f"Inode size......: {INODE_SIZE} bytes" in lines
    assert f"Image size......: {TOTAL_BLOCKS * BLOCK_SIZE} bytes" in lines


def test_ls_lists_all_entries(session):
    entries = session.ls()
    text = _output(session)
    assert [e.name for e in entries] == [".", "..", "hello.txt", "sub", "big.bin"]
    assert "hello.txt (Regular)" in text
    assert "sub (Directory)" in text
    assert "  inode...........: 11" in text
    assert sum(e.rec_len for e in entries) == BLOCK_SIZE


def test_lookup_finds_entry(session):
    entry = session.lookup("hello.txt")
    assert entry.inode == 11
    assert entry.file_type == FileType.REG_FILE


def test_lookup_missing_raises(session):
    with pytest.raises(FileNotFoundError):
        session.lookup("nope")


def test_cd_into_and_out_of_subdirectory(session):
    session.cd("sub")
    assert session.current_path == "/sub"
    assert session.current_inode_num == 12
    assert session.lookup("inner.txt").inode == 14
    session.cd("..")
    assert session.current_path == "/"
    assert session.current_inode_num == 2


def test_cd_dot_and_dotdot_at_root_do_nothing(session):
    session.cd(".")
    session.cd("..")
    assert session.current_path == "/"
    assert session.current_inode_num == 2


def test_cd_into_file_raises(session):
    with pytest.raises(NotADirectoryError):
        session.cd("hello.txt")
    assert session.current_path == "/"


def test_cd_missing_raises(session):
    with pytest.raises(FileNotFoundError):
        session.cd("missing")


def test_cat_small_file(session):
    data = session.cat("hello.txt")
    assert data == HELLO
    assert _output(session) == HELLO.decode()


def test_cat_file_with_indirect_block(session):
    assert session.cat("big.bin") == BIG


def test_cat_missing_raises(session):
    with pytest.raises(FileNotFoundError):
        session.cat("absent.txt")


def test_attr_regular_file(session):
    session.attr("hello.txt")
    lines = _output(session).splitlines()
    assert len(lines) == 2
    assert lines[1].startswith("frw-r--r--")
    assert f"{len(HELLO)} B" in lines[1]


def test_attr_directory(session):
    session.attr("sub")
    lines = _output(session).splitlines()
    assert lines[1].startswith("drwxr-xr-x")


def test_cp_to_file(session, tmp_path):
    target = tmp_path / "copy.txt"
    written = session.cp("hello.txt", str(target))
    assert written == target
    assert target.read_bytes() == HELLO


def test_cp_into_directory(session, tmp_path):
    out_dir = tmp_path / "outdir"
    out_dir.mkdir()
    written = session.cp("big.bin", str(out_dir))
    assert written == out_dir / "big.bin"
    assert written.read_bytes() == BIG


def test_cp_directory_rejected(session, tmp_path):
    with pytest.raises(ValueError):
        session.cp("sub", str(tmp_path / "x"))


def test_cp_missing_target_directory(session, tmp_path):
    with pytest.raises(FileNotFoundError):
        session.cp("hello.txt", str(tmp_path / "nope" / "x"))


def test_cp_missing_source(session, tmp_path):
    with pytest.raises(FileNotFoundError):
        session.cp("ghost.txt", str(tmp_path / "x"))