"""On-disk ext2 structures, constants and small helpers for the shell."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum

SUPERBLOCK_OFFSET = 1024
EXT2_SUPER_MAGIC = 0xEF53
EXT2_S_IFREG = 0x8000
EXT2_S_IFDIR = 0x4000
EXT2_S_IFMT = 0xF000
BLOCK_SIZE = 1024

GREEN = "\x1b[32m"
MAGENTA = "\x1b[35m"
RESET = "\x1b[0m"
YELLOW = "\x1b[33m"


class Ext2Error(Exception):
    """Raised when an image or one of its structures is invalid."""


class FileType(IntEnum):
    """File type codes stored in directory entries."""

    UNKNOWN = 0
    REG_FILE = 1
    DIR = 2
    CHRDEV = 3
    BLKDEV = 4
    FIFO = 5
    SOCK = 6
    SYMLINK = 7


_SUPER_FMT = struct.Struct("<13I6H4I2HI2H3I16s16s64sI2BH16s3I4I2BH2I760s")
_SUPER_FIELDS_HEAD = (
    "s_inodes_count", "s_blocks_count", "s_r_blocks_count", "s_free_blocks_count",
    "s_free_inodes_count", "s_first_data_block", "s_log_block_size", "s_log_frag_size",
    "s_blocks_per_group", "s_frags_per_group", "s_inodes_per_group", "s_mtime", "s_wtime",
    "s_mnt_count", "s_max_mnt_count", "s_magic", "s_state", "s_errors",
    "s_minor_rev_level", "s_lastcheck", "s_checkinterval", "s_creator_os", "s_rev_level",
    "s_def_resuid", "s_def_resgid", "s_first_ino", "s_inode_size", "s_block_group_nr",
    "s_feature_compat", "s_feature_incompat", "s_feature_ro_compat", "s_uuid",
    "s_volume_name", "s_last_mounted", "s_algorithm_usage_bitmap", "s_prealloc_blocks",
    "s_prealloc_dir_blocks", "s_padding1", "s_journal_uuid", "s_journal_inum",
    "s_journal_dev", "s_last_orphan",
)
_SUPER_FIELDS_TAIL = (
    "s_def_hash_version", "s_reserved_char_pad", "s_reserved_word_pad",
    "s_default_mount_opts", "s_first_meta_bg", "s_reserved",
)


@dataclass
class SuperBlock:
    """The ext2 superblock (1024 bytes on disk)."""

    SIZE = _SUPER_FMT.size

    s_inodes_count: int = 0
    s_blocks_count: int = 0
    s_r_blocks_count: int = 0
    s_free_blocks_count: int = 0
    s_free_inodes_count: int = 0
    s_first_data_block: int = 0
    s_log_block_size: int = 0
    s_log_frag_size: int = 0
    s_blocks_per_group: int = 0
    s_frags_per_group: int = 0
    s_inodes_per_group: int = 0
    s_mtime: int = 0
    s_wtime: int = 0
    s_mnt_count: int = 0
    s_max_mnt_count: int = 0
    s_magic: int = EXT2_SUPER_MAGIC
    s_state: int = 0
    s_errors: int = 0
    s_minor_rev_level: int = 0
    s_lastcheck: int = 0
    s_checkinterval: int = 0
    s_creator_os: int = 0
    s_rev_level: int = 0
    s_def_resuid: int = 0
    s_def_resgid: int = 0
    s_first_ino: int = 0
    s_inode_size: int = 0
    s_block_group_nr: int = 0
    s_feature_compat: int = 0
    s_feature_incompat: int = 0
    s_feature_ro_compat: int = 0
    s_uuid: bytes = bytes(16)
    s_volume_name: bytes = bytes(16)
    s_last_mounted: bytes = bytes(64)
    s_algorithm_usage_bitmap: int = 0
    s_prealloc_blocks: int = 0
    s_prealloc_dir_blocks: int = 0
    s_padding1: int = 0
    s_journal_uuid: bytes = bytes(16)
    s_journal_inum: int = 0
    s_journal_dev: int = 0
    s_last_orphan: int = 0
    s_hash_seed: tuple = (0, 0, 0, 0)
    s_def_hash_version: int = 0
    s_reserved_char_pad: int = 0
    s_reserved_word_pad: int = 0
    s_default_mount_opts: int = 0
    s_first_meta_bg: int = 0
    s_reserved: bytes = bytes(760)

    @classmethod
    def unpack(cls, data):
        """Decode a superblock from at least 1024 bytes."""
        if len(data) < cls.SIZE:
            raise Ext2Error(f"superblock needs {cls.SIZE} bytes, got {len(data)}")
        values = _SUPER_FMT.unpack_from(data)
        head = len(_SUPER_FIELDS_HEAD)
        kwargs = dict(zip(_SUPER_FIELDS_HEAD, values[:head]))
        kwargs["s_hash_seed"] = tuple(values[head:head + 4])
        kwargs.update(zip(_SUPER_FIELDS_TAIL, values[head + 4:]))
        return cls(**kwargs)

    def pack(self):
        """Encode the superblock into its 1024-byte on-disk form."""
        if len(self.s_hash_seed) != 4:
            raise ValueError("s_hash_seed must hold four values")
        head = [getattr(self, name) for name in _SUPER_FIELDS_HEAD]
        tail = [getattr(self, name) for name in _SUPER_FIELDS_TAIL]
        try:
            return _SUPER_FMT.pack(*head, *self.s_hash_seed, *tail)
        except struct.error as exc:
            raise ValueError(f"superblock field out of range: {exc}") from exc


_INODE_FMT = struct.Struct("<2H5I2H3I15I")


@dataclass
class Inode:
    """An ext2 inode; bytes past the classic fields are kept verbatim."""

    SIZE = _INODE_FMT.size

    i_mode: int = 0
    i_uid: int = 0
    i_size: int = 0
    i_atime: int = 0
    i_ctime: int = 0
    i_mtime: int = 0
    i_dtime: int = 0
    i_gid: int = 0
    i_links_count: int = 0
    i_blocks: int = 0
    i_flags: int = 0
    i_osd1: int = 0
    i_block: list = field(default_factory=lambda: [0] * 15)
    extra: bytes = b""

    @classmethod
    def unpack(cls, data):
        """Decode an inode record; anything after the known fields goes to ``extra``."""
        if len(data) < cls.SIZE:
            raise Ext2Error(f"inode needs {cls.SIZE} bytes, got {len(data)}")
        values = _INODE_FMT.unpack_from(data)
        return cls(*values[:12], i_block=list(values[12:]), extra=bytes(data[cls.SIZE:]))

    def pack(self):
        """Encode the inode, followed by its preserved extra bytes."""
        if len(self.i_block) != 15:
            raise ValueError("i_block must hold 15 block numbers")
        try:
            head = _INODE_FMT.pack(
                self.i_mode, self.i_uid, self.i_size, self.i_atime, self.i_ctime,
                self.i_mtime, self.i_dtime, self.i_gid, self.i_links_count,
                self.i_blocks, self.i_flags, self.i_osd1, *self.i_block,
            )
        except struct.error as exc:
            raise ValueError(f"inode field out of range: {exc}") from exc
        return head + self.extra

    def is_directory(self):
        return (self.i_mode & EXT2_S_IFMT) == EXT2_S_IFDIR

    def is_regular(self):
        return (self.i_mode & EXT2_S_IFMT) == EXT2_S_IFREG


_GROUP_FMT = struct.Struct("<3I4H12s")


@dataclass
class GroupDesc:
    """A block group descriptor (32 bytes on disk)."""

    SIZE = _GROUP_FMT.size

    bg_block_bitmap: int = 0
    bg_inode_bitmap: int = 0
    bg_inode_table: int = 0
    bg_free_blocks_count: int = 0
    bg_free_inodes_count: int = 0
    bg_used_dirs_count: int = 0
    bg_pad: int = 0
    bg_reserved: bytes = bytes(12)

    @classmethod
    def unpack(cls, data):
        if len(data) < cls.SIZE:
            raise Ext2Error(f"group descriptor needs {cls.SIZE} bytes, got {len(data)}")
        return cls(*_GROUP_FMT.unpack_from(data))

    def pack(self):
        try:
            return _GROUP_FMT.pack(
                self.bg_block_bitmap, self.bg_inode_bitmap, self.bg_inode_table,
                self.bg_free_blocks_count, self.bg_free_inodes_count,
                self.bg_used_dirs_count, self.bg_pad, self.bg_reserved,
            )
        except struct.error as exc:
            raise ValueError(f"group descriptor field out of range: {exc}") from exc


_DIRENT_FMT = struct.Struct("<IHBB")


@dataclass
class DirEntry:
    """A directory entry; ``offset`` is where it sits inside its block."""

    HEADER_SIZE = _DIRENT_FMT.size

    inode: int = 0
    rec_len: int = 0
    file_type: int = FileType.UNKNOWN
    name: str = ""
    offset: int = 0

    @property
    def raw_name(self):
        return self.name.encode("utf-8", "surrogateescape")

    @property
    def name_len(self):
        return len(self.raw_name)

    @classmethod
    def unpack(cls, data, offset):
        """Decode the entry found at ``offset`` in a directory block."""
        end_header = offset + cls.HEADER_SIZE
        if offset < 0 or end_header > len(data):
            raise Ext2Error(f"directory entry header at {offset} runs past the block")
        inode, rec_len, name_len, file_type = _DIRENT_FMT.unpack_from(data, offset)
        raw = bytes(data[end_header:end_header + name_len])
        if len(raw) != name_len:
            raise Ext2Error(f"directory entry name at {offset} runs past the block")
        return cls(inode, rec_len, file_type, raw.decode("utf-8", "surrogateescape"), offset)

    def pack(self):
        """Encode header and name; the caller places it within ``rec_len`` bytes."""
        raw = self.raw_name
        if len(raw) > 255:
            raise ValueError("directory entry names are limited to 255 bytes")
        try:
            return _DIRENT_FMT.pack(self.inode, self.rec_len, len(raw), self.file_type) + raw
        except struct.error as exc:
            raise ValueError(f"directory entry field out of range: {exc}") from exc


def dir_entry_size(name_len):
    """Bytes a directory entry with a name of ``name_len`` needs, rounded to 4."""
    return (8 + name_len + 3) & ~3


def permission_string(mode, file_type):
    """Render mode bits as 'd' or 'f' followed by rwx triplets."""
    kind = "d" if file_type == FileType.DIR else "f"
    bits = "".join(
        letter if mode & (0o400 >> shift) else "-"
        for shift, letter in zip(range(9), "rwxrwxrwx")
    )
    return kind + bits