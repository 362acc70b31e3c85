"""Block-level access to an ext2 image file: inodes, bitmaps and directories."""

from __future__ import annotations

import logging
import struct
import time

from .structures import (
    BLOCK_SIZE,
    EXT2_SUPER_MAGIC,
    SUPERBLOCK_OFFSET,
    DirEntry,
    Ext2Error,
    GroupDesc,
    Inode,
    SuperBlock,
    dir_entry_size,
)

log = logging.getLogger(__name__)

_DIRECT_BLOCKS = 12
_INDIRECT = 12
_DOUBLE_INDIRECT = 13
_SCAN_FIRST = 2
_SCAN_LAST = 50


def _pointers(data):
    """Decode a block of little-endian 32-bit block numbers."""
    return struct.unpack(f"<{len(data) // 4}I", data)


def _clear_bits(bitmap):
    """Yield the index of every zero bit, lowest bit of each byte first."""
    for byte_index, byte in enumerate(bitmap):
        for bit in range(8):
            if not byte & (1 << bit):
                yield byte_index * 8 + bit


class Ext2Image:
    """An open ext2 image with its superblock and first group descriptor loaded."""

    block_size = BLOCK_SIZE

    def __init__(self, file):
        self.file = file
        file.seek(SUPERBLOCK_OFFSET)
        self.superblock = SuperBlock.unpack(file.read(SuperBlock.SIZE))
        if self.superblock.s_magic != EXT2_SUPER_MAGIC:
            raise Ext2Error("image is not an ext2 filesystem")
        self.group_desc = self._read_group_desc(0)

    @classmethod
    def open(cls, path):
        """Open the image at ``path`` for reading and writing."""
        file = open(path, "r+b")
        try:
            return cls(file)
        except BaseException:
            file.close()
            raise

    def close(self):
        self.file.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    @property
    def _gdt_offset(self):
        return (self.superblock.s_first_data_block + 1) * BLOCK_SIZE

    @property
    def inode_size(self):
        return self.superblock.s_inode_size

    def _read_group_desc(self, group):
        self.file.seek(self._gdt_offset + group * GroupDesc.SIZE)
        return GroupDesc.unpack(self.file.read(GroupDesc.SIZE))

    def read_block(self, block_num):
        """Return the contents of one block."""
        self.file.seek(block_num * BLOCK_SIZE)
        data = self.file.read(BLOCK_SIZE)
        if len(data) != BLOCK_SIZE:
            raise Ext2Error(f"block {block_num} lies past the end of the image")
        return data

    def write_block(self, block_num, data):
        """Overwrite one whole block."""
        if len(data) != BLOCK_SIZE:
            raise ValueError(f"a block holds exactly {BLOCK_SIZE} bytes, got {len(data)}")
        self.file.seek(block_num * BLOCK_SIZE)
        self.file.write(bytes(data))

    def _inode_offset(self, inode_num):
        if inode_num < 1:
            raise Ext2Error(f"invalid inode number {inode_num}")
        per_group = self.superblock.s_inodes_per_group
        group, index = divmod(inode_num - 1, per_group)
        table = self._read_group_desc(group).bg_inode_table
        return table * BLOCK_SIZE + index * self.inode_size

    def read_inode(self, inode_num):
        """Read inode ``inode_num`` (numbered from 1)."""
        self.file.seek(self._inode_offset(inode_num))
        data = self.file.read(self.inode_size)
        if len(data) != self.inode_size:
            raise Ext2Error(f"inode {inode_num} lies past the end of the image")
        return Inode.unpack(data)

    def write_inode(self, inode_num, inode):
        """Write ``inode`` into its slot, padded or cut to the on-disk inode size."""
        raw = inode.pack()[: self.inode_size].ljust(self.inode_size, b"\0")
        self.file.seek(self._inode_offset(inode_num))
        self.file.write(raw)
        self.file.flush()
        log.debug(
            "wrote inode %d (inode table %d, block bitmap %d, inode bitmap %d)",
            inode_num,
            self.group_desc.bg_inode_table,
            self.group_desc.bg_block_bitmap,
            self.group_desc.bg_inode_bitmap,
        )

    def write_metadata(self):
        """Store the in-memory superblock and group descriptor back on disk."""
        self.file.seek(SUPERBLOCK_OFFSET)
        self.file.write(self.superblock.pack())
        self.file.seek(self._gdt_offset)
        self.file.write(self.group_desc.pack())
        self.file.flush()

    def find_free_block(self):
        """Return the first unused block at or after the first data block."""
        bitmap = self.read_block(self.group_desc.bg_block_bitmap)
        first = self.superblock.s_first_data_block
        for index in _clear_bits(bitmap):
            block = index + 1
            if block >= first:
                log.debug("free block found: %d", block)
                return block
        raise Ext2Error("no free block available")

    def find_free_inode(self):
        """Return the number of the first unused inode."""
        bitmap = self.read_block(self.group_desc.bg_inode_bitmap)
        limit = min(self.superblock.s_inodes_per_group, BLOCK_SIZE * 8)
        for index in _clear_bits(bitmap):
            if index >= limit:
                break
            log.debug("free inode found: %d", index + 1)
            return index + 1
        raise Ext2Error("no free inode available")

    def set_bitmap_bit(self, block_num, bit_index, value):
        """Set or clear one bit of the bitmap stored in ``block_num``.

        Block 0 and bit indexes outside the block are ignored.
        """
        if block_num == 0 or not 0 <= bit_index < BLOCK_SIZE * 8:
            return
        buffer = bytearray(self.read_block(block_num))
        byte_index, bit = divmod(bit_index, 8)
        if value:
            buffer[byte_index] |= 1 << bit
        else:
            buffer[byte_index] &= ~(1 << bit) & 0xFF
        self.write_block(block_num, buffer)

    def data_blocks(self, inode, max_blocks=256):
        """Direct blocks, then single-indirect ones up to the first zero pointer."""
        blocks = [b for b in inode.i_block[:_DIRECT_BLOCKS] if b][:max_blocks]
        indirect = inode.i_block[_INDIRECT]
        if indirect and len(blocks) < max_blocks:
            for pointer in _pointers(self.read_block(indirect)):
                if not pointer or len(blocks) >= max_blocks:
                    break
                blocks.append(pointer)
        return blocks

    @staticmethod
    def _place(buffer, offset, entry):
        packed = entry.pack()
        buffer[offset:offset + len(packed)] = packed

    def add_dir_entry(self, dir_inode_num, new_inode_num, name, file_type):
        """Insert an entry into the first block of a directory."""
        dir_inode = self.read_inode(dir_inode_num)
        block_num = dir_inode.i_block[0]
        buffer = bytearray(self.read_block(block_num))

        new_entry = DirEntry(new_inode_num, 0, file_type, name)
        if new_entry.name_len > 255:
            raise ValueError("directory entry names are limited to 255 bytes")
        needed = dir_entry_size(new_entry.name_len)

        offset = 0
        placed = False
        while offset + DirEntry.HEADER_SIZE <= BLOCK_SIZE:
            entry = DirEntry.unpack(buffer, offset)
            if entry.rec_len == 0:
                break
            if entry.inode == 0:
                if needed <= entry.rec_len:
                    new_entry.rec_len = entry.rec_len
                    self._place(buffer, offset, new_entry)
                    placed = True
                    break
            else:
                actual = dir_entry_size(entry.name_len)
                if entry.rec_len >= actual and entry.rec_len - actual >= needed:
                    new_entry.rec_len = entry.rec_len - actual
                    entry.rec_len = actual
                    self._place(buffer, offset, entry)
                    self._place(buffer, offset + actual, new_entry)
                    placed = True
                    break
            offset += entry.rec_len

        if not placed:
            if offset + needed > BLOCK_SIZE:
                raise Ext2Error(f"no room in the directory block for {name!r}")
            new_entry.rec_len = BLOCK_SIZE - offset
            self._place(buffer, offset, new_entry)

        self.write_block(block_num, buffer)
        old_size = dir_inode.i_size
        dir_inode.i_size += needed
        dir_inode.i_mtime = dir_inode.i_ctime = int(time.time())
        self.write_inode(dir_inode_num, dir_inode)
        log.debug(
            "directory inode %d grew from %d to %d bytes",
            dir_inode_num, old_size, dir_inode.i_size,
        )

    def free_block(self, block_num):
        """Mark a block free, update the free counts and zero its contents."""
        if block_num == 0:
            return
        self.set_bitmap_bit(self.group_desc.bg_block_bitmap, block_num - 1, 0)
        self.superblock.s_free_blocks_count += 1
        self.group_desc.bg_free_blocks_count += 1
        self.write_block(block_num, bytes(BLOCK_SIZE))

    def free_inode_blocks(self, inode):
        """Free every block an inode points to, indirect blocks included."""
        blocks = inode.i_block
        if blocks[_DOUBLE_INDIRECT]:
            for l2 in _pointers(self.read_block(blocks[_DOUBLE_INDIRECT])):
                if not l2:
                    continue
                for l1 in _pointers(self.read_block(l2)):
                    if l1:
                        self.free_block(l1)
                self.free_block(l2)
            self.free_block(blocks[_DOUBLE_INDIRECT])

        if blocks[_INDIRECT]:
            for pointer in _pointers(self.read_block(blocks[_INDIRECT])):
                if pointer:
                    self.free_block(pointer)
            self.free_block(blocks[_INDIRECT])

        for block in blocks[:_DIRECT_BLOCKS]:
            if block:
                self.free_block(block)

    def scan_directories(self):
        """Yield ``(number, inode)`` for directory inodes among inodes 2 to 50."""
        last = min(_SCAN_LAST, self.superblock.s_inodes_count)
        for inode_num in range(_SCAN_FIRST, last + 1):
            inode = self.read_inode(inode_num)
            if inode.is_directory():
                yield inode_num, inode

    def inode_bitmap(self, n_bytes):
        """Return the first ``n_bytes`` of the inode bitmap."""
        self.file.seek(self.group_desc.bg_inode_bitmap * BLOCK_SIZE)
        return self.file.read(n_bytes)

    def _file_blocks(self, inode):
        for block in inode.i_block[:_DIRECT_BLOCKS]:
            if block:
                yield block
        if inode.i_block[_INDIRECT]:
            for pointer in _pointers(self.read_block(inode.i_block[_INDIRECT])):
                if pointer:
                    yield pointer
        if inode.i_block[_DOUBLE_INDIRECT]:
            for l2 in _pointers(self.read_block(inode.i_block[_DOUBLE_INDIRECT])):
                if not l2:
                    continue
                for pointer in _pointers(self.read_block(l2)):
                    if pointer:
                        yield pointer

    def read_file(self, inode):
        """Return the ``i_size`` bytes of a file's content."""
        remaining = inode.i_size
        chunks = []
        if remaining:
            for block in self._file_blocks(inode):
                data = self.read_block(block)[:remaining]
                chunks.append(data)
                remaining -= len(data)
                if remaining == 0:
                    break
        return b"".join(chunks)