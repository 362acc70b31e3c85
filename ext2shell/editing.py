"""Shell commands that modify an ext2 image: create, remove and rename entries."""

from __future__ import annotations

import errno
import logging
import time

from .session import Session
from .structures import BLOCK_SIZE, DirEntry, FileType, Inode, dir_entry_size

log = logging.getLogger(__name__)

REGULAR_FILE_MODE = 0x81A4  # regular file, 0644
DIRECTORY_MODE = 0x41ED  # directory, 0755

_DIRECT_BLOCKS = 12
_MIN_REC_LEN = 8
_MAX_NAME = 255
_MAX_DIR_BLOCKS = 256


def _now():
    return int(time.time())


def _walk(data):
    """Yield every entry of a directory block by following ``rec_len``."""
    offset = 0
    while offset + DirEntry.HEADER_SIZE <= len(data):
        entry = DirEntry.unpack(data, offset)
        yield entry
        if entry.rec_len == 0:
            return
        offset += entry.rec_len


def _put(buffer, entry):
    """Write an entry's header and name at its offset inside ``buffer``."""
    packed = entry.pack()
    buffer[entry.offset:entry.offset + len(packed)] = packed


def _check_name(name):
    if not name:
        raise ValueError("a name cannot be empty")
    if len(name.encode("utf-8", "surrogateescape")) > _MAX_NAME:
        raise ValueError(f"names are limited to {_MAX_NAME} bytes")


class Ext2Shell(Session):
    """A session that can also create, delete, rename and move entries."""

    def _exists(self, name):
        try:
            self.lookup(name)
        except FileNotFoundError:
            return False
        return True

    def _refresh_current(self):
        self.current_inode = self.image.read_inode(self.current_inode_num)

    def touch(self, filename):
        """Create an empty regular file in the current directory; return its inode."""
        if self._exists(filename):
            raise FileExistsError(f"erro: o arquivo '{filename}' já existe.")
        _check_name(filename)
        img = self.image
        inode_num = img.find_free_inode()

        img.set_bitmap_bit(img.group_desc.bg_inode_bitmap, inode_num - 1, 1)
        img.superblock.s_free_inodes_count -= 1
        img.group_desc.bg_free_inodes_count -= 1
        img.write_metadata()

        now = _now()
        img.write_inode(
            inode_num,
            Inode(i_mode=REGULAR_FILE_MODE, i_links_count=1,
                  i_atime=now, i_ctime=now, i_mtime=now),
        )
        log.debug("inode %d created for file %r", inode_num, filename)

        img.add_dir_entry(self.current_inode_num, inode_num, filename, FileType.REG_FILE)

        parent = img.read_inode(self.current_inode_num)
        parent.i_mtime = parent.i_ctime = _now()
        img.write_inode(self.current_inode_num, parent)
        self._refresh_current()

        self._emit(f"Arquivo '{filename}' criado com inode {inode_num}")
        return inode_num

    def mkdir(self, dirname):
        """Create an empty directory; return its inode and data block numbers."""
        if self._exists(dirname):
            raise FileExistsError(f"erro: o diretório '{dirname}' já existe.")
        _check_name(dirname)
        img = self.image
        inode_num = img.find_free_inode()
        block_num = img.find_free_block()

        img.set_bitmap_bit(img.group_desc.bg_inode_bitmap, inode_num - 1, 1)
        img.set_bitmap_bit(img.group_desc.bg_block_bitmap, block_num - 1, 1)
        img.superblock.s_free_inodes_count -= 1
        img.group_desc.bg_free_inodes_count -= 1
        img.superblock.s_free_blocks_count -= 1
        img.group_desc.bg_free_blocks_count -= 1
        img.write_metadata()

        now = _now()
        blocks = [0] * 15
        blocks[0] = block_num
        new_inode = Inode(
            i_mode=DIRECTORY_MODE,
            i_size=BLOCK_SIZE,
            i_blocks=BLOCK_SIZE // 512,
            i_block=blocks,
            i_links_count=2,
            i_atime=now, i_ctime=now, i_mtime=now,
        )

        buffer = bytearray(BLOCK_SIZE)
        dot = DirEntry(inode_num, dir_entry_size(1), FileType.DIR, ".", 0)
        dotdot = DirEntry(self.current_inode_num, BLOCK_SIZE - dot.rec_len,
                          FileType.DIR, "..", dot.rec_len)
        _put(buffer, dot)
        _put(buffer, dotdot)
        img.write_block(block_num, buffer)
        img.write_inode(inode_num, new_inode)

        img.add_dir_entry(self.current_inode_num, inode_num, dirname, FileType.DIR)

        parent = img.read_inode(self.current_inode_num)
        parent.i_links_count += 1
        img.write_inode(self.current_inode_num, parent)
        self._refresh_current()

        self._emit(f"diretório '{dirname}' criado com inode {inode_num} e bloco {block_num}.")
        return inode_num, block_num

    def _is_empty(self, inode):
        for block_num in inode.i_block[:_DIRECT_BLOCKS]:
            if not block_num:
                break
            for entry in _walk(self.image.read_block(block_num)):
                if entry.inode and entry.name_len > 0 and entry.name not in (".", ".."):
                    return False
        return True

    def remove(self, name, is_dir):
        """Remove a file (``is_dir`` false) or an empty directory from the current one."""
        log.debug("looking for %r in directory inode %d", name, self.current_inode_num)
        for block_num in self.current_inode.i_block[:_DIRECT_BLOCKS]:
            if not block_num:
                break
            buffer = bytearray(self.image.read_block(block_num))
            prev = None
            for entry in _walk(buffer):
                if entry.inode == 0 or entry.rec_len < _MIN_REC_LEN:
                    break
                if entry.name == name:
                    self._unlink(block_num, buffer, prev, entry, is_dir)
                    return
                prev = entry
        raise FileNotFoundError(f"erro: entrada '{name}' não encontrada no diretório atual.")

    def _unlink(self, block_num, buffer, prev, entry, is_dir):
        img = self.image
        name = entry.name
        target = img.read_inode(entry.inode)

        if is_dir and entry.file_type != FileType.DIR:
            raise NotADirectoryError(f"erro: '{name}' não é um diretório.")
        if not is_dir and entry.file_type != FileType.REG_FILE:
            message = f"erro: '{name}' não é um arquivo."
            if entry.file_type == FileType.DIR:
                raise IsADirectoryError(message)
            raise ValueError(message)
        if is_dir and not self._is_empty(target):
            raise OSError(errno.ENOTEMPTY, f"erro: diretório '{name}' não está vazio.")

        removed_len = entry.rec_len
        if prev is not None:
            prev.rec_len += entry.rec_len
            _put(buffer, prev)
        else:
            _put(buffer, DirEntry(0, entry.rec_len, FileType.UNKNOWN, "", entry.offset))
            start = entry.offset + DirEntry.HEADER_SIZE
            end = min(start + _MAX_NAME, entry.offset + entry.rec_len, len(buffer))
            if end > start:
                buffer[start:end] = bytes(end - start)
        img.write_block(block_num, buffer)

        if target.i_links_count == 0:
            log.warning("inode %d already has no links", entry.inode)
        else:
            target.i_links_count -= 1
        img.write_inode(entry.inode, target)

        if target.i_links_count == 0:
            img.free_inode_blocks(target)
            img.set_bitmap_bit(img.group_desc.bg_inode_bitmap, entry.inode - 1, 0)
            img.superblock.s_free_inodes_count += 1
            img.group_desc.bg_free_inodes_count += 1
            log.debug("inode %d released", entry.inode)

        self._refresh_current()
        now = _now()
        self.current_inode.i_mtime = now
        self.current_inode.i_ctime = now
        self.current_inode.i_size = max(0, self.current_inode.i_size - removed_len)
        img.write_inode(self.current_inode_num, self.current_inode)
        img.write_metadata()

        self._emit(f"Remoção de '{name}' concluída com sucesso.")

    def rm(self, name):
        """Remove a regular file from the current directory."""
        self.remove(name, False)

    def rmdir(self, name):
        """Remove an empty directory from the current directory."""
        self.remove(name, True)

    def rename(self, dir_inode_num, old_name, new_name):
        """Rename an entry of directory ``dir_inode_num``."""
        _check_name(new_name)
        img = self.image
        dir_inode = img.read_inode(dir_inode_num)
        blocks = img.data_blocks(dir_inode, _MAX_DIR_BLOCKS)
        needed = dir_entry_size(len(new_name.encode("utf-8", "surrogateescape")))

        target = None
        for block_num in blocks:
            buffer = bytearray(img.read_block(block_num))
            prev = None
            for entry in _walk(buffer):
                if entry.inode and entry.name == old_name:
                    if needed <= entry.rec_len:
                        start = entry.offset + DirEntry.HEADER_SIZE
                        buffer[start:start + entry.name_len] = bytes(entry.name_len)
                        entry.name = new_name
                        _put(buffer, entry)
                        img.write_block(block_num, buffer)
                        log.debug("renamed %r to %r in place", old_name, new_name)
                        self._after_rename(dir_inode_num)
                        return
                    target = (entry.inode, entry.file_type)
                    if prev is not None:
                        prev.rec_len += entry.rec_len
                        _put(buffer, prev)
                    else:
                        entry.inode = 0
                        _put(buffer, entry)
                    img.write_block(block_num, buffer)
                    break
                prev = entry
            if target is not None:
                break

        if target is None:
            raise FileNotFoundError(f"erro: entrada '{old_name}' não encontrada.")
        inode_num, file_type = target

        for block_num in blocks:
            buffer = bytearray(img.read_block(block_num))
            for entry in _walk(buffer):
                if entry.inode == 0 and entry.rec_len >= needed:
                    entry.inode = inode_num
                    entry.file_type = file_type
                    entry.name = new_name
                    _put(buffer, entry)
                    img.write_block(block_num, buffer)
                    log.debug("renamed %r to %r reusing an empty entry", old_name, new_name)
                    self._after_rename(dir_inode_num)
                    return

        img.add_dir_entry(dir_inode_num, inode_num, new_name, file_type)
        log.debug("renamed %r to %r by reinsertion", old_name, new_name)
        self._after_rename(dir_inode_num)

    def _after_rename(self, dir_inode_num):
        if dir_inode_num == self.current_inode_num:
            self._refresh_current()

    def mv(self, source, target):
        """Copy a file out of the image to the host, then remove it from the image."""
        written = self.cp(source, target)
        self.remove(source, False)
        return written