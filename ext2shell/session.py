"""Read-only shell commands over an open ext2 image: navigation and inspection."""

from __future__ import annotations

import sys
import time
from pathlib import Path

from .image import Ext2Image
from .structures import BLOCK_SIZE, DirEntry, FileType, permission_string

ROOT_INODE = 2
_DIRECT_BLOCKS = 12
_INDIRECT = 12
_MIN_REC_LEN = 8
_TYPE_NAMES = {
    FileType.UNKNOWN: "Unknown",
    FileType.REG_FILE: "Regular",
    FileType.DIR: "Directory",
    FileType.CHRDEV: "CharDev",
    FileType.BLKDEV: "BlockDev",
    FileType.FIFO: "FIFO",
    FileType.SOCK: "Socket",
    FileType.SYMLINK: "Symlink",
}


def _raw_entries(data):
    """Yield every entry of a directory block, deleted ones included."""
    offset = 0
    while offset + DirEntry.HEADER_SIZE <= len(data):
        entry = DirEntry.unpack(data, offset)
        yield entry
        if entry.rec_len == 0:
            return
        offset += entry.rec_len


class Session:
    """The state of an interactive session: image, current directory and output."""

    def __init__(self, image: Ext2Image, out=None):
        self.image = image
        self.out = out if out is not None else sys.stdout
        self.current_inode_num = ROOT_INODE
        self.current_inode = image.read_inode(ROOT_INODE)
        self.current_path = "/"

    def _emit(self, text=""):
        self.out.write(text + "\n")

    def _directory_blocks(self, inode=None):
        """Yield ``(block_num, data)`` for the direct blocks of a directory."""
        inode = inode if inode is not None else self.current_inode
        for block_num in inode.i_block[:_DIRECT_BLOCKS]:
            if not block_num:
                return
            yield block_num, self.image.read_block(block_num)

    def _entries(self, inode=None, bounded=False):
        """Yield ``(block_num, entry)`` for live entries, stopping at the first gap."""
        for block_num, data in self._directory_blocks(inode):
            for entry in _raw_entries(data):
                if entry.inode == 0 or entry.rec_len < _MIN_REC_LEN:
                    break
                if bounded and entry.offset + entry.rec_len > BLOCK_SIZE:
                    break
                yield block_num, entry

    def lookup(self, name):
        """Return the entry called ``name`` in the current directory."""
        for _, entry in self._entries():
            if entry.name == name:
                return entry
        raise FileNotFoundError(f"Arquivo '{name}' não encontrado.")

    def info(self):
        """Print general information about the volume."""
        sb = self.image.superblock
        bs = BLOCK_SIZE
        group_count = -(-sb.s_blocks_count // sb.s_blocks_per_group) if sb.s_blocks_per_group else 0
        inodetable_blocks = sb.s_inodes_per_group * sb.s_inode_size // bs
        volume = sb.s_volume_name.split(b"\0", 1)[0].decode("utf-8", "replace")
        self._emit(f"Volume name.....: {volume}")
        self._emit(f"Image size......: {sb.s_blocks_count * bs} bytes")
        self._emit(f"Free space......: {sb.s_free_blocks_count * bs // 1024} KiB")
        self._emit(f"Free inodes.....: {sb.s_free_inodes_count}")
        self._emit(f"Free blocks.....: {sb.s_free_blocks_count}")
        self._emit(f"Block size......: {bs} bytes")
        self._emit(f"Inode size......: {sb.s_inode_size} bytes")
        self._emit(f"Groups count....: {group_count}")
        self._emit(f"Groups size.....: {sb.s_blocks_per_group} blocks")
        self._emit(f"Groups inodes...: {sb.s_inodes_per_group} inodes")
        self._emit(f"Inodetable size.: {inodetable_blocks} blocks")

    def ls(self):
        """Print the entries of the current directory and return them."""
        listed = []
        for _, entry in self._entries(bounded=True):
            kind = _TYPE_NAMES.get(entry.file_type, "Unknown")
            self._emit(f"{entry.name} ({kind})")
            self._emit(f"  inode...........: {entry.inode}")
            self._emit(f"  record length...: {entry.rec_len}")
            self._emit(f"  name length.....: {entry.name_len}")
            self._emit(f"  file type.......: {entry.file_type}")
            self._emit()
            listed.append(entry)
        return listed

    def pwd(self):
        self._emit(self.current_path)

    def attr(self, filename):
        """Print permissions, owner, size and modification time of an entry."""
        entry = self.lookup(filename)
        inode = self.image.read_inode(entry.inode)
        self._emit(f"{'permissões':<12} {'uid':<4} {'gid':<4} {'tamanho':<12} modificado em")
        perms = permission_string(inode.i_mode, entry.file_type)
        if inode.i_size < 1024:
            size = f"{inode.i_size} B"
        else:
            size = f"{inode.i_size / 1024.0:.1f} KiB"
        date = time.strftime("%d/%m/%Y %H:%M", time.localtime(inode.i_mtime))
        self._emit(f"{perms:<12} {inode.i_uid:<4} {inode.i_gid:<4} {size:<12} {date}")

    def _go_up(self):
        if self.current_path == "/":
            return
        cut = self.current_path.rfind("/")
        self.current_path = self.current_path[:cut] if cut > 0 else "/"
        for _, data in self._directory_blocks():
            for entry in _raw_entries(data):
                if entry.inode != 0 and entry.name == "..":
                    self.current_inode_num = entry.inode
                    self.current_inode = self.image.read_inode(entry.inode)
                    return

    def cd(self, dirname):
        """Change the current directory; '.' and '..' are understood."""
        if dirname == ".":
            return
        if dirname == "..":
            self._go_up()
            return
        try:
            entry = self.lookup(dirname)
        except FileNotFoundError:
            raise FileNotFoundError(f"diretório '{dirname}' não encontrado.") from None
        if entry.file_type != FileType.DIR:
            raise NotADirectoryError(f"'{dirname}' não é um diretório.")
        self.current_inode_num = entry.inode
        self.current_inode = self.image.read_inode(entry.inode)
        if self.current_path != "/":
            self.current_path += "/"
        self.current_path += dirname
        if len(self.current_path) >= 2 and self.current_path.endswith("/."):
            self.current_path = self.current_path[:-2]

    def cat(self, filename):
        """Write a file's content to the output and return it."""
        entry = self.lookup(filename)
        data = self.image.read_file(self.image.read_inode(entry.inode))
        buffer = getattr(self.out, "buffer", None)
        if buffer is not None:
            self.out.flush()
            buffer.write(data)
            buffer.flush()
        else:
            self.out.write(data.decode("utf-8", "replace"))
        return data

    def _direct_and_indirect_content(self, inode):
        remaining = inode.i_size
        chunks = []

        def blocks():
            yield from (b for b in inode.i_block[:_DIRECT_BLOCKS] if b)
            if inode.i_block[_INDIRECT]:
                raw = self.image.read_block(inode.i_block[_INDIRECT])
                yield from (p for p in memoryview(raw).cast("I") if p)

        if remaining:
            for block in blocks():
                piece = self.image.read_block(block)[:remaining]
                chunks.append(piece)
                remaining -= len(piece)
                if remaining == 0:
                    break
        return b"".join(chunks)

    def cp(self, source, target):
        """Copy a regular file out of the image to the host; return the path written."""
        try:
            entry = self.lookup(source)
        except FileNotFoundError:
            raise FileNotFoundError(f"cp: Arquivo '{source}' não encontrado.") from None
        inode = self.image.read_inode(entry.inode)
        if not inode.is_regular():
            raise ValueError(f"cp: '{source}' não é um arquivo regular.")

        try:
            with open(target, "wb"):
                pass
            full_target = Path(target)
        except OSError:
            joiner = "" if target.endswith("/") else "/"
            full_target = Path(f"{target}{joiner}{source}")

        if not Path(target).exists():
            raise FileNotFoundError(f"diretório '{target}' não existe.")

        content = self._direct_and_indirect_content(inode)
        try:
            full_target.write_bytes(content)
        except OSError as exc:
            raise OSError(f"cp: não foi possível criar '{full_target}'") from exc
        self._emit(f"Arquivo '{source}' copiado com sucesso para '{full_target}'")
        return full_target