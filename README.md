# ext2shell

An interactive shell for looking inside an EXT2 filesystem image and making
small changes to it, without mounting it. The image is opened read-write.
Blocks are always taken to be 1024 bytes long, and free inodes and blocks are
looked up and allocated in the first block group only.

## Installation

```
pip install .
```

## Usage

```
ext2shell disk.img
```

On start the shell prints the first 8 bytes of the inode bitmap, then shows a
prompt with the current path and accepts these commands:

| Command | What it does |
| --- | --- |
| `info` | Volume name, sizes, free inodes and blocks, group layout |
| `ls` | Entries of the current directory with inode, record length, name length and type |
| `pwd` | Current path |
| `cd <dir>` | Change directory; `.` and `..` are understood |
| `attr <name>` | Permissions, uid, gid, size and modification time |
| `cat <file>` | Print a file's contents |
| `touch <file>` | Create an empty regular file |
| `mkdir <dir>` | Create a directory with `.` and `..` entries |
| `rm <file>` | Remove a regular file |
| `rmdir <dir>` | Remove an empty directory |
| `rename <old> <new>` | Rename an entry in the current directory |
| `cp <file> <host path>` | Copy a regular file out of the image to the host |
| `mv <file> <host path>` | Copy a file out of the image, then remove it from the image |
| `scan` | List directory inodes among inodes 2 to 50 |
| `exit`, `quit` | Leave the shell |

For `cp` and `mv`, the host path is first tried as a file name; if it cannot
be opened as a file, it is treated as a directory and the file keeps its name
inside it. Errors are printed and the shell carries on. The shell stops at
`exit`, `quit` or end of input.

## Library use

The pieces the shell is made of can be used directly:

```python
import io
from ext2shell.image import Ext2Image
from ext2shell.editing import Ext2Shell

with Ext2Image.open("disk.img") as image:
    out = io.StringIO()
    shell = Ext2Shell(image, out)
    shell.ls()
    shell.touch("notes.txt")
    print(out.getvalue())
```

- `ext2shell.structures` holds the on-disk records (`SuperBlock`, `Inode`,
  `GroupDesc`, `DirEntry`) with `pack` and `unpack`, the `FileType` enum,
  `Ext2Error`, `dir_entry_size` and `permission_string`.
- `ext2shell.image.Ext2Image` reads and writes blocks and inodes, finds free
  inodes and blocks, edits bitmaps, adds directory entries and frees blocks.
- `ext2shell.session.Session` holds the current directory and offers the
  read-only commands (`ls`, `pwd`, `cd`, `attr`, `cat`, `cp`, `info`, `lookup`).
- `ext2shell.editing.Ext2Shell` adds `touch`, `mkdir`, `rm`, `rmdir`,
  `remove`, `rename` and `mv`.
- `ext2shell.cli` holds `run_command`, `shell_loop` and `main`.

## What it does not do

- Files cannot be given content: `touch` creates empty files, and there is no
  command to copy a host file into the image or write to a file.
- Directories are listed and searched through their twelve direct blocks only,
  and new entries are added to a directory's first block only; when that
  block is full, the entry is refused.
- `cat` follows direct, single and double indirect blocks; `cp` and `mv`
  follow direct and single indirect blocks only. Triple indirect blocks are
  never read.
- Only 1024-byte blocks are handled, whatever the superblock says.
- Paths are not understood: every command takes a single name in the current
  directory.

## Tests

```
pip install .[test]
pytest
```