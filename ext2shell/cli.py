"""Interactive command loop and entry point for browsing and editing an ext2 image."""

from __future__ import annotations

import logging
import sys

from .editing import Ext2Shell
from .image import Ext2Image
from .structures import GREEN, MAGENTA, RESET, YELLOW, Ext2Error

log = logging.getLogger(__name__)

_INVALID_SYNTAX = "sintaxe inválida."
_BITMAP_BYTES = 8
_KNOWN_COMMANDS = (
    "info", "ls", "exit", "quit", "scan", "attr", "pwd", "cd", "mkdir",
    "rename", "touch", "cat", "rm", "rmdir", "cp", "mv",
)


def _emit(shell, text=""):
    shell.out.write(text + "\n")


def _scan(shell):
    _emit(shell, "== Verificando inodes 2 a 50 ==")
    for inode_num, inode in shell.image.scan_directories():
        _emit(shell, f"[Inode {inode_num:2d}] Diretório encontrado!")
        _emit(shell, f"  i_mode: 0x{inode.i_mode:04x}")
        _emit(shell, f"  i_size: {inode.i_size} bytes")
        _emit(shell, "  Blocos diretos:")
        for index, block in enumerate(inode.i_block[:12]):
            if block:
                _emit(shell, f"    - i_block[{index}] = {block}")


def _print_inode_bitmap(shell, n_bytes):
    data = shell.image.inode_bitmap(n_bytes)
    _emit(shell, f"Bitmap de inodes (primeiros {n_bytes} bytes):")
    for index, byte in enumerate(data):
        _emit(shell, f"Byte {index:2d}: {byte:08b}")


_EXACT = {
    "info": lambda shell: shell.info(),
    "ls": lambda shell: shell.ls(),
    "scan": _scan,
    "pwd": lambda shell: shell.pwd(),
}

# (prefix, handler, whether an empty argument is passed through)
_ONE_ARG = (
    ("attr ", lambda shell, arg: shell.attr(arg), True),
    ("cd ", lambda shell, arg: shell.cd(arg), True),
    ("mkdir ", lambda shell, arg: shell.mkdir(arg), False),
    ("touch ", lambda shell, arg: shell.touch(arg), False),
    ("cat ", lambda shell, arg: shell.cat(arg), False),
    ("rm ", lambda shell, arg: shell.rm(arg), False),
    ("rmdir ", lambda shell, arg: shell.rmdir(arg), False),
)

_TWO_ARGS = (
    ("rename ", lambda shell, a, b: shell.rename(shell.current_inode_num, a, b)),
    ("cp ", lambda shell, a, b: shell.cp(a, b)),
    ("mv ", lambda shell, a, b: shell.mv(a, b)),
)


def _two_words(text):
    words = text.split()
    if len(words) < 2:
        return None
    return words[0], words[1]


def _error_message(exc):
    if isinstance(exc, Ext2Error):
        return f"erro: {exc}"
    if isinstance(exc, OSError) and exc.errno is not None and exc.strerror:
        return exc.strerror
    return str(exc)


def _is_known(command):
    return any(
        command.startswith(name) and command[len(name):len(name) + 1] in ("", " ")
        for name in _KNOWN_COMMANDS
    )


def _dispatch(shell, command):
    if command in ("exit", "quit"):
        return False
    handler = _EXACT.get(command)
    if handler is not None:
        handler(shell)
        return True
    for prefix, handler, allow_empty in _ONE_ARG:
        if command.startswith(prefix):
            argument = command[len(prefix):]
            if not argument and not allow_empty:
                _emit(shell, _INVALID_SYNTAX)
            else:
                handler(shell, argument)
            return True
    for prefix, handler in _TWO_ARGS:
        if command.startswith(prefix):
            words = _two_words(command[len(prefix):])
            if words is None:
                _emit(shell, _INVALID_SYNTAX)
            else:
                handler(shell, *words)
            return True
    if _is_known(command):
        _emit(shell, _INVALID_SYNTAX)
    elif command:
        _emit(shell, f"Comando desconhecido: {command}")
    return True


def run_command(shell, line):
    """Run one command line; return False when the shell should stop."""
    command = line.split("\n", 1)[0]
    try:
        return _dispatch(shell, command)
    except (Ext2Error, OSError, ValueError) as exc:
        _emit(shell, _error_message(exc))
        return True


def shell_loop(shell, stdin=None, stdout=None):
    """Prompt for and run commands until end of input or an exit command."""
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else shell.out
    while True:
        stdout.write(
            f"{GREEN}ext2shell:{YELLOW}[{shell.current_path}] {MAGENTA}$ {RESET}"
        )
        stdout.flush()
        line = stdin.readline()
        if not line:
            break
        if not run_command(shell, line):
            break


def main(argv=None):
    """Open the image named on the command line and start the shell."""
    args = sys.argv[1:] if argv is None else list(argv)
    if len(args) != 1:
        print("Uso: ext2shell <imagem_ext2>", file=sys.stderr)
        return 1
    try:
        image = Ext2Image.open(args[0])
    except Ext2Error:
        print("[ERRO] Imagem fornecida não é EXT2", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"erro ao abrir imagem: {exc.strerror or exc}", file=sys.stderr)
        return 1
    with image:
        shell = Ext2Shell(image, sys.stdout)
        log.debug("inode 2 - i_mode: 0x%04x", shell.current_inode.i_mode)
        log.debug("inode 2 - i_block[0]: %d", shell.current_inode.i_block[0])
        _print_inode_bitmap(shell, _BITMAP_BYTES)
        shell_loop(shell, sys.stdin, sys.stdout)
    return 0