"""Interactive shell and library for reading and modifying EXT2 filesystem images."""

__version__ = "0.1.0"
__all__ = ["structures", "image", "session", "editing", "cli"]