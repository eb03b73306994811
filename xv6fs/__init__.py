"""A small Unix-style file system: disk layout, buffer cache, redo log, inodes, files, image builder, console and ELF loader."""

__version__ = "0.1.0"

__all__ = ["layout", "bufcache", "log", "fs", "file", "mkfs", "console", "elf"]