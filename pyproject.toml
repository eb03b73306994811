[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xv6fs"
version = "0.1.0"
description = "A small Unix-style file system: disk layout, buffer cache, redo log, inodes, directories, image builder, console and ELF loader"
requires-python = ">=3.10"
dependencies = []
keywords = ["filesystem", "inode", "journal", "disk-image", "teaching", "elf"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
xv6fs-mkfs = "xv6fs.mkfs:main"

[tool.hatch.build.targets.wheel]
packages = ["xv6fs"]

[tool.pytest.ini_options]
addopts = "-ra"
