"""Source enumeration for ``walsync sync``.

A source is either a single file or a directory.  Directories are listed
one level deep only: every regular file directly inside, dotfiles
included, subdirectories ignored.
"""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class FileScanner:
    """Resolves a sync source into absolute file paths.

    Usage::

        scanner = FileScanner()
        paths = scanner.collect("my-folder")
    """

    @staticmethod
    def path_exists(path: str | Path) -> bool:
        return Path(path).exists()

    @staticmethod
    def is_directory(path: str | Path) -> bool:
        return Path(path).is_dir()

    def list_files(self, directory: str | Path) -> list[Path]:
        """Return the regular files directly inside *directory*, sorted.

        Raises:
            FileNotFoundError: If *directory* does not exist.
            NotADirectoryError: If *directory* is not a directory.
        """
        root = Path(directory)
        if not self.path_exists(root):
            raise FileNotFoundError(f"No such file or directory: {directory}")
        if not self.is_directory(root):
            raise NotADirectoryError(f"Path is not a directory: {directory}")

        root = root.absolute()
        files = sorted(p for p in root.iterdir() if p.is_file())
        logger.debug("Found %d files in %s", len(files), root)
        return files

    def collect(self, source: str | Path) -> list[Path]:
        """Return the files a sync of *source* covers."""
        if self.is_directory(source):
            return self.list_files(source)
        if not self.path_exists(source):
            raise FileNotFoundError(f"No such file or directory: {source}")
        return [Path(source).absolute()]
