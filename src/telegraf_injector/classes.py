"""Telegraf class data stored as files in a directory.

Each class is a file named after the class. The directory is usually a
mounted secret, so its entries may be symlinks into a ``..data`` directory
that is swapped atomically on update.
"""

import tomllib
from pathlib import Path
from typing import Protocol

from telegraf_injector.console import Reporter
from telegraf_injector.exceptions import ClassDataError, ClassNotFoundError


class ClassData(Protocol):
    """Source of Telegraf class text, looked up by class name."""

    def get_data(self, class_name: str) -> str: ...


class DirectoryClassData:
    """Reads Telegraf classes from a directory.

    Attributes:
        directory: Path of the classes directory.

    """

    def __init__(self, directory: str | Path, reporter: Reporter | None = None) -> None:
        """Initialize DirectoryClassData.

        Args:
            directory: Directory holding one file per class.
            reporter: Reporter for log output.

        """
        self.directory = Path(directory)
        self._reporter = reporter if reporter is not None else Reporter().child("classes")

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"DirectoryClassData(directory={str(self.directory)!r})"

    def validate(self) -> None:
        """Check that the directory holds at least one class and all classes parse.

        Entries that are not regular files after following symlinks are
        ignored, which skips the ``..data`` indirection directories.

        Raises:
            ClassDataError: If a class is not valid TOML or no class could be read.

        """
        self._reporter.info(f"validating class data from directory {self.directory}")

        try:
            entries = sorted(self.directory.iterdir())
        except OSError as err:
            self._reporter.warning(f"unable to retrieve class data from directory: {err}")
            entries = []

        valid = True
        files_available = False
        for entry in entries:
            try:
                if not entry.is_file():
                    continue
                data = entry.read_text(encoding="utf-8")
            except OSError as err:
                self._reporter.warning(f"unable to read class data from file {entry.name}: {err}")
                continue

            files_available = True
            try:
                tomllib.loads(data)
            except tomllib.TOMLDecodeError as err:
                self._reporter.error(f"unable to parse class data {entry.name}", err)
                valid = False

        if not valid:
            raise ClassDataError("class data contains errors ; unable to continue")
        if not files_available:
            raise ClassDataError("no class data found ; unable to continue")

    def get_data(self, class_name: str) -> str:
        """Return the text of a class.

        Args:
            class_name: Name of the class, which is the file name.

        Returns:
            The class text.

        Raises:
            ClassNotFoundError: If the name is not a plain file name or the file
                cannot be read.

        """
        # names come from pod annotations and must not escape the directory
        if not class_name or "/" in class_name or class_name.startswith("."):
            raise ClassNotFoundError(f"invalid class name {class_name!r}")

        try:
            return (self.directory / class_name).read_text(encoding="utf-8")
        except OSError as err:
            self._reporter.warning(f"unable to read class data for {class_name}: {err}")
            raise ClassNotFoundError(f"class {class_name} not found") from err
