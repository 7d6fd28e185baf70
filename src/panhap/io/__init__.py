"""
Module for streaming the text formats used by the pipeline.

Readers accept a path, an open binary handle, or any iterable of ``bytes`` lines (such as the stdout
stream of an external program). Writers accept a path or an open binary handle; compression is chosen
from the file extension.
"""
from abc import ABC, abstractmethod
from io import IOBase
from pathlib import Path
from typing import Union, Generator, BinaryIO, Iterable, Optional

from panhap.io.open import Xopen


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ParserError(Exception):
    """Raised when a line of an input file cannot be parsed."""


# Classes --------------------------------------------------------------------------------------------------------------
class BaseReader(ABC):
    """Abstract base class for line-oriented file readers."""
    __slots__ = ('_opener', '_handle', '_iterator', '_line_no')

    def __init__(self, file: Union[str, Path, BinaryIO, Iterable[bytes]]):
        """
        Initializes the reader.

        Args:
            file: Path, binary handle, or an iterable of byte lines.
        """
        if isinstance(file, (str, Path, IOBase)) or hasattr(file, 'read'):
            self._opener = Xopen(file, mode='rb')
            self._handle = None
        else:
            self._opener = None
            self._handle = file
        self._iterator = None
        self._line_no = 0

    @abstractmethod
    def __iter__(self) -> Generator: ...
    def __enter__(self): return self
    def __exit__(self, exc_type, exc_val, exc_tb): self.close()
    def __next__(self):
        if self._iterator is None: self._iterator = self.__iter__()
        return next(self._iterator)

    @property
    def name(self) -> str:
        return self._opener.name if self._opener else getattr(self._handle, 'name', '<stream>')

    @property
    def line_number(self) -> int:
        """1-based number of the line most recently read."""
        return self._line_no

    def close(self):
        """Closes the underlying file if this reader opened it."""
        if self._opener is not None and self._handle is not None:
            self._opener.__exit__(None, None, None)
            self._handle = None

    def _lines(self) -> Generator[bytes, None, None]:
        """Yields lines with their line terminator removed, tracking line numbers."""
        if self._handle is None: self._handle = self._opener.__enter__()
        for line in self._handle:
            self._line_no += 1
            yield line.rstrip(b'\r\n')


class BaseWriter(ABC):
    """
    Abstract base class for text writers.

    Examples:
        >>> with Ps4gWriter("sample_ps4g.txt", ...) as w:
        ...     w.write(rows)
    """
    __slots__ = ('_opener', '_handle')

    def __init__(self, file: Union[str, Path, BinaryIO]):
        self._opener = Xopen(file, mode='wb')
        self._handle: Optional[BinaryIO] = None

    def __enter__(self):
        """Opens the file and writes the header."""
        self._handle = self._opener.__enter__()
        self.write_header()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Closes the file."""
        self._opener.__exit__(exc_type, exc_val, exc_tb)
        self._handle = None

    def write(self, *items):
        """
        Writes multiple items, unpacking lists of items.

        Args:
            *items: Items accepted by `write_one`, or lists of them.
        """
        for item in items:
            if isinstance(item, list):
                for sub_item in item: self.write_one(sub_item)
            else:
                self.write_one(item)

    def write_line(self, text: str):
        self._handle.write(text.encode('utf-8') + b'\n')

    @abstractmethod
    def write_one(self, item):
        """Writes a single item."""

    def write_header(self):
        """Writes the file header if applicable."""
        pass


# Functions ------------------------------------------------------------------------------------------------------------
HVCF_SUFFIXES = ('.h.vcf', '.h.vcf.gz', '.hvcf', '.hvcf.gz')


def list_hvcf_files(directory: Union[str, Path], suffixes: Iterable[str] = HVCF_SUFFIXES) -> list[Path]:
    """
    Recursively lists haplotype VCF files in a directory, sorted by path.

    Args:
        directory: Directory to search.
        suffixes: Accepted file name endings.

    Returns:
        Sorted list of matching file paths.

    Raises:
        FileNotFoundError: If the directory does not exist.
        NotADirectoryError: If the path is not a directory.
    """
    directory = Path(directory)
    if not directory.exists(): raise FileNotFoundError(f'hVCF directory does not exist: {directory}')
    if not directory.is_dir(): raise NotADirectoryError(f'Provided path is not a directory: {directory}')
    suffixes = tuple(suffixes)
    return sorted(p for p in directory.rglob('*') if p.is_file() and p.name.endswith(suffixes))
