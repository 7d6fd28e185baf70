"""
Transparent opening of plain and compressed files, paths, handles and standard streams.
"""
from io import IOBase
from typing import Union, BinaryIO, Optional
from pathlib import Path
from sys import stdout, stdin
from importlib import import_module


# Classes --------------------------------------------------------------------------------------------------------------
class PeekableHandle:
    """
    Wraps a non-seekable binary stream so its first bytes can be inspected without consuming them.
    Used by Xopen to sniff compression on pipes and stdin.
    """
    __slots__ = ('_stream', '_peek_buffer', '_buffer_pos', '_buffer_len')

    def __init__(self, stream: BinaryIO, max_peek: int = 4096):
        self._stream = stream
        self._peek_buffer = stream.read(max_peek)
        self._buffer_pos = 0
        self._buffer_len = len(self._peek_buffer)

    def peek(self, size: int = -1) -> bytes:
        """Returns up to `size` buffered bytes without advancing."""
        if size == -1 or size > self._buffer_len: return self._peek_buffer
        return self._peek_buffer[:size]

    def read(self, size: int = -1) -> bytes:
        """Reads from the buffer first, then from the underlying stream."""
        if self._buffer_pos >= self._buffer_len: return self._stream.read(size)
        available = self._buffer_len - self._buffer_pos
        if size == -1 or size > available:
            chunk = self._peek_buffer[self._buffer_pos:]
            self._buffer_pos = self._buffer_len
            return chunk + self._stream.read(-1 if size == -1 else size - available)
        chunk = self._peek_buffer[self._buffer_pos:self._buffer_pos + size]
        self._buffer_pos += size
        return chunk

    def readable(self) -> bool: return True

    def __iter__(self):
        if self._buffer_pos < self._buffer_len:
            fragment = self._peek_buffer[self._buffer_pos:]
            self._buffer_pos = self._buffer_len
            lines = fragment.splitlines(keepends=True)
            for i, line in enumerate(lines):
                # The last buffered line may be cut mid-way; stitch it to the rest from the stream
                if i == len(lines) - 1 and not line.endswith(b'\n'): yield line + self._stream.readline()
                else: yield line
        yield from self._stream

    def close(self):
        if hasattr(self._stream, 'close'): self._stream.close()


class Xopen:
    """
    Context manager that opens paths or handles in binary mode, decompressing on read.

    Compression is detected from magic bytes when reading and from the file extension when writing.
    ``'-'`` maps to stdin or stdout depending on the mode.

    Examples:
        >>> with Xopen("calls.h.vcf.gz", "rb") as f:
        ...     first = f.readline()
    """
    _MAGIC = {
        b'\x1f\x8b': 'gzip',
        b'\x42\x5a\x68': 'bz2',
        b'\xfd7zXZ\x00': 'lzma',
    }
    _EXT_TO_PKG = {'gz': 'gzip', 'bgz': 'gzip', 'bz2': 'bz2', 'xz': 'lzma'}
    _MIN_N_BYTES = max(len(i) for i in _MAGIC.keys())
    _OPEN_FUNCS = {}

    def __init__(self, file: Union[str, Path, BinaryIO], mode: str = 'rb'):
        if 't' in mode: raise ValueError('Xopen only supports binary modes')
        self.file = file
        self.mode = mode if 'b' in mode else mode + 'b'
        self._handle: Optional[BinaryIO] = None
        self._raw: Optional[BinaryIO] = None
        self._close_on_exit = False

    @property
    def name(self) -> str:
        if isinstance(self.file, (str, Path)): return str(self.file)
        return getattr(self.file, 'name', repr(self.file))

    def __enter__(self) -> BinaryIO:
        self._handle = self._open()
        return self._handle

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._close_on_exit and self._handle: self._handle.close()
        if self._raw is not None: self._raw.close()
        self._handle = self._raw = None

    @property
    def _writing(self) -> bool: return any(c in self.mode for c in 'wax')

    def _get_opener(self, pkg_name: str):
        if pkg_name not in self._OPEN_FUNCS: self._OPEN_FUNCS[pkg_name] = import_module(pkg_name).open
        return self._OPEN_FUNCS[pkg_name]

    def _open(self) -> BinaryIO:
        if isinstance(self.file, IOBase) or hasattr(self.file, 'read') or hasattr(self.file, 'write'):
            raw_stream, should_close = self.file, False
        elif str(self.file) in {'-', 'stdin', 'stdout'}:
            raw_stream, should_close = (stdout.buffer if self._writing else stdin.buffer), False
        else:
            path = Path(self.file).expanduser()
            self._close_on_exit = True
            if self._writing:
                if pkg := self._EXT_TO_PKG.get(path.suffix.lower().lstrip('.')):
                    return self._get_opener(pkg)(path, mode=self.mode)
                return open(path, mode=self.mode)
            raw_stream, should_close = open(path, mode='rb'), True

        if self._writing: return raw_stream

        try:
            if raw_stream.seekable():
                start = raw_stream.read(self._MIN_N_BYTES)
                raw_stream.seek(0)
                return self._wrap(raw_stream, start, should_close)
        except (AttributeError, ValueError, OSError): pass

        peekable = PeekableHandle(raw_stream)
        return self._wrap(peekable, peekable.peek(self._MIN_N_BYTES), should_close)

    def _wrap(self, stream, start: bytes, should_close: bool):
        for magic, pkg in self._MAGIC.items():
            if start.startswith(magic):
                self._close_on_exit = True
                if should_close: self._raw = stream
                return self._get_opener(pkg)(stream, mode='rb')
        self._close_on_exit = should_close
        return stream
