"""
Module for managing external programs such as ropebwt3.

Calls block until the program exits and have no timeout; a nonzero exit raises `ExternalProgramError`
carrying the exit code and the command line.
"""
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from collections import deque
from subprocess import Popen, PIPE
from threading import Thread
from typing import Generator, Union, Optional, BinaryIO, Sequence, Iterable

from panhap.io.mem import MemReader
from panhap.io.open import Xopen
from panhap.utils import Config, is_non_empty_file
from panhap.utils.protocols import ExternalTool
from panhap.utils.resources import RESOURCES

logger = logging.getLogger(__name__)
_STDERR_TAIL = 200  # Lines of stderr kept for error messages
_FASTA_LINE_WIDTH = 80


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ExternalProgramError(Exception):
    """Raised when an external program is missing or exits with a nonzero code."""
    def __init__(self, message: str, returncode: Optional[int] = None, command: Sequence[str] = ()):
        self.returncode = returncode
        self.command = list(command)
        super().__init__(message)


class Ropebwt3Error(ExternalProgramError): pass


# Classes --------------------------------------------------------------------------------------------------------------
class ExternalProgram:
    """
    Base class to handle an external program executed in subprocesses, without a shell.

    Args:
        program: Executable name, looked up on the PATH.

    Raises:
        ExternalProgramError: If the program cannot be found.
    """
    def __init__(self, program: str):
        if not (binary := RESOURCES.find_binary(program)):
            raise ExternalProgramError(f'Could not find {program}')
        self._program = program
        self._binary = binary

    def __repr__(self): return f'{self._program}({self._binary})'

    def _command(self, args: Sequence[str]) -> list[str]: return [str(self._binary)] + [str(a) for a in args]

    def _check(self, command: list[str], returncode: int, stderr: bytes = b''):
        if returncode != 0:
            detail = f': {stderr.decode("utf-8", errors="replace").strip()}' if stderr else ''
            raise ExternalProgramError(f'{self._program} failed (code {returncode}) running '
                                       f'"{" ".join(command)}"{detail}', returncode, command)

    def run(self, args: Sequence[str], stdout: BinaryIO = None) -> int:
        """
        Blocking execution; stderr is inherited and stdout goes to `stdout` if given.

        Returns:
            The exit code, which is always 0.

        Raises:
            ExternalProgramError: On a nonzero exit.
        """
        command = self._command(args)
        logger.info('Running %s', ' '.join(command))
        with Popen(command, stdout=stdout) as proc:
            returncode = proc.wait()
        self._check(command, returncode)
        return returncode

    def stream(self, args: Sequence[str]) -> Generator[bytes, None, None]:
        """
        Streaming execution (for long tasks like read alignment).
        Yields lines from stdout as they become available.
        """
        command = self._command(args)
        logger.info('Streaming %s', ' '.join(command))
        with Popen(command, stdout=PIPE, stderr=PIPE) as proc:
            # stderr is drained on its own thread, keeping only the last lines
            stderr_tail = deque(maxlen=_STDERR_TAIL)
            drainer = Thread(target=stderr_tail.extend, args=(proc.stderr,), daemon=True)
            drainer.start()
            yield from proc.stdout
            proc.wait()
            drainer.join()
            self._check(command, proc.returncode, b''.join(stderr_tail))

    @staticmethod
    def _build_params(config: Config) -> list[str]:
        params = []
        for field in fields(config):
            key = field.name
            val = getattr(config, key)
            if val is None or val is False: continue
            params.append(f"-{key}" if len(key) == 1 else f"--{key.replace('_', '-')}")
            if val is not True: params.append(str(val))
        return params


@dataclass
class Ropebwt3MemConfig(Config):
    """
    Options of ``ropebwt3 mem``.

    Attributes:
        t: Threads.
        l: Minimum MEM length.
        p: Maximum number of hits listed per MEM.
    """
    t: int = RESOURCES.available_cpus
    l: int = 148
    p: int = 50


class Ropebwt3:
    """
    A wrapper for the external program ropebwt3.

    Index building is a sequence of blocking `run` calls; `mem` streams the aligner output into
    `MemReader`.

    Args:
        tool: The program to call; defaults to ``ropebwt3`` on the PATH. Any object with the
            `ExternalTool` shape can stand in, so the command sequencing is testable without the binary.
        config: Options of ``ropebwt3 mem``.

    Examples:
        >>> rb3 = Ropebwt3()
        >>> index = rb3.build_index("pangenome.fa", "out/phg", threads=8)
        >>> for group in rb3.mem(index, "reads_1.fq.gz").groups(): ...
    """
    def __init__(self, tool: ExternalTool = None, config: Ropebwt3MemConfig = None):
        self._tool = tool if tool is not None else ExternalProgram('ropebwt3')
        if not isinstance(self._tool, ExternalTool):
            raise TypeError(f'{type(self._tool).__name__} does not provide run and stream')
        self._config = config or Ropebwt3MemConfig()

    @property
    def config(self) -> Ropebwt3MemConfig: return self._config

    def mem_args(self, index: Union[str, Path], reads: Union[str, Path], config: Ropebwt3MemConfig = None) -> list[str]:
        return ['mem'] + ExternalProgram._build_params(config or self._config) + [str(index), str(reads)]

    def mem(self, index: Union[str, Path], reads: Union[str, Path], config: Ropebwt3MemConfig = None) -> MemReader:
        """
        Aligns reads against an ``.fmd`` index.

        Returns:
            A `MemReader` over the streamed output; the aligner runs as the reader is consumed.
        """
        return MemReader(self._tool.stream(self.mem_args(index, reads, config)))

    def build_index(self, fasta: Union[str, Path], prefix: Union[str, Path], threads: int = 1,
                    delete_fmr: bool = True) -> Path:
        """
        Builds the ``.fmd`` index, its sampled suffix array and the contig length file.

        Args:
            fasta: Pangenome FASTA, contigs named ``<contig>_<sample>``.
            prefix: Output prefix.
            threads: Threads for the build steps.
            delete_fmr: Remove the intermediate ``.fmr`` file.

        Returns:
            Path of the ``.fmd`` index.

        Raises:
            Ropebwt3Error: If the ``.fmd`` index is missing or empty after the build.
        """
        prefix = str(prefix)
        fmr, fmd = Path(f'{prefix}.fmr'), Path(f'{prefix}.fmd')
        self._tool.run(['build', f'-t{threads}', '-bo', str(fmr), str(fasta)])
        self._tool.run(['build', '-i', str(fmr), '-do', str(fmd)])
        if not is_non_empty_file(fmd): raise Ropebwt3Error(f'Failed to build index at {fmd}')
        self._tool.run(['ssa', '-o', f'{fmd}.ssa', '-s8', f'-t{threads}', str(fmd)])
        write_contig_lengths(fasta, Path(f'{fmd}.len.gz'))
        if delete_fmr: fmr.unlink(missing_ok=True)
        return fmd

    def build_sample_index(self, samples: Iterable[tuple[str, Union[str, Path]]], output_dir: Union[str, Path],
                           prefix: str = 'phgIndex', threads: int = 1, delete_fmr: bool = True) -> Path:
        """
        Builds one index over the assemblies of several samples.

        Each FASTA is copied into ``<output_dir>/renamedFastas/<prefix>_renamed.fa`` with its contigs renamed
        to ``<contig>_<sample>``, and the combined file is indexed with `build_index`.

        Args:
            samples: ``(sample name, assembly FASTA)`` pairs, e.g. from an index key file.
            output_dir: Directory of the index and the renamed FASTA.
            prefix: Index file prefix within `output_dir`.
            threads: Threads for the build steps.
            delete_fmr: Remove the intermediate ``.fmr`` file.

        Returns:
            Path of the ``.fmd`` index.

        Raises:
            Ropebwt3Error: If no samples are given or the index is empty after the build.
        """
        renamed_dir = Path(output_dir) / 'renamedFastas'
        renamed_dir.mkdir(parents=True, exist_ok=True)
        renamed = renamed_dir / f'{prefix}_renamed.fa'
        n_samples = 0
        with Xopen(renamed, 'wb') as handle:
            for sample, fasta in samples:
                contigs = rename_fasta_seqs(fasta, sample, handle)
                logger.info('Renamed %d contigs of %s for sample %s', len(contigs), fasta, sample)
                n_samples += 1
        if not n_samples: raise Ropebwt3Error('No assemblies to index')
        return self.build_index(renamed, Path(output_dir) / prefix, threads, delete_fmr)


# Functions ------------------------------------------------------------------------------------------------------------
def fasta_contig_lengths(fasta: Union[str, Path]) -> Generator[tuple[str, int], None, None]:
    """Yields ``(id, length)`` for each record of a (possibly compressed) FASTA file."""
    name, length = None, 0
    with Xopen(fasta, 'rb') as handle:
        for line in handle:
            line = line.strip()
            if line.startswith(b'>'):
                if name is not None: yield name, length
                name, length = line[1:].split(maxsplit=1)[0].decode() if len(line) > 1 else '', 0
            elif line:
                length += len(line)
    if name is not None: yield name, length


def write_contig_lengths(fasta: Union[str, Path], output: Union[str, Path]) -> Path:
    """Writes ``id<TAB>length`` for every FASTA record, compressed according to the output extension."""
    with Xopen(output, 'wb') as handle:
        for name, length in fasta_contig_lengths(fasta): handle.write(f'{name}\t{length}\n'.encode())
    return Path(output)


def rename_fasta_seqs(fasta: Union[str, Path], sample: str, output: BinaryIO,
                      line_width: int = _FASTA_LINE_WIDTH) -> list[tuple[str, int]]:
    """
    Copies the records of a FASTA file to `output`, renaming each to ``<id>_<sample>``.

    Descriptions are dropped and sequences are re-wrapped to `line_width` columns.

    Returns:
        The ``(new id, length)`` of every record written.

    Examples:
        >>> with open('renamed.fa', 'wb') as handle:
        ...     rename_fasta_seqs('LineA.fa', 'LineA', handle)
        [('chr1_LineA', 1200), ('chr2_LineA', 900)]
    """
    written = []
    for name, seq in _fasta_records(fasta):
        name = f'{name}_{sample}'
        output.write(f'>{name}\n'.encode())
        for start in range(0, len(seq), line_width): output.write(seq[start:start + line_width] + b'\n')
        written.append((name, len(seq)))
    return written


def _fasta_records(fasta: Union[str, Path]) -> Generator[tuple[str, bytes], None, None]:
    name, chunks = None, []
    with Xopen(fasta, 'rb') as handle:
        for line in handle:
            line = line.strip()
            if line.startswith(b'>'):
                if name is not None: yield name, b''.join(chunks)
                name, chunks = line[1:].split(maxsplit=1)[0].decode() if len(line) > 1 else '', []
            elif line:
                chunks.append(line)
    if name is not None: yield name, b''.join(chunks)
