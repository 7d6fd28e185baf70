"""
Reading and writing PS4G count files.

A PS4G file is a ``#`` prefixed header followed by one tab-separated row per (position, gamete set)::

    #PS4G
    #version=3.0
    #<provenance lines>
    #Command: <command line>
    #TotalUniqueCounts: <sum of counts>
    #gamete	gameteIndex	count
    #<sample:gamete>	<index>	<reads>
    gameteSet	refContig	refPosBinned	count	numMappings	propOnTopContig	avgPosVariation
    <ids>	<contig>	<bin>	<count>	<mapped>	<onMain/mapped>	<deviation/onMain>
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union, BinaryIO, Mapping, Iterable, Generator, Optional

from panhap.containers.counts import Ps4gCounts, CountKey, CountValue
from panhap.core.encoding import PositionEncoder
from panhap.core.ranges import SampleGamete
from panhap.io import BaseReader, BaseWriter, ParserError

# Constants ------------------------------------------------------------------------------------------------------------
PS4G_VERSION = '3.0'
PS4G_COLUMNS = ('gameteSet', 'refContig', 'refPosBinned', 'count', 'numMappings', 'propOnTopContig',
                'avgPosVariation')
_STRIP_SUFFIXES = ('.gz', '.txt', '.bed')


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class Ps4gFormatError(ParserError): pass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(slots=True)
class Ps4gHeader:
    """Header of a PS4G file."""
    version: str = ''
    provenance: list[str] = field(default_factory=list)
    command: str = ''
    total_unique_counts: int = 0
    gametes: dict[SampleGamete, tuple[int, int]] = field(default_factory=dict)  # -> (index, count)


@dataclass(frozen=True, slots=True)
class Ps4gRow:
    """One body row of a PS4G file."""
    gametes: tuple[int, ...]
    contig: str
    bin: int
    count: int
    num_mappings: int
    prop_on_top_contig: float
    avg_pos_variation: float


class Ps4gWriter(BaseWriter):
    """
    Writes `Ps4gCounts` rows as a PS4G file.

    The header needs the totals, so the accumulator is given up front; rows are then written with
    `write`, usually from `Ps4gCounts.rows`.

    Args:
        file: Output path or binary handle.
        counts: The counts being written.
        gamete_index: Sample gamete -> gamete index; every gamete is listed, zero counts included.
        contig_names: Chromosome index -> reference contig name.
        command: Command line recorded in the header.
        header: Provenance lines, written with a ``#`` prefix.
        encoder: Encoder of the count positions.

    Examples:
        >>> with Ps4gWriter("out_ps4g.txt", counts, gamete_index, {0: 'chr1'}) as writer:
        ...     writer.write(counts.rows())
    """
    __slots__ = ('_counts', '_gamete_index', '_contig_names', '_command', '_header', '_encoder')

    def __init__(self, file: Union[str, Path, BinaryIO], counts: Ps4gCounts, gamete_index: Mapping[SampleGamete, int],
                 contig_names: Mapping[int, str] = None, command: str = '', header: Iterable[str] = (),
                 encoder: PositionEncoder = None):
        super().__init__(file)
        self._counts = counts
        self._gamete_index = gamete_index
        self._contig_names = contig_names or {}
        self._command = command
        self._header = list(header)
        self._encoder = encoder or PositionEncoder()

    def write_header(self):
        write = self.write_line
        write('#PS4G')
        write(f'#version={PS4G_VERSION}')
        for line in self._header: write(f'#{line}')
        write(f'#Command: {self._command}')
        write(f'#TotalUniqueCounts: {self._counts.total_unique_counts}')
        write('#gamete\tgameteIndex\tcount')
        gamete_counts = self._counts.gamete_counts(max(self._gamete_index.values(), default=-1) + 1)
        for sample_gamete, index in sorted(self._gamete_index.items(), key=lambda kv: kv[1]):
            write(f'#{sample_gamete}\t{index}\t{gamete_counts[index]}')
        write('\t'.join(PS4G_COLUMNS))

    def write_one(self, item: tuple[CountKey, CountValue]):
        (position, gametes), value = item
        chrom, bin_ = self._encoder.decode_bin(position)
        self.write_line(f'{",".join(map(str, gametes))}\t{self._contig_names.get(chrom, str(chrom))}\t{bin_}\t'
                        f'{value.count}\t{value.total_reads_mapped}\t'
                        f'{value.prop_on_top_contig:.4f}\t{value.avg_pos_variation:.4f}')


class Ps4gReader(BaseReader):
    """
    Reader for PS4G files. Iterating yields `Ps4gRow` objects; the parsed header is available as `header`.

    Examples:
        >>> with Ps4gReader("out_ps4g.txt") as reader:
        ...     total = reader.header.total_unique_counts
        ...     rows = list(reader)
    """
    __slots__ = ('_header', '_body')

    def __init__(self, file):
        super().__init__(file)
        self._header: Optional[Ps4gHeader] = None
        self._body = None

    @property
    def header(self) -> Ps4gHeader:
        if self._header is None: self._read_header()
        return self._header

    def _read_header(self):
        header, lines, in_gametes = Ps4gHeader(), self._lines(), False
        for raw in lines:
            line = raw.decode('utf-8')
            if line.startswith('gameteSet\t'): break
            if not line.startswith('#'):
                raise Ps4gFormatError(f'{self.name}:{self.line_number}: body line before the column header')
            text = line[1:]
            if self.line_number == 1:
                if text != 'PS4G': raise Ps4gFormatError(f'{self.name}: not a PS4G file')
            elif text.startswith('version='): header.version = text[8:]
            elif text.startswith('Command: '): header.command = text[9:]
            elif text.startswith('TotalUniqueCounts: '): header.total_unique_counts = int(text[19:])
            elif text == 'gamete\tgameteIndex\tcount': in_gametes = True
            elif in_gametes:
                label, index, count = self._split(text, 3)
                header.gametes[SampleGamete.parse(label)] = (int(index), int(count))
            else: header.provenance.append(text)
        else:
            raise Ps4gFormatError(f'{self.name}: missing column header line')
        self._header, self._body = header, lines

    def _split(self, line: str, n: int) -> list[str]:
        if len(parts := line.split('\t')) != n:
            raise Ps4gFormatError(f'{self.name}:{self.line_number}: expected {n} columns, found {len(parts)}')
        return parts

    def __iter__(self) -> Generator[Ps4gRow, None, None]:
        if self._header is None: self._read_header()
        for raw in self._body:
            if not raw.strip(): continue
            ids, contig, bin_, count, mapped, prop, avg = self._split(raw.decode('utf-8'), len(PS4G_COLUMNS))
            try:
                yield Ps4gRow(tuple(int(i) for i in ids.split(',') if i), contig, int(bin_), int(count),
                              int(mapped), float(prop), float(avg))
            except ValueError as e:
                raise Ps4gFormatError(f'{self.name}:{self.line_number}: {e}') from e


# Functions ------------------------------------------------------------------------------------------------------------
def build_output_file_name(input_file: Union[str, Path], output_dir: Union[str, Path]) -> Path:
    """
    Returns ``output_dir/<input name>_ps4g.txt``, dropping ``.gz``, ``.txt`` and ``.bed`` extensions.

    Examples:
        >>> build_output_file_name('reads/sample_1.bed.gz', 'out')
        PosixPath('out/sample_1_ps4g.txt')
    """
    name = Path(input_file).name
    while name.endswith(_STRIP_SUFFIXES):
        name = name[:name.rindex('.')]
    return Path(output_dir) / f'{name}_ps4g.txt'
