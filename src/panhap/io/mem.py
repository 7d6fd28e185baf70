"""
Reader for Maximal Exact Match (MEM) hit lines emitted by an FM-index aligner such as ropebwt3.

Each line describes one MEM of a read::

    readName <TAB> readStart <TAB> readEnd <TAB> numHits <TAB> <unused> <TAB> contig:strand:pos [<TAB> ...]

Lines of the same read are adjacent in the aligner output; `MemReader.groups` relies on that adjacency
and never sorts.
"""
from dataclasses import dataclass
from typing import Generator, Iterable

from panhap.io import BaseReader, ParserError


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class MemParseError(ParserError): pass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MemHit:
    """One listed alignment target of a MEM: contig, strand and 0-based position."""
    contig: str
    strand: str
    position: int

    def __str__(self): return f'{self.contig}:{self.strand}:{self.position}'


@dataclass(frozen=True, slots=True)
class Mem:
    """
    A Maximal Exact Match between a read and the index.

    Attributes:
        read_name: Read identifier.
        read_start: 0-based start of the match on the read.
        read_end: End (exclusive) of the match on the read.
        num_hits: Number of index hits reported by the aligner. This may be larger than the number of
            listed hits when the aligner truncates the listing.
        hits: Listed hits.
    """
    read_name: str
    read_start: int
    read_end: int
    num_hits: int
    hits: tuple[MemHit, ...] = ()

    def __len__(self): return self.read_end - self.read_start


class MemReader(BaseReader):
    """
    Reader for MEM hit lines. Iterating yields `Mem` objects; `groups` yields the MEMs of each read.

    Blank lines are skipped. Any other malformed line raises `MemParseError`; nothing is skipped silently.

    Examples:
        >>> with MemReader("reads.bed") as reader:
        ...     for group in reader.groups():
        ...         print(group[0].read_name, len(group))
    """
    _delim = '\t'
    _min_cols = 5
    __slots__ = ()

    def __iter__(self) -> Generator[Mem, None, None]:
        parse = self.parse_row
        for line in self._lines():
            if not line.strip(): continue
            yield parse(line.decode('utf-8').split(self._delim))

    def groups(self) -> Generator[list[Mem], None, None]:
        """Yields lists of consecutive MEMs sharing a read name."""
        yield from group_by_read(self)

    def parse_row(self, parts: list[str]) -> Mem:
        """
        Parses the columns of one MEM line.

        Raises:
            MemParseError: If the line has too few columns, non-integer fields or a malformed hit.
        """
        if len(parts) < self._min_cols:
            raise MemParseError(f'{self.name}:{self.line_number}: expected at least {self._min_cols} columns, '
                                f'found {len(parts)}')
        try:
            read_start, read_end, num_hits = int(parts[1]), int(parts[2]), int(parts[3])
        except ValueError:
            raise MemParseError(f'{self.name}:{self.line_number}: non-integer read coordinates or hit count') from None
        hits = []
        for item in parts[5:]:
            if not item: continue
            contig, strand, position = item.rsplit(':', 2) if item.count(':') >= 2 else (None, None, None)
            if not contig or not position or not position.lstrip('-').isdigit():
                raise MemParseError(f'{self.name}:{self.line_number}: malformed hit "{item}", '
                                    f'expected contig:strand:pos')
            hits.append(MemHit(contig, strand, int(position)))
        return Mem(parts[0], read_start, read_end, num_hits, tuple(hits))


# Functions ------------------------------------------------------------------------------------------------------------
def group_by_read(mems: Iterable[Mem]) -> Generator[list[Mem], None, None]:
    """
    Groups adjacent MEMs by read name.

    A change of read name, or the end of the input, closes the current group. Non-adjacent lines of the
    same read therefore form separate groups.
    """
    group = []
    for mem in mems:
        if group and group[0].read_name != mem.read_name:
            yield group
            group = []
        group.append(mem)
    if group: yield group
