"""
Streaming reader for haplotype VCF (hVCF) and assembly gVCF files.

The reader parses the header once (sample names, ``##ALT`` haplotype metadata and ``##contig`` lines) and
then yields one `VariantRecord` per body row. Records carry just what the indexing and projection code
needs: coordinates, alleles, INFO attributes and per-sample genotype allele indices.

Examples:
    >>> with VcfReader("LineA.h.vcf.gz") as reader:
    ...     print(reader.header.samples)
    ...     for record in reader:
    ...         print(record.reference_range, record.hap_ids(0))
"""
import re
from dataclasses import dataclass, field
from typing import Union, Optional, Generator, Iterator

from panhap.core.ranges import ReferenceRange, Position
from panhap.io import BaseReader, ParserError


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class VcfFormatError(ParserError): pass
class VcfHeaderError(ParserError): pass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AltHeader:
    """
    Metadata describing one haplotype, parsed from an hVCF ``##ALT`` header line.

    Attributes:
        id: Haplotype id (the symbolic allele name).
        description: Free text description.
        source: Origin of the haplotype sequence (usually an assembly FASTA).
        sample_name: Sample the haplotype was extracted from.
        gamete: Gamete of the sample the haplotype belongs to.
        regions: Ordered assembly regions ``(start, end)`` the haplotype was built from. Inverted
            regions (start after end) describe reverse strand alignments.
        checksum: Sequence checksum of the haplotype.
        ref_range: Reference range string the haplotype covers.
        ref_checksum: Checksum of the reference haplotype for the range, if recorded.
    """
    id: str
    description: str
    source: str
    sample_name: str
    regions: tuple[tuple[Position, Position], ...]
    checksum: str
    ref_range: str
    gamete: int = 0
    ref_checksum: str = ''

    @property
    def seq_length(self) -> int:
        """Total number of assembly bases covered by the regions."""
        return sum(abs(end.position - start.position) + 1 for start, end in self.regions)

    @property
    def asm_start(self) -> Position:
        """First base of the first region."""
        return self.regions[0][0]

    @property
    def asm_end(self) -> Position:
        """Last base of the last region."""
        return self.regions[-1][1]


@dataclass(slots=True)
class VcfHeader:
    """Parsed VCF header: sample names, ALT haplotype metadata, contig lengths and raw meta lines."""
    samples: list[str] = field(default_factory=list)
    alt_headers: dict[str, AltHeader] = field(default_factory=dict)
    contigs: dict[str, Optional[int]] = field(default_factory=dict)
    meta: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class VariantRecord:
    """
    A pre-parsed VCF body row.

    Attributes:
        contig: Reference contig.
        start: 1-based ``POS``.
        end: ``INFO/END`` when present, otherwise the last base of the REF allele.
        ref: REF allele.
        alts: ALT alleles; symbolic alleles keep their angle brackets.
        info: INFO attributes; flags map to ``True``.
        samples: Sample names, in column order.
        genotypes: Per sample, the GT allele indices per gamete (``None`` for a missing allele).
    """
    contig: str
    start: int
    end: int
    ref: str
    alts: tuple[str, ...] = ()
    info: dict = field(default_factory=dict)
    samples: tuple[str, ...] = ()
    genotypes: tuple[tuple[Optional[int], ...], ...] = ()

    @property
    def reference_range(self) -> ReferenceRange: return ReferenceRange(self.contig, self.start, self.end)
    @property
    def has_end(self) -> bool: return 'END' in self.info

    def allele(self, index: Optional[int]) -> Optional[str]:
        """Returns the allele for a GT index (0 is REF), or None for a missing allele."""
        if index is None: return None
        if index == 0: return self.ref
        try: return self.alts[index - 1]
        except IndexError:
            raise VcfFormatError(f'Allele index {index} out of range at {self.contig}:{self.start}') from None

    def hap_ids(self, sample_index: int) -> list[Optional[str]]:
        """
        Returns the haplotype id carried by each gamete of a sample.

        Symbolic ``<checksum>`` alleles are unwrapped; missing alleles give None.
        """
        if sample_index >= len(self.genotypes): return []
        return [symbolic_name(a) if (a := self.allele(i)) is not None else None
                for i in self.genotypes[sample_index]]


class VcfReader(BaseReader):
    """
    Reader for hVCF and gVCF files, plain or compressed.

    The header is parsed lazily on first access to `header` or first iteration, so a header-only scan
    of a large file is cheap.
    """
    _MIN_COLS = 8
    __slots__ = ('_header', '_body')

    def __init__(self, file):
        super().__init__(file)
        self._header: Optional[VcfHeader] = None
        self._body: Optional[Iterator[bytes]] = None

    @property
    def header(self) -> VcfHeader:
        if self._header is None: self._read_header()
        return self._header

    def __iter__(self) -> Generator[VariantRecord, None, None]:
        header = self.header
        samples = tuple(header.samples)
        for line in self._body:
            if not line.strip(): continue
            yield self.parse_row(line.decode('utf-8').split('\t'), samples)

    def _read_header(self):
        header = VcfHeader()
        lines = self._lines()
        for raw in lines:
            line = raw.decode('utf-8')
            if not line.strip(): continue
            if line.startswith('##'):
                header.meta.append(line)
                if line.startswith('##ALT=<'):
                    alt = parse_alt_header(line)
                    header.alt_headers.setdefault(alt.id, alt)
                elif line.startswith('##contig=<'):
                    attrs = parse_structured_meta(line)
                    if 'ID' not in attrs: raise VcfHeaderError(f'{self.name}: contig header line without ID: {line}')
                    length = attrs.get('length')
                    header.contigs[attrs['ID']] = int(length) if length and length.isdigit() else None
            elif line.startswith('#'):
                header.samples = line.split('\t')[9:]
                break
            else:
                raise VcfHeaderError(f'{self.name}:{self.line_number}: data line before #CHROM header line')
        else:
            raise VcfHeaderError(f'{self.name}: missing #CHROM header line')
        self._header = header
        self._body = lines

    def parse_row(self, parts: list[str], samples: tuple[str, ...]) -> VariantRecord:
        """
        Parses the tab-separated columns of one body row.

        Raises:
            VcfFormatError: On a short row, non-integer coordinates or a malformed genotype.
        """
        if len(parts) < self._MIN_COLS:
            raise VcfFormatError(f'{self.name}:{self.line_number}: expected at least {self._MIN_COLS} columns, '
                                 f'found {len(parts)}')
        if samples and len(parts) < 9 + len(samples):
            raise VcfFormatError(f'{self.name}:{self.line_number}: expected {9 + len(samples)} columns, '
                                 f'found {len(parts)}')
        try:
            start = int(parts[1])
            info = parse_info(parts[7])
            end = int(info['END']) if 'END' in info else start + len(parts[3]) - 1
            genotypes = ()
            if samples:
                keys = parts[8].split(':')
                gt_index = keys.index('GT') if 'GT' in keys else None
                genotypes = tuple(parse_genotype(col, gt_index) for col in parts[9:9 + len(samples)])
        except ValueError as e:
            raise VcfFormatError(f'{self.name}:{self.line_number}: {e}') from e
        alts = tuple(parts[4].split(',')) if parts[4] not in ('.', '') else ()
        return VariantRecord(parts[0], start, end, parts[3], alts, info, samples, genotypes)


# Functions ------------------------------------------------------------------------------------------------------------
_META_FIELD = re.compile(r'([A-Za-z_][\w.]*)=("(?:[^"\\]|\\.)*"|[^,]*)')
_GT_SPLIT = re.compile(r'[/|]')
_ALT_REQUIRED = ('ID', 'Description', 'Source', 'SampleName', 'Regions', 'Checksum', 'RefRange')


def parse_structured_meta(line: str) -> dict[str, str]:
    """
    Parses a structured meta line such as ``##contig=<ID=1,length=100>`` into a dict.

    Quoted values may contain commas; the surrounding quotes are removed.
    """
    content = line[line.index('<') + 1:line.rindex('>')] if '<' in line and '>' in line else ''
    attrs = {}
    for match in _META_FIELD.finditer(content):
        key, value = match.group(1), match.group(2)
        if len(value) >= 2 and value[0] == value[-1] == '"': value = value[1:-1].replace('\\"', '"')
        attrs[key] = value
    return attrs


def parse_alt_header(line: str) -> AltHeader:
    """
    Parses an hVCF ``##ALT`` line into an `AltHeader`.

    Args:
        line: The full header line, e.g. ``##ALT=<ID=abc,Description="...",...>``.

    Returns:
        The parsed AltHeader.

    Raises:
        VcfHeaderError: If a required key is missing or a numeric field is malformed.

    Examples:
        >>> alt = parse_alt_header('##ALT=<ID=h1,Description="d",Source="a.fa",SampleName="LineA",'
        ...                        'Regions="1:101-200",Checksum="h1",RefRange="1:1-100">')
        >>> alt.regions[0][0].position
        101
    """
    attrs = parse_structured_meta(line)
    if missing := [key for key in _ALT_REQUIRED if key not in attrs]:
        raise VcfHeaderError(f'ALT header line is missing required key(s) {", ".join(missing)}: {line}')
    try: gamete = int(attrs.get('Gamete', 0))
    except ValueError: raise VcfHeaderError(f'Invalid Gamete value in ALT header line: {line}') from None
    return AltHeader(
        id=attrs['ID'], description=attrs['Description'], source=attrs['Source'],
        sample_name=attrs['SampleName'], regions=parse_regions(attrs['Regions']),
        checksum=attrs['Checksum'], ref_range=attrs['RefRange'], gamete=gamete,
        ref_checksum=attrs.get('RefChecksum', '')
    )


def parse_regions(text: str) -> tuple[tuple[Position, Position], ...]:
    """
    Parses a Regions value (``contig:start-end`` entries separated by commas).

    Raises:
        VcfHeaderError: If an entry is malformed.
    """
    regions = []
    for entry in filter(None, (i.strip() for i in text.split(','))):
        contig, sep, span = entry.rpartition(':')
        start, dash, end = span.partition('-')
        if not (contig and sep and dash and start.isdigit() and end.isdigit()):
            raise VcfHeaderError(f'Invalid region "{entry}", expected contig:start-end')
        regions.append((Position(contig, int(start)), Position(contig, int(end))))
    if not regions: raise VcfHeaderError(f'No regions found in "{text}"')
    return tuple(regions)


def parse_info(text: str) -> dict[str, Union[str, bool]]:
    """Parses an INFO column; flags map to True."""
    if text in ('.', ''): return {}
    info = {}
    for chunk in text.split(';'):
        if not chunk: continue
        key, sep, value = chunk.partition('=')
        info[key] = value if sep else True
    return info


def parse_genotype(column: str, gt_index: Optional[int]) -> tuple[Optional[int], ...]:
    """Returns the allele indices of the GT sub-field of a sample column."""
    if gt_index is None: return ()
    fields = column.split(':')
    gt = fields[gt_index] if gt_index < len(fields) else '.'
    return tuple(None if allele in ('.', '') else int(allele) for allele in _GT_SPLIT.split(gt))


def symbolic_name(allele: str) -> str:
    """Strips the angle brackets of a symbolic allele such as ``<checksum>``."""
    if allele.startswith('<') and allele.endswith('>'): return allele[1:-1]
    return allele
