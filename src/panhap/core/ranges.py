"""
Genomic value types shared across the package: reference ranges, positions and sample gametes.

All three are immutable and totally ordered, so they can be used as dictionary keys and sorted
deterministically. Contig names compare lexically, meaning ``"10" < "2"``.

Examples:
    >>> r = ReferenceRange.parse('1:1001-2000')
    >>> r.contig, r.start, r.end
    ('1', 1001, 2000)
    >>> str(SampleGamete('LineA', 1))
    'LineA:1'
"""
from dataclasses import dataclass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True, order=True, slots=True)
class ReferenceRange:
    """
    A reference interval used as the unit of haplotype assignment.

    Coordinates are 1-based and inclusive, as found in the VCF rows the ranges are derived from.

    Attributes:
        contig: Reference contig name.
        start: First reference position of the range.
        end: Last reference position of the range.
    """
    contig: str
    start: int
    end: int

    def __str__(self): return f'{self.contig}:{self.start}-{self.end}'
    def __len__(self): return self.end - self.start + 1
    def __contains__(self, position: int) -> bool: return self.start <= position <= self.end

    @classmethod
    def parse(cls, text: str) -> 'ReferenceRange':
        """
        Parses the ``contig:start-end`` form produced by ``str()``.

        Args:
            text: The range string. The contig may itself contain colons.

        Returns:
            A ReferenceRange.

        Raises:
            ValueError: If the string is not of the form ``contig:start-end``.
        """
        contig, sep, span = text.rpartition(':')
        start, dash, end = span.partition('-')
        if not sep or not dash or not contig:
            raise ValueError(f'Invalid reference range "{text}", expected contig:start-end')
        try: return cls(contig, int(start), int(end))
        except ValueError: raise ValueError(f'Invalid coordinates in reference range "{text}"') from None


@dataclass(frozen=True, order=True, slots=True)
class Position:
    """A single contig position, used for assembly regions in ALT headers."""
    contig: str
    position: int

    def __str__(self): return f'{self.contig}:{self.position}'


@dataclass(frozen=True, order=True, slots=True)
class SampleGamete:
    """
    One haplotype copy of a (possibly polyploid) sample.

    Attributes:
        name: Sample name.
        gamete_id: Zero-based gamete index within the sample.
    """
    name: str
    gamete_id: int = 0

    def __post_init__(self):
        if self.gamete_id < 0: raise ValueError(f'Gamete id must be >= 0, got {self.gamete_id}')

    def __str__(self): return f'{self.name}:{self.gamete_id}'

    @classmethod
    def parse(cls, text: str) -> 'SampleGamete':
        """Parses ``name:gamete``; a bare name means gamete 0."""
        name, sep, gamete = text.rpartition(':')
        if not sep or not gamete.isdigit(): return cls(text)
        return cls(name, int(gamete))
