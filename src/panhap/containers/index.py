"""
Pangenome haplotype index built from haplotype VCF (hVCF) files.

The index maps every (reference range, sample, gamete) to the id of the haplotype that sample carries
there, and every haplotype id to the ALT header metadata describing it.

Construction runs two sequential passes over the files:

1. A header pass collecting sample names (which must be unique across all files) and ALT metadata.
2. A data pass assigning dense ids to ranges in order of first sight and filling a sparse
   ``(range_id, sample_id, gamete_id) -> hap_id`` map, where the first non-null value for a slot wins.

Examples:
    >>> index = HaplotypeIndex.from_directory("hvcf_dir/")
    >>> index.number_of_samples(), index.number_of_ranges()
    (3, 38)
    >>> first = index.ranges()[0]
    >>> index.sample_to_hap_id(first, SampleGamete('LineA'))
    '4fc7b8af32ddd74e07cb49d147ef1938'
"""
import logging
from collections import defaultdict
from hashlib import md5
from pathlib import Path
from typing import Union, Iterable, Optional, Mapping

from panhap.core.ranges import ReferenceRange, SampleGamete
from panhap.io import list_hvcf_files
from panhap.io.vcf import VcfReader, AltHeader, VariantRecord

logger = logging.getLogger(__name__)

Slot = tuple[int, int]  # (sample_id, gamete_id) within one range


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class HaplotypeIndexError(LookupError): pass
class RangeNotFoundError(HaplotypeIndexError): pass
class SampleNotFoundError(HaplotypeIndexError): pass


class DuplicateSampleNameError(ValueError):
    """Raised when a sample name appears in more than one input file."""
    def __init__(self, names: list[str]):
        self.names = names
        super().__init__(f'Duplicate sample names across hVCF files: {", ".join(names)}')


# Classes --------------------------------------------------------------------------------------------------------------
class HaplotypeIndex:
    """
    Queryable range x sample x gamete -> haplotype id index.

    Args:
        paths: hVCF files to merge. Sample names must be unique across all files.

    Raises:
        DuplicateSampleNameError: If any sample name is present in more than one file.
    """
    def __init__(self, paths: Iterable[Union[str, Path]]):
        self._paths = [Path(p) for p in paths]
        self._sample_names: list[str] = []
        self._sample_to_id: dict[str, int] = {}
        self._alt_headers: dict[str, AltHeader] = {}
        self._contig_lengths: dict[str, Optional[int]] = {}
        self._range_to_id: dict[ReferenceRange, int] = {}
        self._grid: list[dict[Slot, str]] = []
        self._read_headers()
        self._read_records()
        self._sorted_ranges = sorted(self._range_to_id)
        self.contigs = sorted({r.contig for r in self._sorted_ranges})
        logger.info('Indexed %d samples over %d reference ranges', self.number_of_samples(), self.number_of_ranges())

    @classmethod
    def build(cls, paths: Iterable[Union[str, Path]]) -> 'HaplotypeIndex':
        """Builds an index from hVCF files."""
        return cls(paths)

    @classmethod
    def from_directory(cls, directory: Union[str, Path]) -> 'HaplotypeIndex':
        """Builds an index from every ``.h.vcf``, ``.hvcf`` (optionally gzipped) file under `directory`."""
        return cls(list_hvcf_files(directory))

    def __repr__(self):
        return f'{self.__class__.__name__}({self.number_of_samples()} samples, {self.number_of_ranges()} ranges)'

    # Construction -----------------------------------------------------------------------------------------------------
    def _read_headers(self):
        logger.info('Reading headers of %d hVCF files', len(self._paths))
        names = []
        for path in self._paths:
            with VcfReader(path) as reader:
                header = reader.header
            names.extend(header.samples)
            for hap_id, alt in header.alt_headers.items(): self._alt_headers.setdefault(hap_id, alt)
            for contig, length in header.contigs.items(): self._contig_lengths.setdefault(contig, length)
        unique = set(names)
        leftover = list(names)
        for name in unique: leftover.remove(name)
        if leftover: raise DuplicateSampleNameError(sorted(set(leftover)))
        self._sample_names = sorted(unique)
        self._sample_to_id = {name: i for i, name in enumerate(self._sample_names)}

    def _read_records(self):
        for path in self._paths:
            logger.debug('Indexing haplotypes in %s', path)
            with VcfReader(path) as reader:
                sample_ids = [self._sample_to_id[name] for name in reader.header.samples]
                for record in reader:
                    range_id = self._range_to_id.setdefault(record.reference_range, len(self._range_to_id))
                    if range_id == len(self._grid): self._grid.append({})
                    merge_haplotype_slots(self._grid[range_id], record_slots(record, sample_ids))

    # Sizes ------------------------------------------------------------------------------------------------------------
    def number_of_samples(self) -> int: return len(self._sample_names)
    def number_of_ranges(self) -> int: return len(self._range_to_id)
    def samples(self) -> list[str]: return list(self._sample_names)
    def contig_header_lines(self) -> dict[str, Optional[int]]: return dict(self._contig_lengths)
    def num_sample_gametes(self) -> int: return len(self.sample_gametes_in_graph())

    # Ranges -----------------------------------------------------------------------------------------------------------
    def ranges(self) -> list[ReferenceRange]:
        """All reference ranges sorted by (contig, start, end)."""
        return list(self._sorted_ranges)

    def ranges_by_contig(self) -> dict[str, list[ReferenceRange]]:
        by_contig = defaultdict(list)
        for r in self._sorted_ranges: by_contig[r.contig].append(r)
        return dict(by_contig)

    def ref_range_to_index_map(self) -> dict[ReferenceRange, int]:
        """Position of each range in the sorted `ranges` list."""
        return {r: i for i, r in enumerate(self._sorted_ranges)}

    def ref_range_str_to_index_map(self) -> dict[str, int]:
        return {str(r): i for i, r in enumerate(self._sorted_ranges)}

    # Per-range queries ------------------------------------------------------------------------------------------------
    def _range_slots(self, range_: ReferenceRange) -> dict[Slot, str]:
        if (range_id := self._range_to_id.get(range_)) is None:
            raise RangeNotFoundError(f'Reference range {range_} not found')
        return self._grid[range_id]

    def _sample_gamete(self, slot: Slot) -> SampleGamete:
        return SampleGamete(self._sample_names[slot[0]], slot[1])

    def hap_id_to_sample_gametes(self, range_: ReferenceRange) -> dict[str, list[SampleGamete]]:
        """
        Returns the sample gametes carrying each haplotype in a range.

        Raises:
            RangeNotFoundError: If the range is not in the index.
        """
        result = defaultdict(list)
        for slot, hap_id in sorted(self._range_slots(range_).items()):
            result[hap_id].append(self._sample_gamete(slot))
        return dict(result)

    def sample_gamete_to_hap_id(self, range_: ReferenceRange) -> dict[SampleGamete, str]:
        return {self._sample_gamete(slot): hap_id for slot, hap_id in sorted(self._range_slots(range_).items())}

    def hap_ids(self, range_: ReferenceRange) -> set[str]:
        return set(self._range_slots(range_).values())

    def sample_to_hap_id(self, range_: ReferenceRange, sample_gamete: SampleGamete) -> Optional[str]:
        """
        Returns the haplotype id of a sample gamete in a range.

        Returns None when the gamete was not recorded for the sample, which is legal for samples of
        different ploidy.

        Raises:
            RangeNotFoundError: If the range is not in the index.
            SampleNotFoundError: If the sample is not in the index.
        """
        slots = self._range_slots(range_)
        if (sample_id := self._sample_to_id.get(sample_gamete.name)) is None:
            raise SampleNotFoundError(f'Sample {sample_gamete.name} not found')
        return slots.get((sample_id, sample_gamete.gamete_id))

    def ref_checksum(self, range_: ReferenceRange) -> str:
        """RefChecksum recorded in the ALT header of the first sample's first gamete, or ''."""
        hap_id = self._range_slots(range_).get((0, 0))
        return alt.ref_checksum if hap_id and (alt := self._alt_headers.get(hap_id)) else ''

    # Whole-index queries ----------------------------------------------------------------------------------------------
    def sample_gametes_in_graph(self) -> list[SampleGamete]:
        """Sorted, de-duplicated sample gametes that carry a haplotype in at least one range."""
        slots = set()
        for grid in self._grid: slots.update(grid)
        return [self._sample_gamete(slot) for slot in sorted(slots)]

    def hap_id_to_ref_range_map(self) -> dict[str, list[ReferenceRange]]:
        """Inverse index: haplotype id -> every range it appears in, in sorted range order."""
        result = defaultdict(list)
        for r in self._sorted_ranges:
            for hap_id in dict.fromkeys(v for _, v in sorted(self._range_slots(r).items())):
                result[hap_id].append(r)
        return dict(result)

    def hap_ids_to_sample_gametes(self) -> dict[str, list[SampleGamete]]:
        """Haplotype id -> sample gametes carrying it, over all ranges."""
        result = defaultdict(list)
        for r in self._sorted_ranges:
            for hap_id, gametes in self.hap_id_to_sample_gametes(r).items(): result[hap_id].extend(gametes)
        return dict(result)

    def ref_range_to_hap_id_map(self) -> dict[ReferenceRange, dict[str, int]]:
        """Range -> (haplotype id -> index of the id in sorted order within the range)."""
        return {r: {h: i for i, h in enumerate(sorted(self.hap_ids(r)))} for r in self._sorted_ranges}

    def ref_range_to_hap_id_list(self) -> dict[ReferenceRange, list[str]]:
        return {r: list(self.hap_id_to_sample_gametes(r)) for r in self._sorted_ranges}

    def sample_gamete_haplotypes(self, sample_gamete: SampleGamete) -> list[Optional[str]]:
        """Haplotype id of a sample gamete in every range, in sorted range order."""
        return [self.sample_to_hap_id(r, sample_gamete) for r in self._sorted_ranges]

    def alt_header(self, hap_id: str) -> Optional[AltHeader]: return self._alt_headers.get(hap_id)
    def alt_headers(self) -> dict[str, AltHeader]: return dict(self._alt_headers)

    def hap_id_to_seq_length(self) -> dict[str, int]:
        return {hap_id: alt.seq_length for hap_id, alt in self._alt_headers.items()}

    @property
    def checksum(self) -> str:
        """
        MD5 digest of the sample names, the sorted ranges and every stored haplotype id.

        Two indexes built from the same files in any order have the same checksum.
        """
        digest = md5()
        for name in self._sample_names: digest.update(name.encode())
        for r in self._sorted_ranges: digest.update(str(r).encode())
        for r in self._sorted_ranges:
            for _, hap_id in sorted(self._range_slots(r).items()): digest.update(hap_id.encode())
        return digest.hexdigest()


# Functions ------------------------------------------------------------------------------------------------------------
def record_slots(record: VariantRecord, sample_ids: list[int]) -> dict[Slot, Optional[str]]:
    """
    Returns the ``(sample_id, gamete_id) -> hap_id`` slots of one hVCF row.

    Args:
        record: Parsed row.
        sample_ids: Global sample id for each sample column of the row's file.
    """
    return {(sample_id, gamete_id): hap_id
            for column, sample_id in enumerate(sample_ids)
            for gamete_id, hap_id in enumerate(record.hap_ids(column))}


def merge_haplotype_slots(existing: dict[Slot, str], incoming: Mapping[Slot, Optional[str]]) -> dict[Slot, str]:
    """
    Merges `incoming` slots into `existing` in place, never overwriting a filled slot.

    None values are treated as empty. The merge is associative, and for inputs that agree on shared slots
    it is also commutative.

    Returns:
        The updated `existing` mapping.
    """
    for slot, hap_id in incoming.items():
        if hap_id is not None and slot not in existing: existing[slot] = hap_id
    return existing

