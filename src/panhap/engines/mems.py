"""
Selection of the best-supported MEM hits of a read and their collapse to haplotype decisions.

The functions here are pure: they take the MEM group of one read and return hits or haplotype ids.
`ReadMapper` strings them together over a whole MEM stream to build a `ReadMapping`.
"""
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Mapping, Sequence, Union, BinaryIO

from panhap.containers.counts import ReadMapping
from panhap.core.ranges import ReferenceRange
from panhap.io.mem import Mem, MemHit, MemReader
from panhap.utils import Config

logger = logging.getLogger(__name__)


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class MemSelectionConfig(Config):
    """
    Thresholds applied to the MEM group of each read.

    Attributes:
        min_mem_length: Reads whose longest MEM is shorter than this are rejected.
        max_num_hits: Reads whose longest MEMs hit more targets than this in total are rejected.
        max_start: If set, only MEMs starting at or before this read position are considered.
        min_end: If set, only MEMs ending at or after this read position are considered.
    """
    min_mem_length: int = 148
    max_num_hits: int = 50
    max_start: Optional[int] = None
    min_end: Optional[int] = None


class ReadMapper:
    """
    Turns a stream of MEM groups into haplotype-set read counts.

    For each read: MEMs are filtered by read position (if configured), the best hits are selected, the hit
    contigs (haplotype ids) are restricted to their most supported reference range, and the sorted id tuple
    is counted.

    Args:
        hap_id_to_ranges: Haplotype id -> reference ranges it appears in, usually from
            `HaplotypeIndex.hap_id_to_ref_range_map`.
        config: Selection thresholds.

    Examples:
        >>> mapper = ReadMapper(index.hap_id_to_ref_range_map(), MemSelectionConfig(max_start=0, min_end=70))
        >>> mapping = mapper.map_file("sample_1.bed")
    """
    def __init__(self, hap_id_to_ranges: Mapping[str, Sequence[ReferenceRange]], config: MemSelectionConfig = None):
        self._hap_id_to_ranges = hap_id_to_ranges
        self._config = config or MemSelectionConfig()

    @property
    def config(self) -> MemSelectionConfig: return self._config

    def hap_ids_for_read(self, group: Sequence[Mem]) -> list[str]:
        """
        Returns the sorted haplotype ids a read supports, or an empty list if the read is filtered out.
        """
        config = self._config
        group = filter_by_read_position(group, config.max_start, config.min_end)
        hits = select_best_hits(group, config.min_mem_length, config.max_num_hits)
        hap_ids = list(dict.fromkeys(hit.contig for hit in hits))
        return sorted(filter_to_one_reference_range(hap_ids, self._hap_id_to_ranges))

    def map_groups(self, groups: Iterable[Sequence[Mem]], mapping: ReadMapping = None) -> ReadMapping:
        """Counts every read group into `mapping` (a new one by default) and returns it."""
        mapping = ReadMapping() if mapping is None else mapping
        n_reads = n_mapped = 0
        for group in groups:
            n_reads += 1
            if hap_ids := self.hap_ids_for_read(group):
                mapping.add(hap_ids)
                n_mapped += 1
        logger.info('Mapped %d of %d reads to haplotypes', n_mapped, n_reads)
        return mapping

    def map_file(self, file: Union[str, Path, BinaryIO, Iterable[bytes]]) -> ReadMapping:
        """Reads MEM lines from a file, handle or line stream and counts them."""
        with MemReader(file) as reader:
            return self.map_groups(reader.groups())


# Functions ------------------------------------------------------------------------------------------------------------
def select_best_hits(group: Sequence[Mem], min_len: int, max_hits: int, require_min_len: bool = True) -> list[MemHit]:
    """
    Selects the hits of the longest MEMs of a read.

    Only MEMs as long as the longest one are kept; equal-length matches are equally good evidence.
    The read is rejected when its longest MEM is shorter than `min_len` (if `require_min_len`) or when
    the reported hit counts of the kept MEMs sum to more than `max_hits`.

    Args:
        group: MEMs of one read.
        min_len: Minimum length of the longest MEM.
        max_hits: Maximum summed hit count.
        require_min_len: Whether to apply the `min_len` check.

    Returns:
        The listed hits of the kept MEMs, de-duplicated in first-seen order. Empty if the read is rejected.

    Examples:
        >>> group = [Mem('r', 0, 20, 2, hits_a), Mem('r', 5, 25, 3, hits_b), Mem('r', 0, 15, 1, hits_c)]
        >>> len(select_best_hits(group, min_len=10, max_hits=10))
        5
        >>> select_best_hits(group, min_len=10, max_hits=4)
        []
    """
    if not group: return []
    max_len = max(len(mem) for mem in group)
    if require_min_len and max_len < min_len: return []
    best = [mem for mem in group if len(mem) == max_len]
    if sum(mem.num_hits for mem in best) > max_hits: return []
    return list(dict.fromkeys(hit for mem in best for hit in mem.hits))


def filter_by_read_position(group: Sequence[Mem], max_start: Optional[int] = None,
                            min_end: Optional[int] = None) -> list[Mem]:
    """Keeps MEMs starting at or before `max_start` and ending at or after `min_end`; None disables a bound."""
    return [mem for mem in group
            if (max_start is None or mem.read_start <= max_start) and (min_end is None or mem.read_end >= min_end)]


def filter_to_one_reference_range(hap_ids: Iterable[str],
                                  hap_id_to_ranges: Mapping[str, Sequence[ReferenceRange]]) -> list[str]:
    """
    Restricts haplotype ids to the reference range most of them belong to.

    Ranges are counted over `hap_ids` in iteration order; on a tie the range encountered first wins.
    Ids with no known range are dropped.

    Args:
        hap_ids: Haplotype ids hit by one read.
        hap_id_to_ranges: Haplotype id -> ranges it appears in.

    Returns:
        The ids whose ranges include the winning range, in input order.

    Examples:
        >>> ranges = {'A': [x], 'B': [x], 'C': [y]}
        >>> filter_to_one_reference_range(['A', 'B', 'C'], ranges)
        ['A', 'B']
    """
    hap_ids = list(hap_ids)
    counts = Counter()
    for hap_id in hap_ids: counts.update(hap_id_to_ranges.get(hap_id, ()))
    if not counts: return []
    # max() keeps the first maximal entry and Counter preserves insertion order
    best = max(counts.items(), key=lambda kv: kv[1])[0]
    return [hap_id for hap_id in hap_ids if best in hap_id_to_ranges.get(hap_id, ())]
