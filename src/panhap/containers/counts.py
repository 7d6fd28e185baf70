"""
Count containers that accumulate per-read decisions.

- `ReadMapping` counts reads per sorted haplotype-id set.
- `Ps4gCounts` counts reads per (encoded position, gamete set) with mapping statistics.

Both are plain in-memory accumulators that can be merged by elementwise sum, so partial results from
independent shards of a read stream combine in any order.
"""
from collections import Counter
from dataclasses import dataclass
from typing import NamedTuple, Iterable, Iterator, Optional

from panhap.core.encoding import PositionEncoder


# Classes --------------------------------------------------------------------------------------------------------------
class ResolvedRead(NamedTuple):
    """
    The consensus decision for one read.

    Attributes:
        position: Encoded, binned consensus position.
        gametes: Sorted, unique gamete indices supporting the read.
        num_mapped: Number of projected hits of the read.
        num_on_main: Number of those hits on the consensus contig.
        max_pos_dist: Spread of the hits on the consensus contig, in bins.
    """
    position: int
    gametes: tuple[int, ...]
    num_mapped: int
    num_on_main: int
    max_pos_dist: int


@dataclass(slots=True)
class CountValue:
    """Accumulated statistics for one (position, gamete set) key."""
    count: int = 0
    total_reads_mapped: int = 0
    reads_on_consensus_contig: int = 0
    summed_deviation: int = 0

    def __add__(self, other: 'CountValue') -> 'CountValue':
        return CountValue(self.count + other.count, self.total_reads_mapped + other.total_reads_mapped,
                          self.reads_on_consensus_contig + other.reads_on_consensus_contig,
                          self.summed_deviation + other.summed_deviation)

    def __iadd__(self, other: 'CountValue') -> 'CountValue':
        self.count += other.count
        self.total_reads_mapped += other.total_reads_mapped
        self.reads_on_consensus_contig += other.reads_on_consensus_contig
        self.summed_deviation += other.summed_deviation
        return self

    @property
    def prop_on_top_contig(self) -> float:
        return self.reads_on_consensus_contig / self.total_reads_mapped if self.total_reads_mapped else 0.0

    @property
    def avg_pos_variation(self) -> float:
        return self.summed_deviation / self.reads_on_consensus_contig if self.reads_on_consensus_contig else 0.0


CountKey = tuple[int, tuple[int, ...]]


class Ps4gCounts:
    """
    Accumulator keyed by ``(encoded position, sorted gamete ids)``.

    Keys keep their first-insertion order, which is the unsorted PS4G row order.

    Examples:
        >>> counts = Ps4gCounts()
        >>> counts.increment(ResolvedRead(5, (0, 2), 3, 2, 1))
        >>> counts[(5, (0, 2))].count
        1
    """
    __slots__ = ('_counts',)

    def __init__(self):
        self._counts: dict[CountKey, CountValue] = {}

    def __len__(self): return len(self._counts)
    def __iter__(self) -> Iterator[CountKey]: return iter(self._counts)
    def __contains__(self, key) -> bool: return key in self._counts
    def __getitem__(self, key: CountKey) -> CountValue: return self._counts[key]
    def __eq__(self, other):
        return isinstance(other, Ps4gCounts) and self._counts == other._counts
    def __repr__(self): return f'{self.__class__.__name__}({len(self)} keys, {self.total_unique_counts} reads)'

    def items(self): return self._counts.items()

    def increment(self, read: ResolvedRead, weight: int = 1):
        """Adds a resolved read to its key, `weight` times."""
        key = (read.position, tuple(sorted(read.gametes)))
        if (value := self._counts.get(key)) is None: value = self._counts[key] = CountValue()
        value.count += weight
        value.total_reads_mapped += read.num_mapped * weight
        value.reads_on_consensus_contig += read.num_on_main * weight
        value.summed_deviation += read.max_pos_dist * weight

    def update(self, reads: Iterable[Optional[ResolvedRead]]) -> 'Ps4gCounts':
        """Increments every non-None read and returns self."""
        for read in reads:
            if read is not None: self.increment(read)
        return self

    def merge(self, other: 'Ps4gCounts') -> 'Ps4gCounts':
        """Adds every value of `other` into this accumulator and returns self."""
        for key, value in other._counts.items():
            if (mine := self._counts.get(key)) is None: self._counts[key] = CountValue() + value
            else: mine += value
        return self

    def __iadd__(self, other: 'Ps4gCounts') -> 'Ps4gCounts': return self.merge(other)

    @classmethod
    def merged(cls, *parts: 'Ps4gCounts') -> 'Ps4gCounts':
        """Returns a new accumulator holding the sum of `parts`."""
        total = cls()
        for part in parts: total.merge(part)
        return total

    @property
    def total_unique_counts(self) -> int:
        """Number of reads counted across all keys."""
        return sum(v.count for v in self._counts.values())

    def gamete_counts(self, n_gametes: int = 0) -> list[int]:
        """
        Returns, per gamete index, the number of reads whose gamete set includes it.

        Args:
            n_gametes: Minimum length of the returned list, so unseen gametes report zero.
        """
        counter = Counter()
        for (_, gametes), value in self._counts.items():
            for gamete in gametes: counter[gamete] += value.count
        size = max(n_gametes, max(counter, default=-1) + 1)
        return [counter[i] for i in range(size)]

    def rows(self, sort_positions: bool = True,
             encoder: PositionEncoder = None) -> list[tuple[CountKey, CountValue]]:
        """
        Returns ``(key, value)`` pairs, either in insertion order or sorted by reference position.

        Sorting orders by decoded chromosome index, then bin, then gamete ids.
        """
        items = list(self._counts.items())
        if sort_positions:
            decode = (encoder or PositionEncoder()).decode_bin
            items.sort(key=lambda kv: (decode(kv[0][0]), kv[0][1]))
        return items


class ReadMapping(Counter):
    """
    Counter of reads per sorted haplotype-id tuple.

    Examples:
        >>> mapping = ReadMapping()
        >>> mapping.add(['h2', 'h1'])
        >>> mapping[('h1', 'h2')]
        1
    """
    def add(self, hap_ids: Iterable[str], count: int = 1):
        """Counts a read hitting `hap_ids`; the ids are sorted and de-duplicated."""
        self[tuple(sorted(set(hap_ids)))] += count

    @classmethod
    def merge(cls, *mappings: 'ReadMapping') -> 'ReadMapping':
        """Sums any number of mappings into a new one."""
        merged = cls()
        for mapping in mappings:
            for key, count in mapping.items(): merged[key] += count
        return merged
