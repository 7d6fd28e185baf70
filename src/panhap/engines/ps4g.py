"""
Aggregation of MEM hits into PS4G (Position-Support-4-Gamete) counts.

Each read's best MEM hits are projected onto the reference, reduced to a consensus locus and a set of
supporting gametes, and counted under ``(encoded position, gamete set)``. Read mappings made against a
haplotype index are converted to the same counts with `ReadMappingConverter`.

Hit contigs are expected to be named ``<assemblyContig>_<sampleName>``, the way the assembly FASTA files
are renamed before the FM-index is built. Assembly contig names may themselves contain underscores, so the
sample name is the part after the last one.

Examples:
    >>> projector = CoordinateProjector.load("splines.json.gz")
    >>> aggregator = Ps4gAggregator(projector)
    >>> counts = aggregator.process_file("sample_1.bed")
    >>> aggregator.write(counts, build_output_file_name("sample_1.bed", "out/"), command="panhap ps4g ...")
"""
import logging
from collections import Counter, deque
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Sequence, Mapping, Union, BinaryIO
from warnings import warn

from panhap import PanhapWarning
from panhap.containers.counts import Ps4gCounts, ResolvedRead
from panhap.containers.index import HaplotypeIndex
from panhap.core.encoding import PositionEncoder
from panhap.core.ranges import SampleGamete, ReferenceRange
from panhap.engines.mems import select_best_hits
from panhap.io.mem import Mem, MemReader
from panhap.io.ps4g import Ps4gWriter, build_output_file_name
from panhap.io.read_mapping import import_read_mapping, read_mapping_metadata
from panhap.utils import Config, batched
from panhap.utils.protocols import Projector
from panhap.utils.resources import RESOURCES

logger = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class UnknownGameteError(KeyError):
    """Raised when a hit names a sample that has no gamete index."""
    def __init__(self, sample: str):
        self.sample = sample
        super().__init__(f'Gamete {sample} not found in the gamete index')


class Ps4gWarning(PanhapWarning): pass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class Ps4gConfig(Config):
    """
    Parameters of the MEM to PS4G conversion.

    Attributes:
        min_mem_length: Reads whose longest MEM is shorter than this are dropped.
        max_num_hits: Reads whose longest MEMs hit more targets than this are dropped.
        max_range: Reads whose consensus hits spread over more bins than this are dropped; None disables it.
        sort_positions: Write rows sorted by reference position instead of first-seen order.
        shard_size: Number of reads per shard when processing a file on the thread pool; None is serial.
    """
    min_mem_length: int = 148
    max_num_hits: int = 50
    max_range: Optional[int] = None
    sort_positions: bool = True
    shard_size: Optional[int] = None


class ConsensusResolver:
    """
    Reduces the projected hits of a read to one locus and a gamete set.

    Args:
        gamete_index: Sample gamete -> gamete index.
        encoder: Encoder of the projected positions.
    """
    __slots__ = ('_gamete_index', '_sample_index', '_encoder')

    def __init__(self, gamete_index: Mapping[SampleGamete, int], encoder: PositionEncoder = None):
        self._gamete_index = gamete_index
        self._sample_index = {}
        for sample_gamete in sorted(gamete_index):
            self._sample_index.setdefault(sample_gamete.name, gamete_index[sample_gamete])
        self._encoder = encoder or PositionEncoder()

    def gamete_id(self, sample: str) -> int:
        """
        Returns the index of the sample's gamete with the lowest gamete id.

        Hit contigs only carry the sample name, so a sample whose gamete 0 is absent from the index resolves
        to its first gamete that is present.

        Raises:
            UnknownGameteError: If no gamete of the sample is indexed.
        """
        if (index := self._sample_index.get(sample)) is None: raise UnknownGameteError(sample)
        return index

    def resolve(self, hits: Sequence[tuple[str, int]]) -> Optional[ResolvedRead]:
        """
        Resolves ``(hit contig, encoded reference position)`` pairs of one read.

        The consensus chromosome is the one with most hits, the lowest index winning ties. Hits elsewhere
        are discarded; the locus is the truncated mean of the remaining positions and the gametes are those
        of the remaining hits.

        Returns:
            The resolved read, or None if `hits` is empty.

        Raises:
            UnknownGameteError: If a consensus hit names an unindexed sample.

        Examples:
            >>> resolver.resolve([('chr1_LineA', enc.encode(0, 1000)), ('chr1_LineB', enc.encode(0, 1512))])
            ResolvedRead(position=4, gametes=(0, 1), num_mapped=2, num_on_main=2, max_pos_dist=2)
        """
        if not hits: return None
        decode_bin = self._encoder.decode_bin
        decoded = [(contig, *decode_bin(position)) for contig, position in hits]
        chrom_counts = Counter(chrom for _, chrom, _ in decoded)
        consensus = min(chrom_counts, key=lambda chrom: (-chrom_counts[chrom], chrom))
        on_main = [(contig, bin_) for contig, chrom, bin_ in decoded if chrom == consensus]
        bins = [bin_ for _, bin_ in on_main]
        mean_position = sum(bins) * self._encoder.bin_size // len(bins)
        gametes = tuple(sorted({self.gamete_id(split_hit_contig(contig)[1]) for contig, _ in on_main}))
        return ResolvedRead(self._encoder.encode(consensus, mean_position), gametes, len(hits), len(on_main),
                            max(bins) - min(bins))


class Ps4gAggregator:
    """
    Converts MEM groups into `Ps4gCounts`.

    Per read: the best hits are selected, each hit is projected with the sample's spline, the projected
    hits are resolved to a consensus, optionally filtered by spread, and counted. Reads that fail any step
    are excluded from the counts.

    Args:
        projector: Object projecting assembly coordinates, usually a `CoordinateProjector`.
        config: Conversion parameters.
        gamete_index: Sample gamete -> gamete index; defaults to the projector's.
        encoder: Position encoder; defaults to the projector's.
    """
    def __init__(self, projector: Projector, config: Ps4gConfig = None,
                 gamete_index: Mapping[SampleGamete, int] = None, encoder: PositionEncoder = None):
        self._projector = projector
        self._config = config or Ps4gConfig()
        self.gamete_index = gamete_index if gamete_index is not None else projector.gamete_index
        self.encoder = encoder or getattr(projector, 'encoder', None) or PositionEncoder()
        self._resolver = ConsensusResolver(self.gamete_index, self.encoder)

    @property
    def config(self) -> Ps4gConfig: return self._config
    @property
    def resolver(self) -> ConsensusResolver: return self._resolver

    def project_hits(self, group: Sequence[Mem]) -> list[tuple[str, int]]:
        """Returns ``(hit contig, encoded position)`` for the best hits of a read that project validly."""
        config = self._config
        projected = []
        for hit in select_best_hits(group, config.min_mem_length, config.max_num_hits):
            asm_contig, sample = split_hit_contig(hit.contig)
            if (position := self._projector.project(asm_contig, SampleGamete(sample), hit.position)) is not None:
                projected.append((hit.contig, position))
        return projected

    def resolve_read(self, group: Sequence[Mem]) -> Optional[ResolvedRead]:
        """Resolves one read, returning None if it is excluded."""
        if (read := self._resolver.resolve(self.project_hits(group))) is None: return None
        if self._config.max_range is not None and read.max_pos_dist > self._config.max_range: return None
        return read

    def process_groups(self, groups: Iterable[Sequence[Mem]], counts: Ps4gCounts = None) -> Ps4gCounts:
        """Counts every read group into `counts` (a new accumulator by default) and returns it."""
        counts = Ps4gCounts() if counts is None else counts
        n_reads = n_counted = 0
        for group in groups:
            n_reads += 1
            if (read := self.resolve_read(group)) is not None:
                counts.increment(read)
                n_counted += 1
        logger.debug('Counted %d of %d reads', n_counted, n_reads)
        return counts

    def process_shards(self, shards: Iterable[Iterable[Sequence[Mem]]], max_in_flight: int = None) -> Ps4gCounts:
        """
        Counts each shard into a private accumulator on the shared thread pool and sums the results.

        Shards must split the MEM stream on read boundaries. At most `max_in_flight` shards (twice the
        available CPUs by default) are pending at once; the next shard is only pulled from `shards` after
        the oldest pending one has been merged, so a lazy shard stream is never read far ahead.
        """
        max_in_flight = max(1, max_in_flight or 2 * RESOURCES.available_cpus)
        counts, pending = Ps4gCounts(), deque()
        for shard in shards:
            if len(pending) >= max_in_flight: counts.merge(pending.popleft().result())
            pending.append(RESOURCES.pool.submit(self.process_groups, shard))
        while pending: counts.merge(pending.popleft().result())
        return counts

    def process_file(self, file: Union[str, Path, BinaryIO, Iterable[bytes]]) -> Ps4gCounts:
        """Reads MEM lines from a file, handle or line stream and counts them."""
        with MemReader(file) as reader:
            if self._config.shard_size:
                counts = self.process_shards(batched(reader.groups(), self._config.shard_size))
            else:
                counts = self.process_groups(reader.groups())
        logger.info('%s: %d reads counted under %d keys', reader.name, counts.total_unique_counts, len(counts))
        return counts

    def write(self, counts: Ps4gCounts, file: Union[str, Path, BinaryIO], command: str = '',
              header: Iterable[str] = ()):
        """Writes counts as a PS4G file."""
        contig_names = {i: c for c, i in getattr(self._projector, 'contig_index', {}).items()}
        with Ps4gWriter(file, counts, self.gamete_index, contig_names, command=command, header=header,
                        encoder=self.encoder) as writer:
            writer.write(counts.rows(self._config.sort_positions, self.encoder))


class ReadMappingConverter:
    """
    Converts read mappings (haplotype-id sets with read counts) into `Ps4gCounts`.

    A haplotype-id set is placed at the start of the greatest reference range any of its ids appears in, and
    its gametes are the sample gametes carrying one of the ids in that range. Each set contributes its read
    count to that key; sets of unknown ids are skipped.

    Args:
        index: Haplotype index the read mappings were made against.
        encoder: Position encoder of the output.

    Examples:
        >>> converter = ReadMappingConverter(HaplotypeIndex.from_directory("hvcf/"))
        >>> converter.convert_file("LineA_readMapping.txt", "out/", command="panhap convert-rm2ps4g ...")
        PosixPath('out/LineA_readMapping_ps4g.txt')
    """
    def __init__(self, index: HaplotypeIndex, encoder: PositionEncoder = None, sort_positions: bool = True):
        self._index = index
        self.encoder = encoder or PositionEncoder()
        self.sort_positions = sort_positions
        self.gamete_index = {sg: i for i, sg in enumerate(index.sample_gametes_in_graph())}
        self.contig_index = {contig: i for i, contig in enumerate(index.contigs)}
        self._hap_id_to_ranges = index.hap_id_to_ref_range_map()
        self._range_gametes = {}

    def _gametes_in_range(self, range_: ReferenceRange) -> dict[str, list[SampleGamete]]:
        if (gametes := self._range_gametes.get(range_)) is None:
            gametes = self._range_gametes[range_] = self._index.hap_id_to_sample_gametes(range_)
        return gametes

    def resolve(self, hap_ids: Iterable[str]) -> Optional[ResolvedRead]:
        """Returns the position and gametes of a haplotype-id set, or None if none of the ids are indexed."""
        hap_ids = list(hap_ids)
        ranges = [r for hap_id in hap_ids for r in self._hap_id_to_ranges.get(hap_id, ())]
        if not ranges: return None
        top = max(ranges)
        carriers = self._gametes_in_range(top)
        gametes = {self.gamete_index[sg] for hap_id in hap_ids for sg in carriers.get(hap_id, ())}
        position = self.encoder.encode(self.contig_index[top.contig], top.start)
        return ResolvedRead(position, tuple(sorted(gametes)), 1, 1, 0)

    def convert(self, mapping: Mapping[tuple[str, ...], int]) -> Ps4gCounts:
        """Counts every haplotype-id set of a read mapping under its PS4G key."""
        counts, skipped = Ps4gCounts(), 0
        for hap_ids, count in mapping.items():
            if (read := self.resolve(hap_ids)) is None:
                skipped += 1
                continue
            counts.increment(read, count)
        if skipped: warn(f'Skipped {skipped} haplotype id set(s) not found in the index', Ps4gWarning)
        return counts

    def write(self, counts: Ps4gCounts, file: Union[str, Path, BinaryIO], command: str = '',
              header: Iterable[str] = ()):
        """Writes counts as a PS4G file."""
        contig_names = {i: c for c, i in self.contig_index.items()}
        with Ps4gWriter(file, counts, self.gamete_index, contig_names, command=command, header=header,
                        encoder=self.encoder) as writer:
            writer.write(counts.rows(self.sort_positions, self.encoder))

    def convert_file(self, file: Union[str, Path], output_dir: Union[str, Path], command: str = '') -> Path:
        """
        Converts a read-mapping file into ``<output_dir>/<name>_ps4g.txt``.

        The ``#key=value`` metadata lines of the read mapping are carried over as provenance lines.

        Returns:
            Path of the written PS4G file.
        """
        counts = self.convert(import_read_mapping(file))
        header = [f'{key}={value}' for key, value in read_mapping_metadata(file).items()]
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        output = build_output_file_name(file, output_dir)
        self.write(counts, output, command, header)
        logger.info('%s: %d reads written under %d keys to %s', file, counts.total_unique_counts, len(counts),
                    output)
        return output


# Functions ------------------------------------------------------------------------------------------------------------
def split_hit_contig(contig: str) -> tuple[str, str]:
    """
    Splits a hit contig named ``<assemblyContig>_<sampleName>`` at its last underscore.

    Examples:
        >>> split_hit_contig('scaffold_12_LineA')
        ('scaffold_12', 'LineA')
    """
    asm_contig, sep, sample = contig.rpartition('_')
    return (asm_contig, sample) if sep else (contig, contig)
