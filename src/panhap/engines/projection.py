"""
Projection of assembly coordinates onto encoded reference coordinates.

For every (assembly contig, sample) pair, calibration points ``(assembly position, encoded reference
position)`` are collected from hVCF haplotype metadata or from assembly gVCF rows, thinned, and fitted with
an Akima piecewise cubic. The fitted splines are then used to place MEM hits, which are reported in
assembly coordinates, on the reference.

Calibration points come from two sources:

- hVCF: each haplotype contributes its first assembly region start and last assembly region end, paired
  with the start and end of the reference range.
- gVCF: a block-collapsing pass over genome-sorted rows carrying ``ASM_Chr``, ``ASM_Start``, ``ASM_End``
  and ``ASM_Strand`` INFO attributes. Runs of substitutions, reference blocks and small indels are
  collapsed into blocks contributing their two end points; large indels and reverse strand blocks
  contribute points of their own.

Examples:
    >>> projector = CoordinateProjector.from_gvcf_files(["LineA.g.vcf.gz"])
    >>> encoded = projector.project('chr1', SampleGamete('LineA'), 1_500_000)
    >>> None if encoded is None else projector.encoder.decode(encoded)
    (0, 1499904)
"""
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union, Mapping
from warnings import warn

import numpy as np
from scipy.interpolate import Akima1DInterpolator

from panhap import PanhapWarning
from panhap.core.encoding import PositionEncoder
from panhap.core.ranges import SampleGamete
from panhap.io.open import Xopen
from panhap.io.vcf import VcfReader, VariantRecord, AltHeader, VcfHeaderError
from panhap.utils import Config
from panhap.utils.resources import RESOURCES, jit

logger = logging.getLogger(__name__)

SplineKey = tuple[str, str]  # (assembly contig, sample name)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ProjectionWarning(PanhapWarning): pass
class ProjectionError(Exception): pass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class ProjectionConfig(Config):
    """
    Parameters for building calibration points and fitting splines.

    Attributes:
        min_indel_length: Indels up to this length are folded into the running gVCF block.
        max_num_points_per_chrom: Maximum calibration points kept per spline key.
        seed: Seed of the random thinning.
        min_points: Minimum distinct points needed to fit a spline.
        bin_size: Bin size of the reference position encoding.
    """
    min_indel_length: int = 10
    max_num_points_per_chrom: int = 250_000
    seed: int = 12345
    min_points: int = 5
    bin_size: int = 256


class CalibrationPoints:
    """
    Calibration points grouped by (assembly contig, sample name), with the shared contig and gamete tables.

    Reference contigs are numbered in order of first sight; so are sample gametes. The same instance can
    be fed several files so that the numbering is global.

    Args:
        encoder: Reference position encoder; defaults to 256 bp bins.
    """
    def __init__(self, encoder: PositionEncoder = None):
        self.encoder = encoder or PositionEncoder()
        self.contig_index: dict[str, int] = {}
        self.gamete_index: dict[SampleGamete, int] = {}
        self._points: dict[SplineKey, tuple[list[int], list[int]]] = {}

    def __len__(self): return len(self._points)
    def __contains__(self, key: SplineKey) -> bool: return key in self._points
    def __iter__(self): return iter(self._points)
    def __repr__(self):
        return f'{self.__class__.__name__}({len(self)} keys, {sum(len(x) for x, _ in self._points.values())} points)'

    def __getitem__(self, key: SplineKey) -> tuple[np.ndarray, np.ndarray]:
        """Returns the points of a key as float64 ``(x, y)`` arrays, in insertion order."""
        x, y = self._points[key]
        return np.asarray(x, dtype=np.float64), np.asarray(y, dtype=np.float64)

    def chrom_index(self, contig: str) -> int:
        """Returns the index of a reference contig, assigning the next free index on first sight."""
        return self.contig_index.setdefault(contig, len(self.contig_index))

    def add_gamete(self, sample_gamete: SampleGamete) -> int:
        """Returns the index of a sample gamete, assigning the next free index on first sight."""
        return self.gamete_index.setdefault(sample_gamete, len(self.gamete_index))

    def add(self, asm_contig: str, sample: str, asm_pos: int, ref_contig: str, ref_pos: int):
        """Adds one calibration point."""
        x, y = self._points.setdefault((asm_contig, sample), ([], []))
        x.append(asm_pos)
        y.append(self.encoder.encode(self.chrom_index(ref_contig), ref_pos))

    def add_hvcf_records(self, records: Iterable[VariantRecord], alt_headers: Mapping[str, AltHeader],
                         samples: Iterable[str] = None, contigs: set[str] = None) -> int:
        """
        Adds the points of hVCF rows: the first and last assembly region end of each haplotype's
        ALT metadata, paired with the row's reference start and end.

        Args:
            records: hVCF rows.
            alt_headers: Haplotype id -> ALT metadata.
            samples: Sample column names; defaults to the samples stored on each record.
            contigs: If given, rows on other reference contigs are ignored.

        Returns:
            The number of haplotypes skipped because their ALT metadata is missing.
        """
        skipped = 0
        sample_names = list(samples) if samples is not None else None
        for record in records:
            if contigs and record.contig not in contigs: continue
            self.chrom_index(record.contig)
            for column, sample in enumerate(sample_names if sample_names is not None else record.samples):
                for gamete_id, hap_id in enumerate(record.hap_ids(column)):
                    if hap_id is None: continue
                    self.add_gamete(SampleGamete(sample, gamete_id))
                    if (alt := alt_headers.get(hap_id)) is None:
                        skipped += 1
                        logger.debug('No ALT header for haplotype %s at %s', hap_id, record.reference_range)
                        continue
                    start, end = alt.asm_start, alt.asm_end
                    self.add(start.contig, sample, start.position, record.contig, record.start)
                    self.add(end.contig, sample, end.position, record.contig, record.end)
        if skipped:
            warn(f'Skipped {skipped} haplotype(s) without ALT header metadata', ProjectionWarning)
        return skipped

    def add_gvcf_records(self, records: Iterable[VariantRecord], sample: str, min_indel_length: int = 10,
                         contigs: set[str] = None) -> int:
        """
        Adds the points of genome-sorted assembly gVCF rows using the block-collapsing pass.

        Args:
            records: gVCF rows sorted by reference position.
            sample: Sample (assembly) name the rows describe.
            min_indel_length: Indels up to this length extend the running block.
            contigs: If given, rows on other reference contigs are ignored.

        Returns:
            The number of rows skipped for missing assembly coordinates or ALT alleles.
        """
        self.add_gamete(SampleGamete(sample))
        block = _GvcfBlock(self, sample)
        skipped = 0
        for record in records:
            if contigs and record.contig not in contigs: continue
            self.chrom_index(record.contig)
            if block.ref_contig is not None and block.ref_contig != record.contig: block.flush()
            block.ref_contig = record.contig

            asm_contig = str(record.info.get('ASM_Chr', 'NA'))
            asm_start, asm_end = _int_or_none(record.info.get('ASM_Start')), _int_or_none(record.info.get('ASM_End'))
            if asm_start is None or asm_end is None:
                logger.debug('Skipping %s:%d, invalid ASM_Start/ASM_End', record.contig, record.start)
                skipped += 1
                continue
            if not record.alts:
                logger.debug('Skipping %s:%d, missing alternate allele', record.contig, record.start)
                skipped += 1
                continue

            ref_len, alt_len = _allele_length(record.ref), _allele_length(record.alts[0])
            has_end, strand = record.has_end, str(record.info.get('ASM_Strand', '+'))
            effective_end = record.end if has_end else record.start

            if has_end and strand == '-':
                block.flush()
                self.add(asm_contig, sample, asm_start, record.contig, record.start)
                self.add(asm_contig, sample, asm_end, record.contig, record.end)
            elif ref_len == 1 and (alt_len == 1 or has_end):
                block.extend(record.start, effective_end, asm_start, asm_end, asm_contig)
            elif alt_len > 1:
                if alt_len <= min_indel_length:
                    block.extend(record.start, effective_end, asm_start, asm_end, asm_contig)
                else:
                    block.flush()
                    self.add(asm_contig, sample, int((asm_start + asm_end) * 0.5), record.contig, record.start)
            elif ref_len > 1:
                if ref_len <= min_indel_length:
                    block.extend(record.start, effective_end, asm_start, asm_end, asm_contig)
                else:
                    block.flush()
                    ref_mid = int(((record.start + ref_len - 1) + record.start) * 0.5)
                    self.add(asm_contig, sample, asm_start, record.contig, ref_mid)
            else:
                block.flush()
                self.add(asm_contig, sample, asm_start, record.contig, record.start)
        block.flush()
        if skipped:
            warn(f'Skipped {skipped} gVCF row(s) of {sample} without assembly coordinates or ALT alleles',
                 ProjectionWarning)
        return skipped


class _GvcfBlock:
    """Running block of collinear gVCF rows."""
    __slots__ = ('points', 'sample', 'ref_contig', 'ref_start', 'ref_end', 'asm_start', 'asm_end', 'asm_contig')

    def __init__(self, points: CalibrationPoints, sample: str):
        self.points = points
        self.sample = sample
        self.ref_contig: Optional[str] = None
        self._reset()

    def _reset(self):
        self.ref_start = self.ref_end = self.asm_start = self.asm_end = None
        self.asm_contig = None

    def extend(self, ref_start: int, ref_end: int, asm_start: int, asm_end: int, asm_contig: str):
        if self.asm_start is None:
            self.ref_start, self.asm_start, self.asm_contig = ref_start, asm_start, asm_contig
        self.ref_end, self.asm_end = ref_end, asm_end

    def flush(self):
        if self.asm_start is not None and self.ref_contig is not None:
            add = self.points.add
            add(self.asm_contig, self.sample, self.asm_start, self.ref_contig, self.ref_start)
            if self.asm_start != self.asm_end and self.ref_start != self.ref_end:
                add(self.asm_contig, self.sample, self.asm_end, self.ref_contig, self.ref_end)
        self._reset()


class Spline:
    """
    Akima interpolant over sorted, distinct knots. Evaluation outside the knot range is invalid.

    Args:
        x: Strictly increasing assembly positions.
        y: Encoded reference positions.
    """
    __slots__ = ('x', 'y', '_interpolator')

    def __init__(self, x: np.ndarray, y: np.ndarray):
        self.x = np.asarray(x, dtype=np.float64)
        self.y = np.asarray(y, dtype=np.float64)
        if len(self.x) < 2 or len(self.x) != len(self.y): raise ProjectionError('Spline needs at least 2 paired knots')
        if np.any(np.diff(self.x) <= 0): raise ProjectionError('Spline knots must be strictly increasing')
        self._interpolator = Akima1DInterpolator(self.x, self.y)

    def __len__(self): return len(self.x)
    def __repr__(self): return f'{self.__class__.__name__}({len(self)} knots, domain={self.domain})'

    @property
    def domain(self) -> tuple[float, float]: return float(self.x[0]), float(self.x[-1])

    def __call__(self, position: float) -> Optional[float]:
        """Returns the interpolated value, or None outside the fitted domain."""
        if not self.x[0] <= position <= self.x[-1]: return None
        return float(self._interpolator(position))

    def evaluate(self, positions: np.ndarray) -> np.ndarray:
        """Vectorised evaluation; positions outside the domain give NaN."""
        positions = np.asarray(positions, dtype=np.float64)
        out = np.full(positions.shape, np.nan)
        inside = (positions >= self.x[0]) & (positions <= self.x[-1])
        if inside.any(): out[inside] = self._interpolator(positions[inside])
        return out


class CoordinateProjector:
    """
    Projects assembly positions to encoded reference positions using one spline per
    (assembly contig, sample name).

    A projection is invalid (None) when no spline exists for the key, which happens for contigs with
    fewer than `min_points` distinct calibration points, or when the position lies outside the spline's
    fitted domain. Both are routine near assembly edges.

    Args:
        splines: Fitted splines by key.
        contig_index: Reference contig -> chromosome index used in the encoding.
        gamete_index: Sample gamete -> gamete index.
        encoder: The reference position encoder.
    """
    def __init__(self, splines: Mapping[SplineKey, Spline], contig_index: Mapping[str, int],
                 gamete_index: Mapping[SampleGamete, int], encoder: PositionEncoder = None):
        self._splines = dict(splines)
        self.contig_index = dict(contig_index)
        self.gamete_index = dict(gamete_index)
        self.encoder = encoder or PositionEncoder()

    def __len__(self): return len(self._splines)
    def __contains__(self, key: SplineKey) -> bool: return key in self._splines
    def __repr__(self): return f'{self.__class__.__name__}({len(self)} splines)'

    def keys(self) -> list[SplineKey]: return list(self._splines)
    def spline(self, contig: str, sample: str) -> Optional[Spline]: return self._splines.get((contig, sample))

    @property
    def index_to_contig(self) -> dict[int, str]: return {i: c for c, i in self.contig_index.items()}

    # Building ---------------------------------------------------------------------------------------------------------
    @classmethod
    def from_points(cls, points: CalibrationPoints, config: ProjectionConfig = None,
                    parallel: bool = False) -> 'CoordinateProjector':
        """
        Fits one spline per calibration key.

        Keys are independent, so with `parallel` they are fitted on the shared thread pool.
        """
        config = config or ProjectionConfig()
        keys = list(points)
        if parallel and len(keys) > 1:
            fitted = RESOURCES.pool.map(lambda k: fit_spline(*points[k], config=config, key=k), keys)
        else:
            fitted = (fit_spline(*points[k], config=config, key=k) for k in keys)
        splines = {key: spline for key, spline in zip(keys, fitted) if spline is not None}
        logger.info('Fitted %d of %d splines', len(splines), len(keys))
        return cls(splines, points.contig_index, points.gamete_index, points.encoder)

    @classmethod
    def from_hvcf_files(cls, paths: Iterable[Union[str, Path]], config: ProjectionConfig = None,
                        contigs: set[str] = None, parallel: bool = False) -> 'CoordinateProjector':
        """Builds a projector from hVCF files, numbering contigs and gametes across all of them."""
        config = config or ProjectionConfig()
        points = CalibrationPoints(PositionEncoder(config.bin_size))
        for path in paths:
            logger.info('Collecting calibration points from %s', path)
            with VcfReader(path) as reader:
                points.add_hvcf_records(reader, reader.header.alt_headers, reader.header.samples, contigs)
        return cls.from_points(points, config, parallel)

    @classmethod
    def from_gvcf_files(cls, paths: Iterable[Union[str, Path]], config: ProjectionConfig = None,
                        contigs: set[str] = None, parallel: bool = False) -> 'CoordinateProjector':
        """
        Builds a projector from single-sample assembly gVCF files.

        Raises:
            VcfHeaderError: If a file declares no sample.
        """
        config = config or ProjectionConfig()
        points = CalibrationPoints(PositionEncoder(config.bin_size))
        for path in paths:
            logger.info('Collecting calibration points from %s', path)
            with VcfReader(path) as reader:
                if not reader.header.samples: raise VcfHeaderError(f'{path}: gVCF declares no sample')
                points.add_gvcf_records(reader, reader.header.samples[0], config.min_indel_length, contigs)
        return cls.from_points(points, config, parallel)

    # Queries ----------------------------------------------------------------------------------------------------------
    def project(self, contig: str, sample_gamete: SampleGamete, position: int) -> Optional[int]:
        """
        Projects an assembly position.

        Args:
            contig: Assembly contig.
            sample_gamete: Sample the assembly belongs to; splines are per sample.
            position: Assembly position.

        Returns:
            The encoded reference position (rounded to the nearest integer), or None if invalid.
        """
        if (spline := self._splines.get((contig, sample_gamete.name))) is None: return None
        if (value := spline(position)) is None or not np.isfinite(value): return None
        return int(round(value))

    def project_many(self, contig: str, sample_gamete: SampleGamete, positions: Iterable[int]) -> np.ndarray:
        """Vectorised `project`; invalid projections are -1."""
        positions = np.asarray(list(positions) if not isinstance(positions, np.ndarray) else positions)
        if (spline := self._splines.get((contig, sample_gamete.name))) is None:
            return np.full(positions.shape, -1, dtype=np.int64)
        values = spline.evaluate(positions)
        out = np.full(values.shape, -1, dtype=np.int64)
        valid = np.isfinite(values)
        out[valid] = np.rint(values[valid]).astype(np.int64)
        return out

    # Persistence ------------------------------------------------------------------------------------------------------
    def save(self, path: Union[str, Path]):
        """Writes the knots and index tables as JSON, gzip-compressed if the path ends with ``.gz``."""
        data = {
            'bin_size': self.encoder.bin_size,
            'contig_index': self.contig_index,
            'gamete_index': {str(sg): i for sg, i in self.gamete_index.items()},
            'splines': [{'contig': c, 'sample': s, 'x': spline.x.tolist(), 'y': spline.y.tolist()}
                        for (c, s), spline in self._splines.items()]
        }
        with Xopen(path, 'wb') as handle: handle.write(json.dumps(data).encode('utf-8'))

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'CoordinateProjector':
        """Reads a projector written by `save`."""
        with Xopen(path, 'rb') as handle: data = json.loads(handle.read().decode('utf-8'))
        try:
            splines = {(s['contig'], s['sample']): Spline(s['x'], s['y']) for s in data['splines']}
            gametes = {SampleGamete.parse(k): v for k, v in data['gamete_index'].items()}
            return cls(splines, data['contig_index'], gametes, PositionEncoder(data['bin_size']))
        except KeyError as e:
            raise ProjectionError(f'{path}: missing key {e} in spline file') from e


# Functions ------------------------------------------------------------------------------------------------------------
def downsample(x: np.ndarray, y: np.ndarray, max_points: int, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
    """Keeps a uniform random subset of at most `max_points` points, preserving their order."""
    if len(x) <= max_points: return x, y
    keep = np.sort(rng.choice(len(x), size=max_points, replace=False))
    return x[keep], y[keep]


def unique_knots(x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Stable-sorts points by x and keeps the last point of each run of equal x."""
    order = np.argsort(x, kind='stable')
    x, y = x[order], y[order]
    keep = _last_of_runs_kernel(x)
    return x[keep], y[keep]


def fit_spline(x: np.ndarray, y: np.ndarray, config: ProjectionConfig = None,
               key: SplineKey = None) -> Optional[Spline]:
    """
    Thins, sorts and de-duplicates calibration points, then fits an Akima spline.

    Returns:
        The spline, or None (with a `ProjectionWarning`) if fewer than `config.min_points` distinct
        points remain.
    """
    config = config or ProjectionConfig()
    x, y = downsample(np.asarray(x), np.asarray(y), config.max_num_points_per_chrom,
                      RESOURCES.seeded_rng(config.seed))
    x, y = unique_knots(x, y)
    if len(x) < max(config.min_points, 2):
        warn(f'Not enough distinct calibration points for {key or "spline"}: {len(x)} < {config.min_points}',
             ProjectionWarning)
        return None
    logger.debug('Fitting %s with %d knots', key, len(x))
    return Spline(x, y)


def _int_or_none(value) -> Optional[int]:
    if value is None or isinstance(value, bool): return None
    try: return int(value)
    except ValueError: return None


def _allele_length(allele: str) -> int:
    return 0 if allele.startswith('<') else len(allele)


# Kernels --------------------------------------------------------------------------------------------------------------
@jit(nopython=True, cache=True, nogil=True)
def _last_of_runs_kernel(sorted_x):
    n = len(sorted_x)
    keep = np.zeros(n, dtype=np.bool_)
    for i in range(n):
        if i == n - 1 or sorted_x[i] != sorted_x[i + 1]: keep[i] = True
    return keep
