import numpy as np
import pytest
from panhap.core.encoding import PositionEncoder
from panhap.core.ranges import SampleGamete
from panhap.engines.projection import (CalibrationPoints, CoordinateProjector, ProjectionConfig, ProjectionWarning,
                                       ProjectionError, Spline, fit_spline, downsample, unique_knots)
from panhap.io.vcf import VariantRecord, VcfHeaderError, VcfReader


def _gvcf(pos, ref, alt, asm_start=None, asm_end=None, end=None, strand=None, asm_chr='a1', contig='chr1'):
    info = {'ASM_Chr': asm_chr}
    if asm_start is not None: info['ASM_Start'] = str(asm_start)
    if asm_end is not None: info['ASM_End'] = str(asm_end)
    if strand: info['ASM_Strand'] = strand
    if end is not None: info['END'] = str(end)
    return VariantRecord(contig, pos, end if end is not None else pos + len(ref) - 1, ref, (alt,) if alt else (), info)


def _linear_points(n=100, key=('a1', 'S')):
    points = CalibrationPoints(PositionEncoder(1))
    for x in range(n): points.add(key[0], key[1], x * 10, 'chr1', x * 20 + 5)
    return points


class TestSpline:
    def test_round_trip_at_knots(self):
        x = np.array([1.0, 4.0, 9.0, 16.0, 25.0, 36.0])
        y = np.array([2.0, 3.0, 7.0, 8.0, 20.0, 21.0])
        spline = Spline(x, y)
        np.testing.assert_allclose([spline(v) for v in x], y, atol=1e-9)
        assert spline.domain == (1.0, 36.0)
        assert len(spline) == 6

    def test_outside_domain(self):
        spline = Spline(np.arange(5.0), np.arange(5.0) * 2)
        assert spline(-0.5) is None
        assert spline(4.5) is None
        np.testing.assert_array_equal(np.isnan(spline.evaluate([-1, 2, 5])), [True, False, True])

    def test_requires_increasing_knots(self):
        with pytest.raises(ProjectionError, match='increasing'):
            Spline([0.0, 2.0, 1.0], [0.0, 1.0, 2.0])


class TestKnotPreparation:
    def test_unique_knots_last_wins(self):
        x, y = unique_knots(np.array([5.0, 1.0, 5.0, 3.0]), np.array([50.0, 10.0, 51.0, 30.0]))
        np.testing.assert_array_equal(x, [1.0, 3.0, 5.0])
        np.testing.assert_array_equal(y, [10.0, 30.0, 51.0])

    def test_downsample(self):
        x = np.arange(1000.0)
        kept_x, kept_y = downsample(x, x * 2, 100, np.random.default_rng(1))
        assert len(kept_x) == 100
        assert len(set(kept_x)) == 100
        assert np.all(np.diff(kept_x) > 0)
        np.testing.assert_array_equal(kept_y, kept_x * 2)

    def test_downsample_below_cap(self):
        x = np.arange(10.0)
        assert downsample(x, x, 100, np.random.default_rng(1))[0] is x

    def test_fit_is_reproducible(self):
        x = np.arange(500.0)
        config = ProjectionConfig(max_num_points_per_chrom=50)
        np.testing.assert_array_equal(fit_spline(x, x, config).x, fit_spline(x, x, config).x)

    def test_too_few_points(self):
        with pytest.warns(ProjectionWarning, match='Not enough'):
            assert fit_spline(np.array([1.0, 2.0, 2.0, 3.0, 4.0]), np.arange(5.0)) is None


class TestGvcfPoints:
    def test_block_state_machine(self):
        records = [
            _gvcf(1, 'A', '<NON_REF>', 1, 100, end=100),
            _gvcf(101, 'A', 'G', 101, 101),
            _gvcf(102, 'A', 'A' + 'C' * 20, 102, 122),
            _gvcf(103, 'A' * 15, 'A', 123, 123),
            _gvcf(200, 'A', '<NON_REF>', 500, 400, end=300, strand='-'),
            _gvcf(1, 'A', 'C', 1, 1, asm_chr='a2', contig='chr2'),
        ]
        points = CalibrationPoints(PositionEncoder(1))
        points.add_gvcf_records(records, 'LineA')
        x, y = points[('a1', 'LineA')]
        np.testing.assert_array_equal(x, [1, 101, 112, 123, 500, 400])
        np.testing.assert_array_equal(y, [1, 101, 102, 110, 200, 300])
        x, y = points[('a2', 'LineA')]
        np.testing.assert_array_equal(x, [1])
        np.testing.assert_array_equal(y, [(1 << 24) | 1])
        assert points.contig_index == {'chr1': 0, 'chr2': 1}
        assert points.gamete_index == {SampleGamete('LineA'): 0}

    def test_small_indels_extend_block(self):
        records = [_gvcf(1, 'A', 'G', 1, 1), _gvcf(10, 'A', 'ACG', 10, 12), _gvcf(20, 'ACGT', 'A', 22, 22)]
        points = CalibrationPoints(PositionEncoder(1))
        points.add_gvcf_records(records, 'S')
        x, y = points[('a1', 'S')]
        np.testing.assert_array_equal(x, [1, 22])
        np.testing.assert_array_equal(y, [1, 20])

    def test_contig_change_flushes(self):
        records = [_gvcf(5, 'A', 'G', 5, 5), _gvcf(9, 'A', 'G', 9, 9), _gvcf(5, 'A', 'G', 50, 50, contig='chr2')]
        points = CalibrationPoints(PositionEncoder(1))
        points.add_gvcf_records(records, 'S')
        x, y = points[('a1', 'S')]
        np.testing.assert_array_equal(x, [5, 9, 50])
        np.testing.assert_array_equal(y, [5, 9, (1 << 24) | 5])

    def test_skipped_rows_warn(self):
        records = [_gvcf(1, 'A', 'G'), _gvcf(2, 'A', None, 2, 2), _gvcf(3, 'A', 'G', 3, 3)]
        points = CalibrationPoints(PositionEncoder(1))
        with pytest.warns(ProjectionWarning, match='Skipped 2'):
            assert points.add_gvcf_records(records, 'S') == 2
        np.testing.assert_array_equal(points[('a1', 'S')][0], [3])

    def test_contig_filter(self):
        records = [_gvcf(1, 'A', 'G', 1, 1), _gvcf(1, 'A', 'G', 9, 9, contig='chr2')]
        points = CalibrationPoints()
        points.add_gvcf_records(records, 'S', contigs={'chr2'})
        assert points.contig_index == {'chr2': 0}

    def test_from_gvcf_files(self, write_vcf):
        rows = [['chr1', p, '.', 'A', 'A' + 'T' * 30, '.', '.', f'ASM_Chr=a1;ASM_Start={p + 3};ASM_End={p + 33}',
                 'GT', '1'] for p in range(1, 2000, 300)]
        path = write_vcf('LineA.g.vcf', ['LineA'], rows)
        projector = CoordinateProjector.from_gvcf_files([path], ProjectionConfig(bin_size=1))
        assert projector.keys() == [('a1', 'LineA')]
        assert projector.spline('a1', 'LineA').domain == (19.0, 1819.0)
        assert projector.project('a1', SampleGamete('LineA'), 19) == 1
        assert projector.project('a1', SampleGamete('LineA'), 1000) == 982
        assert projector.project('a1', SampleGamete('LineA'), 1820) is None

    def test_gvcf_without_sample(self, write_vcf):
        with pytest.raises(VcfHeaderError, match='no sample'):
            CoordinateProjector.from_gvcf_files([write_vcf('nosample.g.vcf', [], [])])


class TestHvcfPoints:
    def test_points_from_alt_headers(self, hvcf_files):
        projector = CoordinateProjector.from_hvcf_files(hvcf_files)
        assert projector.contig_index == {'1': 0, '2': 1}
        assert projector.gamete_index == {SampleGamete('Ref'): 0, SampleGamete('LineA'): 1, SampleGamete('LineB'): 2}
        assert len(projector) == 6
        encoder = projector.encoder
        assert projector.project('1', SampleGamete('LineA'), 5101) == encoder.encode(0, 5001)
        assert projector.project('2', SampleGamete('LineB'), 3251) == encoder.encode(1, 3001)
        assert projector.project('1', SampleGamete('LineA'), 50) is None
        assert projector.project('3', SampleGamete('LineA'), 5101) is None

    def test_missing_alt_header_warns(self, write_vcf):
        rows = [['1', 1, '.', 'A', '<h1>', '.', '.', 'END=100', 'GT', '1']]
        points = CalibrationPoints()
        with VcfReader(write_vcf('noalt.h.vcf', ['S'], rows)) as reader:
            with pytest.warns(ProjectionWarning, match='ALT header'):
                assert points.add_hvcf_records(reader, reader.header.alt_headers, reader.header.samples) == 1
        assert len(points) == 0
        assert points.gamete_index == {SampleGamete('S'): 0}


class TestCoordinateProjector:
    def test_linear_projection(self):
        projector = CoordinateProjector.from_points(_linear_points(), ProjectionConfig(bin_size=1))
        for x in (0, 10, 255, 990):
            assert projector.project('a1', SampleGamete('S'), x) == 2 * x + 5
        assert projector.project('a1', SampleGamete('S'), 991) is None
        assert projector.project('a1', SampleGamete('Other'), 10) is None

    def test_project_many(self):
        projector = CoordinateProjector.from_points(_linear_points())
        result = projector.project_many('a1', SampleGamete('S'), [-5, 0, 500, 2000])
        np.testing.assert_array_equal(result, [-1, 5, 1005, -1])
        np.testing.assert_array_equal(projector.project_many('zz', SampleGamete('S'), [1, 2]), [-1, -1])

    def test_parallel_matches_serial(self):
        points = _linear_points()
        for x in range(50): points.add('a2', 'S', x * 3, 'chr2', x * 7)
        serial = CoordinateProjector.from_points(points)
        parallel = CoordinateProjector.from_points(points, parallel=True)
        assert serial.keys() == parallel.keys()
        for key in serial.keys():
            np.testing.assert_array_equal(serial.spline(*key).x, parallel.spline(*key).x)

    def test_sparse_key_skipped(self):
        points = _linear_points()
        for x in range(3): points.add('tiny', 'S', x, 'chr1', x)
        with pytest.warns(ProjectionWarning, match='tiny'):
            projector = CoordinateProjector.from_points(points)
        assert ('tiny', 'S') not in projector
        assert projector.project('tiny', SampleGamete('S'), 1) is None

    def test_save_load(self, tmp_path):
        projector = CoordinateProjector.from_points(_linear_points())
        path = tmp_path / 'splines.json.gz'
        projector.save(path)
        loaded = CoordinateProjector.load(path)
        assert loaded.keys() == projector.keys()
        assert loaded.contig_index == projector.contig_index
        assert loaded.gamete_index == projector.gamete_index
        assert loaded.encoder == projector.encoder
        for x in (0, 333, 990):
            assert loaded.project('a1', SampleGamete('S'), x) == projector.project('a1', SampleGamete('S'), x)
