import pytest
from panhap.containers.counts import ReadMapping
from panhap.containers.index import HaplotypeIndex
from panhap.core.ranges import ReferenceRange
from panhap.engines.mems import (select_best_hits, filter_by_read_position, filter_to_one_reference_range,
                                 ReadMapper, MemSelectionConfig)
from panhap.io.mem import MemReader, MemParseError, Mem, MemHit, group_by_read


def _mem(name, start, end, *hits):
    return Mem(name, start, end, len(hits), tuple(MemHit(c, '+', p) for c, p in hits))


class TestMemReader:
    def test_parse_and_group(self, mem_file):
        with MemReader(mem_file) as reader:
            groups = list(reader.groups())
        assert [g[0].read_name for g in groups] == ['r1', 'r2', 'r3', 'r4']
        first = groups[0][0]
        assert (first.read_start, first.read_end, first.num_hits, len(first)) == (0, 150, 2, 150)
        assert first.hits == (MemHit('1_LineA', '+', 5101), MemHit('1_LineB', '+', 5251))

    def test_contig_with_colon_and_trailing_tab(self):
        with MemReader([b'r\t0\t10\t1\t.\tHLA:A_S:-:42\t']) as reader:
            mem = next(iter(reader))
        assert mem.hits == (MemHit('HLA:A_S', '-', 42),)

    @pytest.mark.parametrize('line', [b'r\t0\t10\t1', b'r\t0\tx\t1\t.', b'r\t0\t10\t1\t.\tbadhit'])
    def test_malformed_lines(self, line):
        with MemReader([b'', line]) as reader:
            with pytest.raises(MemParseError, match=':2:'):
                list(reader)

    def test_groups_rely_on_adjacency(self):
        mems = [_mem('a', 0, 5), _mem('b', 0, 5), _mem('a', 0, 5)]
        assert [len(g) for g in group_by_read(mems)] == [1, 1, 1]
        assert list(group_by_read([])) == []


class TestSelectBestHits:
    @pytest.fixture
    def group(self):
        return [_mem('r', 0, 20, ('A', 1), ('B', 2)),
                _mem('r', 5, 25, ('C', 3), ('D', 4), ('E', 5)),
                _mem('r', 0, 15, ('F', 6))]

    def test_keeps_longest(self, group):
        hits = select_best_hits(group, min_len=10, max_hits=10)
        assert [h.contig for h in hits] == ['A', 'B', 'C', 'D', 'E']

    def test_too_many_hits(self, group):
        assert select_best_hits(group, min_len=10, max_hits=4) == []

    def test_min_length(self, group):
        assert select_best_hits(group, min_len=21, max_hits=10) == []
        assert len(select_best_hits(group, min_len=21, max_hits=10, require_min_len=False)) == 5

    def test_duplicate_hits_collapse(self):
        group = [_mem('r', 0, 10, ('A', 1)), _mem('r', 2, 12, ('A', 1))]
        assert select_best_hits(group, 5, 10) == [MemHit('A', '+', 1)]

    def test_empty(self):
        assert select_best_hits([], 1, 1) == []


class TestFilters:
    def test_read_position(self):
        group = [_mem('r', 0, 80), _mem('r', 5, 80), _mem('r', 0, 60)]
        assert filter_by_read_position(group, max_start=0, min_end=70) == [group[0]]
        assert filter_by_read_position(group) == group

    def test_one_reference_range(self):
        x, y = ReferenceRange('1', 1, 100), ReferenceRange('1', 101, 200)
        ranges = {'A': [x], 'B': [x], 'C': [y]}
        assert filter_to_one_reference_range(['A', 'B', 'C'], ranges) == ['A', 'B']

    def test_one_reference_range_tie_keeps_first(self):
        x, y = ReferenceRange('1', 1, 100), ReferenceRange('1', 101, 200)
        assert filter_to_one_reference_range(['C', 'A'], {'A': [x], 'C': [y]}) == ['C']

    def test_unknown_hap_ids(self):
        assert filter_to_one_reference_range(['Z'], {}) == []


class TestReadMapper:
    def test_map_groups(self):
        x, y = ReferenceRange('1', 1, 100), ReferenceRange('1', 101, 200)
        mapper = ReadMapper({'A': [x], 'B': [x], 'C': [y]}, MemSelectionConfig(min_mem_length=70, max_start=0, min_end=70))
        groups = [
            [_mem('r1', 0, 80, ('B', 1), ('A', 9), ('C', 3))],
            [_mem('r2', 0, 75, ('A', 1)), _mem('r2', 0, 75, ('B', 1))],
            [_mem('r3', 10, 80, ('A', 1))],
            [_mem('r4', 0, 80, ('A', 1), ('A', 50))],
        ]
        mapping = mapper.map_groups(groups)
        assert mapping == ReadMapping({('A', 'B'): 2, ('A',): 1})

    def test_short_reads_are_rejected(self):
        x = ReferenceRange('1', 1, 100)
        mapper = ReadMapper({'A': [x], 'B': [x]}, MemSelectionConfig(min_mem_length=100))
        groups = [[_mem('r1', 0, 99, ('A', 1))], [_mem('r2', 0, 100, ('A', 1), ('B', 5))]]
        assert mapper.map_groups(groups) == ReadMapping({('A', 'B'): 1})
        assert mapper.hap_ids_for_read(groups[0]) == []

    def test_map_file_against_index(self, hvcf_files, tmp_path):
        index = HaplotypeIndex(hvcf_files)
        r = ReferenceRange('1', 1001, 2000)
        hap_ids = sorted(index.hap_ids(r))
        lines = ['read1\t0\t150\t3\t.\t' + '\t'.join(f'{h}:+:10' for h in hap_ids),
                 f'read2\t0\t150\t1\t.\t{hap_ids[0]}:+:10']
        path = tmp_path / 'mems.bed'
        path.write_text('\n'.join(lines) + '\n')
        mapping = ReadMapper(index.hap_id_to_ref_range_map()).map_file(path)
        assert mapping == {tuple(hap_ids): 1, (hap_ids[0],): 1}
