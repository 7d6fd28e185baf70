import pytest
from panhap.containers.counts import ReadMapping
from panhap.io.read_mapping import (export_read_mapping, import_read_mapping, read_mapping_metadata,
                                    merge_read_mappings, read_key_file, export_path_key_file, KeyFileData,
                                    KeyFileError, ReadMappingFormatError)


@pytest.fixture
def mapping():
    return ReadMapping({('h1', 'h2'): 3, ('h3',): 1})


class TestReadMappingFiles:
    def test_round_trip(self, mapping, tmp_path):
        path = tmp_path / 'LineA_readMapping.txt.gz'
        export_read_mapping(path, mapping, 'LineA', ('LineA_1.fq', 'LineA_2.fq'))
        assert import_read_mapping(path) == mapping
        assert read_mapping_metadata(path) == {'sampleName': 'LineA', 'filename1': 'LineA_1.fq',
                                               'filename2': 'LineA_2.fq'}

    def test_single_end_omits_second_file(self, mapping, tmp_path):
        path = tmp_path / 'LineA_readMapping.txt'
        export_read_mapping(path, mapping, 'LineA', ('LineA.fq', ''))
        assert path.read_text().splitlines()[:3] == ['#sampleName=LineA', '#filename1=LineA.fq', 'HapIds\tcount']

    def test_last_row_wins(self, tmp_path):
        path = tmp_path / 'dup.txt'
        path.write_text('#sampleName=S\nHapIds\tcount\nh1,h2\t3\nh1,h2\t5\n')
        assert import_read_mapping(path) == {('h1', 'h2'): 5}

    def test_malformed_row(self, tmp_path):
        path = tmp_path / 'bad.txt'
        path.write_text('HapIds\tcount\nh1\tmany\n')
        with pytest.raises(ReadMappingFormatError, match=':2:'):
            import_read_mapping(path)

    def test_merge(self, mapping):
        merged = merge_read_mappings([mapping, {('h3',): 2, ('h4',): 1}])
        assert merged == {('h1', 'h2'): 3, ('h3',): 3, ('h4',): 1}
        assert isinstance(merged, ReadMapping)

    def test_add_sorts_ids(self):
        mapping = ReadMapping()
        mapping.add(['h2', 'h1', 'h2'])
        mapping.add(('h1', 'h2'), 2)
        assert mapping == {('h1', 'h2'): 3}


class TestKeyFiles:
    def test_paired(self, tmp_path):
        path = tmp_path / 'keys.txt'
        path.write_text('sampleName\tfilename\tfilename2\nA\ta_1.fq\ta_2.fq\nB\tb.fq\n')
        assert read_key_file(path) == [KeyFileData('A', 'a_1.fq', 'a_2.fq'), KeyFileData('B', 'b.fq')]

    def test_column_order_and_blank_lines(self, tmp_path):
        path = tmp_path / 'keys.txt'
        path.write_text('filename\tsampleName\n\nx.fq\tX\n')
        assert read_key_file(path) == [KeyFileData('X', 'x.fq')]

    def test_missing_column(self, tmp_path):
        path = tmp_path / 'keys.txt'
        path.write_text('sampleName\tfile\nA\ta.fq\n')
        with pytest.raises(KeyFileError, match='missing column'):
            read_key_file(path)

    def test_short_row(self, tmp_path):
        path = tmp_path / 'keys.txt'
        path.write_text('sampleName\tfilename\nA\n')
        with pytest.raises(KeyFileError, match=':2:'):
            read_key_file(path)

    def test_export_path_key_file(self, tmp_path):
        path = export_path_key_file(tmp_path, {'A': ['A_readMapping.txt'], 'B': ['B_1.txt', 'B_2.txt']})
        assert path == tmp_path / 'pathKeyFile.txt'
        assert read_key_file(path) == [KeyFileData('A', 'A_readMapping.txt'), KeyFileData('B', 'B_1.txt'),
                                       KeyFileData('B', 'B_2.txt')]
