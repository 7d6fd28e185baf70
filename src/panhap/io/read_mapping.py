"""
Read-mapping files and key files.

A read-mapping file records, for one sample, how many reads hit each set of haplotype ids::

    #sampleName=LineA
    #filename1=LineA_1.fq.gz
    #filename2=LineA_2.fq.gz
    HapIds	count
    12f0cec9102e84a161866e37072443b7,4fc7b8af32ddd74e07cb49d147ef1938	3

Key files are tab-separated tables with a header naming at least the ``sampleName`` and ``filename``
columns.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union, Mapping, Iterable

from panhap.containers.counts import ReadMapping
from panhap.io import ParserError
from panhap.io.open import Xopen

logger = logging.getLogger(__name__)


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class ReadMappingFormatError(ParserError): pass
class KeyFileError(ParserError): pass


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class KeyFileData:
    """A key file row: sample name and its read file(s)."""
    sample_name: str
    file1: str
    file2: str = ''


# Functions ------------------------------------------------------------------------------------------------------------
def export_read_mapping(file: Union[str, Path], mapping: Mapping[tuple[str, ...], int], sample_name: str,
                        files: tuple[str, str] = ('', '')):
    """
    Writes a read mapping.

    Args:
        file: Output path; compressed according to its extension.
        mapping: Haplotype id tuple -> read count.
        sample_name: Sample the reads belong to.
        files: The read file(s); the second is only recorded when non-empty.
    """
    with Xopen(file, 'wb') as handle:
        handle.write(f'#sampleName={sample_name}\n#filename1={files[0]}\n'.encode())
        if files[1]: handle.write(f'#filename2={files[1]}\n'.encode())
        handle.write(b'HapIds\tcount\n')
        for hap_ids, count in mapping.items(): handle.write(f'{",".join(hap_ids)}\t{count}\n'.encode())
    logger.debug('Wrote %d read mapping rows to %s', len(mapping), file)


def import_read_mapping(file: Union[str, Path]) -> ReadMapping:
    """
    Reads a read mapping written by `export_read_mapping`.

    Header lines are skipped. A key listed twice keeps the count of its last row.

    Raises:
        ReadMappingFormatError: If a row is not ``ids<TAB>count``.
    """
    mapping = ReadMapping()
    with Xopen(file, 'rb') as handle:
        for line_no, raw in enumerate(handle, 1):
            line = raw.decode('utf-8').rstrip('\r\n')
            if not line or line.startswith(('#', 'HapIds')): continue
            hap_ids, sep, count = line.partition('\t')
            if not sep or not count.strip().isdigit():
                raise ReadMappingFormatError(f'{file}:{line_no}: expected "ids<TAB>count", found "{line}"')
            mapping[tuple(hap_ids.split(','))] = int(count)
    return mapping


def read_mapping_metadata(file: Union[str, Path]) -> dict[str, str]:
    """Returns the ``#key=value`` header entries of a read-mapping file."""
    metadata = {}
    with Xopen(file, 'rb') as handle:
        for raw in handle:
            line = raw.decode('utf-8').rstrip('\r\n')
            if not line.startswith('#'): break
            key, sep, value = line[1:].partition('=')
            if sep: metadata[key] = value
    return metadata


def merge_read_mappings(mappings: Iterable[Mapping[tuple[str, ...], int]]) -> ReadMapping:
    """Sums read mappings key by key."""
    return ReadMapping.merge(*(ReadMapping(m) for m in mappings))


def read_key_file(file: Union[str, Path]) -> list[KeyFileData]:
    """
    Reads a key file.

    Raises:
        KeyFileError: If the ``sampleName`` or ``filename`` column is missing, or a row is too short.
    """
    with Xopen(file, 'rb') as handle:
        lines = [raw.decode('utf-8').rstrip('\r\n') for raw in handle]
    lines = [line for line in lines if line.strip()]
    if not lines: raise KeyFileError(f'{file}: empty key file')
    columns = {name: i for i, name in enumerate(lines[0].split('\t'))}
    if missing := [c for c in ('sampleName', 'filename') if c not in columns]:
        raise KeyFileError(f'{file}: key file is missing column(s) {", ".join(missing)}')
    sample_col, file_col, file2_col = columns['sampleName'], columns['filename'], columns.get('filename2')
    rows = []
    for line_no, line in enumerate(lines[1:], 2):
        parts = line.split('\t')
        if len(parts) <= max(sample_col, file_col):
            raise KeyFileError(f'{file}:{line_no}: expected at least {max(sample_col, file_col) + 1} columns')
        file2 = parts[file2_col] if file2_col is not None and file2_col < len(parts) else ''
        rows.append(KeyFileData(parts[sample_col], parts[file_col], file2))
    return rows


def export_path_key_file(output_dir: Union[str, Path], sample_to_files: Mapping[str, Iterable[Union[str, Path]]]) -> Path:
    """
    Writes ``pathKeyFile.txt`` listing every (sample, read-mapping file) pair.

    Returns:
        Path of the written key file.
    """
    path = Path(output_dir) / 'pathKeyFile.txt'
    logger.info('Writing path key file to %s', path)
    with Xopen(path, 'wb') as handle:
        handle.write(b'sampleName\tfilename\n')
        for sample, files in sample_to_files.items():
            for name in files: handle.write(f'{sample}\t{name}\n'.encode())
    return path
