import gzip
from hashlib import md5

import pytest

CONTIGS = ('1', '2')
RANGES_PER_CONTIG = 19
RANGE_LENGTH = 1000
ASM_OFFSETS = {'Ref': 0, 'LineA': 100, 'LineB': 250}
VCF_COLUMNS = '#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT'


def reference_ranges() -> list[tuple[str, int, int]]:
    return [(c, i * RANGE_LENGTH + 1, (i + 1) * RANGE_LENGTH) for c in CONTIGS for i in range(RANGES_PER_CONTIG)]


def hap_id(sample: str, contig: str, start: int) -> str:
    # LineB carries the Ref haplotype in every other range
    if sample == 'LineB' and (start // RANGE_LENGTH) % 2 == 0: sample = 'Ref'
    return md5(f'{sample}_{contig}_{start}'.encode()).hexdigest()


def alt_line(hap: str, sample: str, regions: str, ref_range: str, gamete: int = 0) -> str:
    return (f'##ALT=<ID={hap},Description="haplotype data for line: {sample}",Source="{sample}.fa",'
            f'SampleName="{sample}",Regions="{regions}",Checksum="{hap}",RefRange="{ref_range}",Gamete={gamete}>')


def hvcf_text(sample: str) -> str:
    offset = ASM_OFFSETS[sample]
    header = ['##fileformat=VCFv4.2'] + [f'##contig=<ID={c},length={RANGES_PER_CONTIG * RANGE_LENGTH}>' for c in CONTIGS]
    rows = []
    for contig, start, end in reference_ranges():
        hap = hap_id(sample, contig, start)
        header.append(alt_line(hap, sample, f'{contig}:{start + offset}-{end + offset}', f'{contig}:{start}-{end}'))
        rows.append('\t'.join([contig, str(start), '.', 'A', f'<{hap}>', '.', '.', f'END={end}', 'GT', '1']))
    return '\n'.join(header + [f'{VCF_COLUMNS}\t{sample}'] + rows) + '\n'


def write_text(path, text: str):
    if str(path).endswith('.gz'):
        with gzip.open(path, 'wt') as handle: handle.write(text)
    else:
        path.write_text(text)
    return path


@pytest.fixture
def hvcf_dir(tmp_path):
    """Directory with Ref, LineA and LineB hVCF files sharing 38 ranges over contigs 1 and 2."""
    directory = tmp_path / 'hvcf'
    directory.mkdir()
    write_text(directory / 'Ref.h.vcf', hvcf_text('Ref'))
    write_text(directory / 'LineA.h.vcf', hvcf_text('LineA'))
    write_text(directory / 'LineB.h.vcf.gz', hvcf_text('LineB'))
    (directory / 'notes.txt').write_text('not an hvcf\n')
    return directory


@pytest.fixture
def hvcf_files(hvcf_dir):
    """The Ref, LineA and LineB hVCF paths, in that order."""
    return [hvcf_dir / 'Ref.h.vcf', hvcf_dir / 'LineA.h.vcf', hvcf_dir / 'LineB.h.vcf.gz']


@pytest.fixture
def write_vcf(tmp_path):
    """Factory writing a VCF from meta lines, sample names and body rows (lists of columns)."""
    def write(name: str, samples: list[str], rows: list[list[str]], meta: list[str] = ()):
        lines = ['##fileformat=VCFv4.2', *meta, '\t'.join([VCF_COLUMNS, *samples])]
        lines += ['\t'.join(str(c) for c in row) for row in rows]
        return write_text(tmp_path / name, '\n'.join(lines) + '\n')
    return write


@pytest.fixture
def mem_file(tmp_path):
    """MEM lines of four reads projecting onto the hVCF fixture assemblies."""
    lines = [
        'r1\t0\t150\t2\t.\t1_LineA:+:5101\t1_LineB:+:5251',
        'r1\t10\t140\t1\t.\t1_Ref:+:9001',
        '',
        'r2\t0\t100\t1\t.\t1_LineA:+:5101',
        'r3\t0\t150\t1\t.\t1_LineA:+:50',
        'r4\t0\t150\t1\t.\t2_Ref:+:3001',
    ]
    return write_text(tmp_path / 'sample_1.bed', '\n'.join(lines) + '\n')
