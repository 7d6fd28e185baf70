"""
Pangenome haplotype indexing and read-evidence aggregation.

The package is organised like a small bioinformatics library:

- `panhap.core`: value types (`ReferenceRange`, `SampleGamete`) and the PS4G position encoding.
- `panhap.io`: streaming readers and writers for hVCF/gVCF, MEM hits, read mappings and PS4G files.
- `panhap.containers`: the `HaplotypeIndex` and the count containers.
- `panhap.engines`: MEM hit selection, coordinate projection and PS4G aggregation.
- `panhap.external`: thin wrappers around external command line tools.
"""
import logging


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class PanhapWarning(Warning): pass


# Constants ------------------------------------------------------------------------------------------------------------
__version__ = '0.3.0'
logging.getLogger(__name__).addHandler(logging.NullHandler())
