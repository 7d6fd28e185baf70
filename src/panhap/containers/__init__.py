"""
Containers for the haplotype index and accumulated read evidence.
"""
