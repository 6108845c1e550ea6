"""
Sample-level genotype matrix analyses: kinship and chrX sex checks
"""

from .kinship import king_kinship_pairs, kinship_degree
from .sexcheck import fstat_x, sex_mismatches

__all__ = ['king_kinship_pairs', 'kinship_degree', 'fstat_x', 'sex_mismatches']
