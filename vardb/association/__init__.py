"""
Variant-level tests and sample scores: HWE, chi-squared, inheritance, PRS
"""

from .chi2 import chi2_shard
from .hwe import hwe_shard
from .inheritance import InheritanceMode, inheritance_shard
from .prs import score_prs

__all__ = ['chi2_shard', 'hwe_shard', 'InheritanceMode', 'inheritance_shard', 'score_prs']
