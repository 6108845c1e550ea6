"""
Loading, storage and indexing of genotype datasets
"""
