"""
vardb: population-scale genomic variant database

Stores variant-major int8 genotype matrices per reference assembly and answers
region, cohort, inheritance, ranking, PRS, kinship and sex-check queries over
them with numpy/numba kernels and a sharded parallel scheduler.
"""

__version__ = "0.1.0"

from .core.engine import QueryEngine
from .core.scheduler import CancellationToken, SchedulerState
from .data.store import DatasetSnapshot, GenotypeStore
from .utils.config import EngineConfig
from .utils.data_types import (
    Assembly,
    Chromosome,
    GeneticModel,
    GenotypeClass,
    KinshipDegree,
    Sex,
)
from .utils.errors import InternalError, InvalidArgumentError, QueryCancelledError, VardbError

__all__ = [
    'QueryEngine',
    'CancellationToken',
    'SchedulerState',
    'DatasetSnapshot',
    'GenotypeStore',
    'EngineConfig',
    'Assembly',
    'Chromosome',
    'GeneticModel',
    'GenotypeClass',
    'KinshipDegree',
    'Sex',
    'VardbError',
    'InvalidArgumentError',
    'InternalError',
    'QueryCancelledError',
]
