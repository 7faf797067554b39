"""
Quadratic Sieve factorization.

> from qsieve import quadratic_sieve
> sorted(quadratic_sieve(1000036000099))
[1000003, 1000033]

quadratic_sieve returns [p, q] with p * q == N, or [N] when it gives up.
"""

from qsieve.errors import InvalidInput, NoInverse, NoRoot, QSieveError
from qsieve.gf2 import BitMatrix
from qsieve.sieve import Relation, Stage, quadratic_sieve
from qsieve.worker import SieveWorker, TqdmProgress

__all__ = [
    "BitMatrix",
    "InvalidInput",
    "NoInverse",
    "NoRoot",
    "QSieveError",
    "Relation",
    "SieveWorker",
    "Stage",
    "TqdmProgress",
    "quadratic_sieve",
]
