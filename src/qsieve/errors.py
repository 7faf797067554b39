"""Exceptions raised by the arithmetic and matrix primitives.

Giving up on a factorization is not an error: quadratic_sieve returns [N] instead.
"""


class QSieveError(Exception):
    """Base class for all qsieve errors."""


class InvalidInput(QSieveError, ValueError):
    """Non-positive modulus, dimension or otherwise unusable argument."""


class NoInverse(QSieveError, ArithmeticError):
    """Modular inverse requested for a pair that is not coprime."""


class NoRoot(QSieveError, ArithmeticError):
    """Tonelli-Shanks found no square root (argument is not a quadratic residue)."""
