"""
Primality testing for the factor base and for the input itself.

SMALL_PRIMES is read-only process-wide data, built once at import.
"""

import random

from sympy import primerange

from qsieve.errors import InvalidInput
from qsieve.modular import mod_pow

# primes < 10000
SMALL_PRIMES: tuple[int, ...] = tuple(int(p) for p in primerange(2, 10000))
_SMALL_PRIME_SET = frozenset(SMALL_PRIMES)

def is_prime_small(n: int) -> bool:
    """
    Exact primality by trial division up to sqrt(n).

    Meant for the small candidates scanned while building the factor base.
    """
    if n < 2:
        return False
    elif n < 4:
        return True
    elif n % 2 == 0:
        return False

    d = 3
    while d * d <= n:
        if n % d == 0:
            return False
        d += 2
    return True

def is_probable_prime(n: int, rounds: int=50, rng: random.Random|None=None) -> bool:
    """
    Miller-Rabin probabilistic primality test.

    :param n: The integer to test.
    :param rounds: Number of random bases to try. A composite n survives
        with probability at most 4^-rounds.
    :param rng: Source of the random bases (defaults to the random module).
    :return: False if n is certainly composite, True if n is probably prime.
    """
    if rounds < 1:
        raise InvalidInput("rounds must be at least 1")
    if n <= 1:
        return False
    if n in _SMALL_PRIME_SET:
        return True
    if n % 2 == 0:
        return False
    rng = rng or random

    # n - 1 = d * 2^s with d odd
    d, s = n - 1, 0
    while d % 2 == 0:
        d //= 2
        s += 1

    for _ in range(rounds):
        a = rng.randint(2, n - 2)
        if not _miller_rabin_round(a, d, s, n):
            return False
    return True

def _miller_rabin_round(a, d, s, n):
    """One Miller-Rabin trial with base a. False means a witnesses that n is composite."""
    x = mod_pow(a, d, n)
    if x == 1 or x == n - 1:
        return True

    for _ in range(s - 1):
        x = x * x % n
        if x == n - 1:
            return True
        if x == 1:
            return False
    return False
