"""
Modular arithmetic toolkit used by every stage of the sieve.

All functions work on Python ints (arbitrary precision) and validate
their preconditions eagerly, raising errors from qsieve.errors.
"""

from qsieve.errors import InvalidInput, NoInverse, NoRoot

##################
# GCD and co.    #
##################

def gcd(a: int, b: int) -> int:
    """
    Binary GCD (Stein's algorithm) of |a| and |b|.

    gcd(0, 0) == 0, and the result is never negative.
    """
    a, b = abs(a), abs(b)
    if a == 0:
        return b
    if b == 0:
        return a

    # common factors of two
    shift = 0
    while (a | b) & 1 == 0:
        a >>= 1
        b >>= 1
        shift += 1

    while a & 1 == 0:
        a >>= 1
    while b != 0:
        while b & 1 == 0:
            b >>= 1
        if a > b:
            a, b = b, a
        b -= a

    return a << shift

def extended_gcd(a: int, b: int) -> tuple[int, int, int]:
    """
    Extended Euclidean algorithm.

    :param a: Positive integer.
    :param b: Positive integer.
    :return: Tuple (g, x, y) such that a*x + b*y == g == gcd(a, b).
    """
    if a <= 0 or b <= 0:
        raise InvalidInput(f"extended_gcd needs positive arguments, got ({a}, {b})")

    # invariant: a == u*a0 + v*b0 and b == x*a0 + y*b0
    x, y, u, v = 0, 1, 1, 0
    while a != 0:
        q, r = divmod(b, a)
        b, a = a, r
        x, y, u, v = u, v, x - u*q, y - v*q

    return b, x, y

def to_canonical_residue(a: int, n: int) -> int:
    """Return a mod n in [0, n)."""
    if n <= 0:
        raise InvalidInput(f"modulus must be positive, got {n}")
    return a % n

def mod_inverse(a: int, n: int) -> int:
    """
    Return x with a*x ≡ 1 (mod n).

    Raises NoInverse if gcd(a, n) != 1.
    """
    a = to_canonical_residue(a, n)
    if n == 1:
        return 0    # every residue is 0 mod 1
    if a == 0:
        raise NoInverse(f"0 does not have an inverse modulo {n}")

    g, x, _ = extended_gcd(a, n)
    if g != 1:
        raise NoInverse(f"{a} does not have an inverse modulo {n}")
    return x % n

def mod_pow(b: int, e: int, n: int) -> int:
    """
    Compute b^e mod n by repeated squaring.

    A negative exponent e returns the inverse of b^|e| mod n
    (so it raises NoInverse when b is not invertible mod n).
    """
    if n <= 0:
        raise InvalidInput(f"modulus must be positive, got {n}")
    if n == 1:
        return 0

    b %= n
    if e < 0:
        return mod_inverse(mod_pow(b, -e, n), n)

    result = 1
    while e > 0:
        if e & 1:
            result = result * b % n
        e >>= 1
        b = b * b % n
    return result

#####################
# Quadratic residues #
#####################

def is_quadratic_residue(n: int, p: int) -> bool:
    """
    Checks if n is a quadratic residue modulo p using Euler's Criterion.
    (i.e., evaluating whether the Legendre symbol (n/p) is 1.)

    Euler's criterion: (n/p) ≡ n^((p-1)/2) (mod p)

    Every n counts as a residue for p <= 2. Multiples of p are not
    residues here (the symbol is 0, not 1).
    """
    if p <= 2:
        return True
    return mod_pow(n, (p - 1) // 2, p) == 1

def modular_sqrt(n: int, p: int) -> int:
    """
    Tonelli-Shanks: find r with r^2 ≡ n (mod p).

    :param n: A quadratic residue modulo p.
    :param p: An odd prime (p <= 2 is accepted and returns n mod p).
    :return: One of the square roots; the other one is p - r.
    """
    if p <= 2:
        if p <= 0:
            raise InvalidInput(f"modulus must be positive, got {p}")
        return n % p

    n %= p
    if n == 0:
        return 0

    # p - 1 = q * 2^s with q odd
    q, s = p - 1, 0
    while q & 1 == 0:
        q >>= 1
        s += 1

    # any non-residue z
    z = 2
    while is_quadratic_residue(z, p):
        z += 1
        if z >= p:
            raise NoRoot(f"no quadratic non-residue below {p}, modulus is not prime")

    m = s
    c = mod_pow(z, q, p)
    t = mod_pow(n, q, p)
    r = mod_pow(n, (q + 1) // 2, p)

    while t != 1:
        # least i with t^(2^i) == 1, it must stay below m
        i, t2 = 0, t
        while t2 != 1:
            i += 1
            if i >= m:
                raise NoRoot(f"{n} is not a quadratic residue modulo {p}")
            t2 = t2 * t2 % p

        b = mod_pow(c, 1 << (m - i - 1), p)
        m = i
        c = b * b % p
        t = t * c % p
        r = r * b % p

    return r

def ceil_isqrt(n: int) -> int:
    """
    Smallest integer r with r*r >= n.

    Doubles an upper bound until it overshoots, then binary searches.
    """
    if n < 0:
        raise InvalidInput(f"square root of negative number {n}")

    hi = 1
    while hi * hi <= n:
        hi *= 2
    lo = hi // 2

    result = hi
    while lo <= hi:
        mid = (lo + hi) // 2
        sq = mid * mid
        if sq == n:
            return mid
        elif sq > n:
            result = mid
            hi = mid - 1
        else:
            lo = mid + 1

    return result
