"""
Quadratic Sieve (single polynomial Q(x) = x^2 - N, x >= ceil(sqrt(N))).

Each stage of the pipeline is a function below, in the order the
orchestrator, quadratic_sieve, calls them:

>   0. trial_division
>   1. select_parameters
>   2. build_factor_base
>   3. solve_roots
>   4. block_sieving
>   5. build_exponent_matrix + find_dependencies
>   6. check_congruences

Giving up is a normal outcome and is returned as [N], never raised.
"""

import sys
import time
from enum import Enum
from typing import Callable, Literal, NamedTuple

import numpy as np
import tqdm

from qsieve.errors import InvalidInput
from qsieve.gf2 import BitMatrix
from qsieve.modular import ceil_isqrt, gcd, is_quadratic_residue, mod_pow, modular_sqrt
from qsieve.primality import SMALL_PRIMES, is_prime_small, is_probable_prime

BLOCK_SIZE = 256
SAFE_INTEGER_LIMIT = 2**53 - 1      # largest exactly representable float integer
SMOOTHNESS_THRESHOLD = 10**8        # below this, sieving is not worth it
DEFAULT_MARGIN = 16                 # relations collected beyond the factor base size

ProgressCallback = Callable[[float], None]

class Stage(Enum):
    TRIAL_DIVISION = "Trial division"
    FACTOR_BASE = "Factor base gen."
    ROOT_SOLVING = "Root solving"
    SIEVING = "Sieving"
    MATRIX = "Matrix assembly"
    KERNEL = "Linear algebra"
    CONGRUENCE = "Subset testing"

class Relation(NamedTuple):
    """a^2 - N == prod(factor_base[i] ** exponents[i])"""
    a: int
    exponents: np.ndarray

def _log(message: str):
    # stderr keeps stdout clean for results; tqdm.write keeps progress bars intact
    tqdm.tqdm.write(message, file=sys.stderr)

def _notify(callback: ProgressCallback|None, value: float):
    """Fire-and-forget notification. The callback cannot break the run."""
    if callback is None:
        return
    try:
        callback(value)
    except Exception as e:
        _log(f"Progress callback failed: {e!r}")

############################
# Step 0: Trial division   #
############################

def trial_division(
        N: int,
        primes: tuple[int, ...]=SMALL_PRIMES,
        smoothness_threshold: int=SMOOTHNESS_THRESHOLD,
        rounds: int=50,
        ) -> list[int]|None:
    """
    Cheap checks that make sieving unnecessary.

    :param N: The integer to be factored, N >= 2.
    :param primes: Small primes to divide N by.
    :param smoothness_threshold: N below this is not sieved.
    :param rounds: Miller-Rabin rounds for the primality check of N.
    :return: [p, N // p] on a hit, [N] if N is not worth sieving (small or prime),
        None if the sieve has to run.
    """
    if N < 2:
        raise InvalidInput(f"N must be at least 2, got {N}")

    for p in primes:
        if p >= N:
            break
        if N % p == 0:
            return [p, N // p]

    # Q(x) hits 0 at x = sqrt(N) for perfect squares
    r = ceil_isqrt(N)
    if r * r == N:
        return [r, r]

    if N < smoothness_threshold:
        return [N]

    # nothing to find in a prime
    if is_probable_prime(N, rounds):
        return [N]

    return None

###############################
# Step 1: Parameter selection #
###############################

def select_parameters(
        N: int,
        factor_base_size: int|Literal["auto"]="auto",
        max_offset: int|Literal["auto"]="auto",
        block_size: int=BLOCK_SIZE,
        ) -> tuple[int, int]:
    """
    Select the factor base size k and the sieving bound for the Quadratic Sieve.

    :param N: The integer to be factored.
    :param factor_base_size: Number of primes in the factor base (or "auto").
    :param max_offset: Sieving stops at offset ceil(sqrt(N)) + max_offset (or "auto").
    :param block_size: Sieving block size.
    :return: Tuple (k, max_offset).
    """
    if factor_base_size == "auto":
        # grows with the bit length L of N: 96 * 2^(L/32)
        factor_base_size = int(2 ** (N.bit_length() / 32) * 96)
    elif isinstance(factor_base_size, str):
        raise InvalidInput("factor_base_size must be an integer or 'auto'")

    if max_offset == "auto":
        max_offset = SAFE_INTEGER_LIMIT - block_size
    elif isinstance(max_offset, str):
        raise InvalidInput("max_offset must be an integer or 'auto'")

    if factor_base_size < 1:
        raise InvalidInput(f"factor_base_size must be positive, got {factor_base_size}")
    if max_offset < 1:
        raise InvalidInput(f"max_offset must be positive, got {max_offset}")

    return int(factor_base_size), int(max_offset)

#############################
# Step 2: Build factor base #
#############################

def build_factor_base(
        N: int,
        size: int,
        prime_limit: int=SAFE_INTEGER_LIMIT,
        include_two: bool=True,
        ) -> list[int]|None:
    """
    Build the factor base: the first `size` primes p for which N is a
    quadratic residue mod p.

    :param N: The integer to be factored.
    :param size: Number of primes wanted.
    :param prime_limit: Largest candidate to look at.
    :param include_two: Whether 2 is part of the factor base.
    :return: List of primes in the factor base, or None if prime_limit
        is reached first.
    """
    factor_base = [2] if include_two and prime_limit >= 2 else []

    candidate = 3
    while len(factor_base) < size:
        if candidate > prime_limit:
            return None
        if is_prime_small(candidate) and is_quadratic_residue(N, candidate):
            factor_base.append(candidate)
        candidate += 2

    return factor_base[:size]

###############################
# Step 3: Solve Q(x) = 0 mod p #
###############################

def solve_roots(N: int, factor_base: list[int], ceil_sqrt_N: int) -> list[tuple[int, ...]]:
    """
    For each p in the factor base, find the offsets t in [0, p) where
    p divides Q(ceil_sqrt_N + t), i.e. ceil_sqrt_N + t ≡ ±sqrt(N) (mod p).

    :return: One tuple of offsets per prime (a single offset when both roots coincide).
    """
    roots = []
    for p in factor_base:
        minus_ceil_sqrt_N = -ceil_sqrt_N % p
        s = modular_sqrt(N, p)
        offsets = {(s + minus_ceil_sqrt_N) % p, (p - s + minus_ceil_sqrt_N) % p}
        roots.append(tuple(sorted(offsets)))
    return roots

#########################
# Step 4: Block sieving #
#########################

def block_sieving(
        N: int,
        factor_base: list[int],
        roots: list[tuple[int, ...]],
        ceil_sqrt_N: int,
        target: int,
        block_size: int=BLOCK_SIZE,
        max_offset: int=SAFE_INTEGER_LIMIT - BLOCK_SIZE,
        progress: ProgressCallback|None=None,
        ) -> list[Relation]:
    """
    Collect B-smooth values of Q(x) = x^2 - N, block by block.

    Within a block, every factor base prime is divided out (with multiplicity)
    at the positions its roots predict. Positions reduced to exactly 1 are smooth.

    :param N: The integer to be factored.
    :param factor_base: List of primes in the factor base.
    :param roots: Sieve-start offsets per prime, from solve_roots.
    :param ceil_sqrt_N: ceil(sqrt(N)), the first x sieved.
    :param target: Stop as soon as this many relations are found.
    :param block_size: Number of consecutive x per block.
    :param max_offset: Give up sieving at this offset from ceil_sqrt_N.
    :param progress: Called with len(relations) / target after each new relation.
    :return: Relations in discovery order. Fewer than target if max_offset was reached.
    """
    k = len(factor_base)
    relations = []

    for offset in range(0, max_offset, block_size):
        x0 = ceil_sqrt_N + offset
        values = [(x0 + i)**2 - N for i in range(block_size)]
        exponents = np.zeros((block_size, k), dtype=np.uint32)

        for idx, p in enumerate(factor_base):
            for start in roots[idx]:
                for i in range((start - offset) % p, block_size, p):
                    v = values[i]
                    e = 0
                    while v != 0 and v % p == 0:
                        v //= p
                        e += 1
                    values[i] = v
                    exponents[i, idx] += e

        for i, v in enumerate(values):
            if v != 1:
                continue
            relations.append(Relation(x0 + i, exponents[i].copy()))
            _notify(progress, len(relations) / target)
            if len(relations) >= target:
                return relations

    return relations

#####################################################
# Step 5: Find sets of Q(x) whose product is square #
#####################################################

def build_exponent_matrix(relations: list[Relation], k: int) -> BitMatrix:
    """
    The k x m exponent-parity matrix: row i is factor base prime i,
    column j is relation j, entry = exponent mod 2.
    """
    if not relations:
        raise InvalidInput("cannot build a matrix without relations")
    A = np.array([exponents for _, exponents in relations], dtype=np.int64).reshape(len(relations), k)
    return BitMatrix.from_array(A.transpose() % 2)

def find_dependencies(matrix: BitMatrix) -> list[np.ndarray]:
    """
    Null space basis of the exponent-parity matrix.

    vec[j] = 1 means include relation j; the selected Q(x) multiply to a square.
    """
    matrix.row_reduction()
    return matrix.get_kernel()

##########################################################################
# Step 6: Test found subsets to see if any generate a non-trivial factor #
##########################################################################

def check_congruences(
        N: int,
        factor_base: list[int],
        relations: list[Relation],
        kernel: list[np.ndarray],
        debug: int=0,
        ) -> list[int]|None:
    """
    Turn each dependency into a congruence of squares X^2 ≡ Y^2 (mod N)
    and try gcd(X - Y, N).

    :return: [p, N // p] for the first non-trivial congruence, None if all are trivial.
    """
    for runs, vec in enumerate(kernel, start=1):
        X = 1
        Y2_exponents = np.zeros(len(factor_base), dtype=np.int64)   # exponent vector for Y²
        for j in np.flatnonzero(vec):
            a, exponents = relations[j]
            X = X * a % N
            Y2_exponents += exponents

        if np.any(Y2_exponents % 2):
            raise ArithmeticError("kernel vector does not select a square")

        # Y² = ∏ p_i^(e_i) with every e_i even, so Y = ∏ p_i^(e_i/2)
        Y = 1
        for p, e in zip(factor_base, Y2_exponents // 2):
            if e:
                Y = Y * mod_pow(p, int(e), N) % N

        if X == Y or X == (N - Y) % N:
            if debug > 1: _log(f"Basis vector {runs}: trivial congruence, skipping")
            continue

        p = gcd(X - Y, N)
        q = gcd(X + Y, N)
        if 1 < p < N and 1 < q < N:
            if debug > 0: _log(f"Found a nontrivial factor after {runs} basis vectors: {p}")
            if debug > 1: _log(f"X = {X}, Y = {Y}")
            return [p, N // p]

    return None

############################
# Timing output            #
############################

def print_timing(timings: list[tuple[Stage|str, float]]):
    """Print the time spent per stage, as recorded by quadratic_sieve(timing=True)."""
    if not timings:
        return
    init_t = prev_t = timings[0][1]
    _log("\nTiming:")
    for stage, t in timings[1:]:
        desc = stage.value if isinstance(stage, Stage) else stage
        _log(f"{desc:<16}: {t - prev_t:.3f} s")
        prev_t = t
    _log(f"Total time taken: {prev_t - init_t:.3f} s\n")

#############################
# Quadratic Sieve algorithm #
#############################

def quadratic_sieve(
        N: int,
        factor_base_size: int|Literal["auto"]="auto",
        margin: int=DEFAULT_MARGIN,
        block_size: int=BLOCK_SIZE,
        max_offset: int|Literal["auto"]="auto",
        prime_limit: int=SAFE_INTEGER_LIMIT,
        include_two: bool=True,
        smoothness_threshold: int=SMOOTHNESS_THRESHOLD,
        rounds: int=50,
        progress: ProgressCallback|None=None,
        debug: int=0,
        timing: bool=False,
        ) -> list[int]:
    """
    Factor N with the single-polynomial Quadratic Sieve.

    :param N: The integer to be factored.
    :param factor_base_size: Number of primes in the factor base (or "auto").
    :param margin: Relations collected beyond the factor base size, at least 1.
        More relations give more dependencies to try.
    :param block_size: Sieving block size.
    :param max_offset: Sieving bound past ceil(sqrt(N)) (or "auto").
    :param prime_limit: Largest prime the factor base may use.
    :param include_two: Whether 2 is part of the factor base.
    :param smoothness_threshold: N below this is only trial divided.
    :param rounds: Miller-Rabin rounds for the primality check of N.
    :param progress: Called with the sieving progress in [0, 1] after each new relation.
    :param debug: Level of debug information (0: none, 1: basic, 2: detailed).
    :param timing: Print the time spent per stage at the end.
    :return: [p, q] with p * q == N and 1 < p, q < N, or [N] when no factor was found.
    """
    if margin < 1:
        raise InvalidInput(f"margin must be at least 1, got {margin}")
    if block_size < 1:
        raise InvalidInput(f"block_size must be positive, got {block_size}")

    timings = []
    def mark(stage):
        if timing: timings.append((stage, time.perf_counter()))

    def finish(result):
        if timing: print_timing(timings)
        return result

    mark("init")

    ### 0 ###
    result = trial_division(N, smoothness_threshold=smoothness_threshold, rounds=rounds)
    mark(Stage.TRIAL_DIVISION)
    if result is not None:
        if debug > 0: _log(f"Trial division: {result}")
        return finish(result)

    if debug > 0: _log(f"Starting quadratic sieve on N = {N} ({N.bit_length()} bits)")

    ### 1 + 2 ###
    k, max_offset = select_parameters(N, factor_base_size, max_offset, block_size)
    factor_base = build_factor_base(N, k, prime_limit, include_two)
    mark(Stage.FACTOR_BASE)
    if factor_base is None:
        if debug > 0: _log(f"Giving up: fewer than {k} factor base primes below {prime_limit}")
        return finish([N])
    if debug > 0:
        _log(f"Size of factor base: {k}, largest prime: {factor_base[-1]}")
        if debug > 1: _log(f"Factor base: {factor_base}")

    ### 3 ###
    ceil_sqrt_N = ceil_isqrt(N)
    roots = solve_roots(N, factor_base, ceil_sqrt_N)
    mark(Stage.ROOT_SOLVING)

    ### 4 ###
    target = k + margin
    relations = block_sieving(N, factor_base, roots, ceil_sqrt_N, target, block_size, max_offset, progress)
    mark(Stage.SIEVING)
    if debug > 0:
        _log(f"Sieving done: {len(relations)} B-smooth values of Q(x)")
        if debug > 1:
            for a, exponents in relations:
                _log(f"a={a}, exponents={exponents.tolist()}")
    if len(relations) < target:
        if debug > 0: _log(f"Giving up: sieving bound {max_offset} reached with {len(relations)}/{target} relations")
        return finish([N])

    ### 5 ###
    A = build_exponent_matrix(relations, k)
    mark(Stage.MATRIX)
    if debug > 1: _log(f"Exponent matrix A (mod 2):\n{A}")
    original = A.copy() if debug > 0 else None
    kernel = find_dependencies(A)
    mark(Stage.KERNEL)
    if debug > 0:
        _log(f"Matrix: {k} x {len(relations)}, rank = {A.rank}, nontrivial dependencies: {len(kernel)}")
        # Verify nullspace basis vectors against the unreduced matrix
        for vec in kernel:
            if np.any(original.dot(vec)):
                raise ArithmeticError("nullspace basis vector does not satisfy A v = 0 (mod 2)")
        if debug > 1:
            for vec in kernel:
                _log(f"Basis vector: {vec.tolist()}")

    ### 6 ###
    result = check_congruences(N, factor_base, relations, kernel, debug)
    mark(Stage.CONGRUENCE)
    if result is None:
        if debug > 0: _log(f"Giving up: tried all {len(kernel)} basis vectors, no nontrivial factor")
        return finish([N])

    return finish(result)
