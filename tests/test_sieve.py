import math

import numpy as np
import pytest
from Crypto.Util.number import getPrime
from sympy import isprime, legendre_symbol

import qsieve.sieve as sieve
from qsieve.errors import InvalidInput
from qsieve.modular import ceil_isqrt
from qsieve.sieve import (
    SAFE_INTEGER_LIMIT, Relation, block_sieving, build_exponent_matrix,
    build_factor_base, check_congruences, find_dependencies, quadratic_sieve,
    select_parameters, solve_roots, trial_division,
)

P, Q = 1000003, 1000033
N = P * Q   # 40 bits, both factors beyond the trial division table

def assert_valid_result(N, result):
    if len(result) == 1:
        assert result == [N]
    else:
        p, q = result
        assert p * q == N
        assert 1 < p < N and 1 < q < N

@pytest.fixture(scope="module")
def pipeline():
    """Factor base, roots and relations for N, shared by the stage tests."""
    k, _ = select_parameters(N, factor_base_size=60)
    factor_base = build_factor_base(N, k)
    c = ceil_isqrt(N)
    roots = solve_roots(N, factor_base, c)
    relations = block_sieving(N, factor_base, roots, c, target=k + 10)
    return factor_base, c, roots, relations

###########################
# Step 0: Trial division  #
###########################

class TestTrialDivision:

    def test_small_factor(self):
        assert trial_division(77) == [7, 11]
        assert trial_division(2 * N) == [2, N]
        assert trial_division(9973 * N) == [9973, N]

    def test_small_prime_and_small_n(self):
        assert trial_division(7) == [7]
        assert trial_division(2) == [2]
        assert trial_division(10007 * 10009, smoothness_threshold=10**9) == [10007 * 10009]

    def test_perfect_square(self):
        assert trial_division(P * P) == [P, P]
        assert trial_division(4) == [2, 2]

    def test_large_prime(self):
        assert trial_division(1000000007) == [1000000007]
        assert trial_division(2**61 - 1) == [2**61 - 1]

    def test_needs_sieve(self):
        assert trial_division(N) is None
        assert trial_division(10007 * 10009) is None

    @pytest.mark.parametrize("n", [1, 0, -15])
    def test_invalid(self, n):
        with pytest.raises(InvalidInput):
            trial_division(n)

###############################
# Step 1: Parameter selection #
###############################

def test_select_parameters_auto():
    k, max_offset = select_parameters(N)
    assert k == int(2 ** (N.bit_length() / 32) * 96)
    assert max_offset == SAFE_INTEGER_LIMIT - 256
    assert select_parameters(2**200)[0] == int(2 ** (201 / 32) * 96)

def test_select_parameters_manual():
    assert select_parameters(N, factor_base_size=50, max_offset=1024) == (50, 1024)

@pytest.mark.parametrize("kwargs", [
    {"factor_base_size": 0},
    {"factor_base_size": "many"},
    {"max_offset": 0},
    {"max_offset": "far"},
])
def test_select_parameters_invalid(kwargs):
    with pytest.raises(InvalidInput):
        select_parameters(N, **kwargs)

#############################
# Step 2: Build factor base #
#############################

class TestFactorBase:

    def test_properties(self):
        factor_base = build_factor_base(N, 100)
        assert len(factor_base) == 100
        assert factor_base[0] == 2
        assert all(a < b for a, b in zip(factor_base, factor_base[1:]))
        for p in factor_base[1:]:
            assert isprime(p)
            assert legendre_symbol(N % p, p) == 1

    def test_without_two(self):
        factor_base = build_factor_base(N, 20, include_two=False)
        assert len(factor_base) == 20
        assert 2 not in factor_base

    def test_skips_divisors_of_n(self):
        # 3 divides M, so M is no quadratic residue (symbol 0) mod 3
        M = 3 * N
        assert 3 not in build_factor_base(M, 30)

    def test_ceiling_exhausted(self):
        assert build_factor_base(N, 100, prime_limit=50) is None

    def test_ceiling_just_enough(self):
        factor_base = build_factor_base(N, 10)
        assert build_factor_base(N, 10, prime_limit=factor_base[-1]) == factor_base

######################
# Step 3: Root solving #
######################

def test_solve_roots(pipeline):
    factor_base, c, roots, _ = pipeline
    assert len(roots) == len(factor_base)
    assert roots[0] == ((1 - c) % 2,)
    for p, offsets in zip(factor_base, roots):
        assert 1 <= len(offsets) <= 2
        for t in offsets:
            assert 0 <= t < p
            assert ((c + t)**2 - N) % p == 0
        if p > 2:
            assert len(offsets) == 2

##########################
# Step 4: Block sieving  #
##########################

class TestBlockSieving:

    def test_relations_are_smooth(self, pipeline):
        factor_base, c, _, relations = pipeline
        assert len(relations) == len(factor_base) + 10
        for a, exponents in relations:
            assert a >= c
            assert len(exponents) == len(factor_base)
            assert a * a - N == math.prod(p ** int(e) for p, e in zip(factor_base, exponents))

    def test_discovery_order(self, pipeline):
        _, _, _, relations = pipeline
        a_values = [r.a for r in relations]
        assert a_values == sorted(set(a_values))

    def test_progress(self):
        factor_base = build_factor_base(N, 40)
        c = ceil_isqrt(N)
        roots = solve_roots(N, factor_base, c)
        seen = []
        relations = block_sieving(N, factor_base, roots, c, target=45, progress=seen.append)
        assert len(seen) == len(relations) == 45
        assert seen == sorted(seen)
        assert seen[-1] == 1.0
        assert all(0 < r <= 1 for r in seen)

    def test_bound_reached(self):
        factor_base = build_factor_base(N, 40)
        c = ceil_isqrt(N)
        roots = solve_roots(N, factor_base, c)
        relations = block_sieving(N, factor_base, roots, c, target=10**6, max_offset=512)
        assert len(relations) < 512
        assert all(r.a < c + 512 for r in relations)

    def test_block_size_does_not_matter(self):
        factor_base = build_factor_base(N, 40)
        c = ceil_isqrt(N)
        roots = solve_roots(N, factor_base, c)
        a = block_sieving(N, factor_base, roots, c, target=30, block_size=256)
        b = block_sieving(N, factor_base, roots, c, target=30, block_size=37)
        assert [r.a for r in a] == [r.a for r in b]
        assert all(np.array_equal(x.exponents, y.exponents) for x, y in zip(a, b))

###############################
# Step 5 and 6: Linear algebra #
###############################

class TestDependencies:

    def test_exponent_matrix(self, pipeline):
        factor_base, _, _, relations = pipeline
        A = build_exponent_matrix(relations, len(factor_base))
        assert A.size == (len(factor_base), len(relations))
        for j, (_, exponents) in enumerate(relations):
            assert A.get_column(j).tolist() == (np.asarray(exponents) % 2).tolist()

    def test_exponent_matrix_needs_relations(self):
        with pytest.raises(InvalidInput):
            build_exponent_matrix([], 5)

    def test_dependencies_select_squares(self, pipeline):
        factor_base, _, _, relations = pipeline
        kernel = find_dependencies(build_exponent_matrix(relations, len(factor_base)))
        assert len(kernel) >= 10
        for vec in kernel:
            total = sum(relations[j].exponents.astype(np.int64) for j in np.flatnonzero(vec))
            assert not (total % 2).any()

    def test_check_congruences(self, pipeline):
        factor_base, _, _, relations = pipeline
        kernel = find_dependencies(build_exponent_matrix(relations, len(factor_base)))
        result = check_congruences(N, factor_base, relations, kernel)
        assert_valid_result(N, result)
        assert sorted(result) == [P, Q]

    def test_check_congruences_all_trivial(self):
        # 10^2 - 91 = 9 = 3^2 gives X = 10, Y = 3 and gcd(7, 91) = 7 ...
        relations = [Relation(10, np.array([0, 2]))]
        assert check_congruences(91, [2, 3], relations, [np.array([1])]) == [7, 13]
        # ... while X = Y is trivial
        relations = [Relation(3, np.array([0, 2]))]
        assert check_congruences(91, [2, 3], relations, [np.array([1])]) is None
        assert check_congruences(91, [2, 3], relations, []) is None

    def test_check_congruences_rejects_odd_selection(self):
        relations = [Relation(10, np.array([1, 0]))]
        with pytest.raises(ArithmeticError):
            check_congruences(91, [2, 3], relations, [np.array([1])])

###############################
# Quadratic Sieve, end to end #
###############################

class TestQuadraticSieve:

    def test_trial_division_only(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("sieve must not run")
        monkeypatch.setattr(sieve, "block_sieving", fail)
        monkeypatch.setattr(sieve, "build_factor_base", fail)
        assert quadratic_sieve(77) == [7, 11]
        assert quadratic_sieve(7) == [7]

    def test_semiprime(self):
        assert isprime(P) and isprime(Q)
        result = quadratic_sieve(N)
        assert_valid_result(N, result)
        assert sorted(result) == [P, Q]

    def test_small_semiprime(self):
        result = quadratic_sieve(10007 * 10009)
        assert sorted(result) == [10007, 10009]

    def test_random_semiprimes(self):
        for _ in range(3):
            p, q = getPrime(20), getPrime(20)
            result = quadratic_sieve(p * q)
            assert_valid_result(p * q, result)
            if p != q:
                assert sorted(result) == sorted([p, q])

    def test_repeated_runs_are_valid(self):
        for _ in range(3):
            assert_valid_result(N, quadratic_sieve(N, margin=1))

    def test_three_factors(self):
        M = 10007 * 10009 * 10037
        result = quadratic_sieve(M)
        assert_valid_result(M, result)

    def test_prime_gives_up(self):
        assert quadratic_sieve(1000000007) == [1000000007]

    def test_factor_base_ceiling_gives_up(self):
        assert quadratic_sieve(N, prime_limit=50) == [N]

    def test_sieving_bound_gives_up(self):
        assert quadratic_sieve(N, max_offset=256) == [N]

    def test_no_dependencies_gives_up(self, monkeypatch):
        monkeypatch.setattr(sieve, "find_dependencies", lambda matrix: [])
        assert quadratic_sieve(N) == [N]

    @pytest.mark.parametrize("kwargs", [{"margin": 0}, {"block_size": 0}])
    def test_invalid_parameters(self, kwargs):
        with pytest.raises(InvalidInput):
            quadratic_sieve(N, **kwargs)

    def test_progress_callback(self):
        seen = []
        result = quadratic_sieve(N, factor_base_size=60, margin=4, progress=seen.append)
        assert_valid_result(N, result)
        assert len(seen) == 64
        assert seen[-1] == 1.0

    def test_broken_progress_callback(self, capsys):
        def broken(ratio):
            raise RuntimeError("listener gone")
        result = quadratic_sieve(N, factor_base_size=60, progress=broken)
        assert sorted(result) == [P, Q]
        assert "listener gone" in capsys.readouterr().err

    def test_debug_and_timing_output(self, capsys):
        result = quadratic_sieve(N, factor_base_size=60, debug=2, timing=True)
        assert sorted(result) == [P, Q]
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Size of factor base: 60" in captured.err
        assert "rank =" in captured.err
        assert "Timing:" in captured.err
        assert "Sieving" in captured.err
