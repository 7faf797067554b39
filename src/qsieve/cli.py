"""
Command line front end.

> python -m qsieve factor -n 1000036000099
> python -m qsieve factor -b 48 -v
> python -m qsieve gen_composite -b 64
"""

import argparse
import sys

from qsieve.sieve import DEFAULT_MARGIN, quadratic_sieve
from qsieve.worker import TqdmProgress

def getComposite(bits: int) -> int:
    """Random N = p * q with p, q primes of about bits/2 bits each."""
    import Crypto.Util.number as number

    _validate_bits(bits)

    p = number.getPrime(bits//2)
    q = number.getPrime(bits//2 + (1 if bits % 2 else 0))
    N = p * q
    print(f"Generated {bits}-bit / {len(str(N))}-digit composite\n| {N} = \n| {p} \n|  * \n| {q}", file=sys.stderr)
    return N

def _validate_bits(bits: int):
    if 6 < bits < 150:
        pass  # reasonable
    elif 150 <= bits <= 4096:
        print(f"Warning! {bits} bits are a lot. This computation may never complete!", file=sys.stderr)
    else:
        raise ValueError("Error: --bits must be at least 7, and not too large.")

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qsieve", description="Factor an integer with the quadratic sieve.")
    parser.add_argument("mode", nargs="?", default="factor", choices=["factor", "gen_composite"],
                        help="'factor' to factor a number, 'gen_composite' to generate a composite number N = p*q.")
    parser.add_argument("-b", "--bits", type=int, default=None,
                        help="Number of bits of the composite number to generate (and factor, incompatible with --number).")
    parser.add_argument("-n", "-N", "--number", type=int, default=None,
                        help="Composite number to factor.")
    parser.add_argument("-F", "--factor-base-size", type=int, default=None,
                        help="Manually set the number of primes in the factor base.")
    parser.add_argument("-m", "--margin", type=int, default=DEFAULT_MARGIN,
                        help="Relations to collect beyond the factor base size.")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug level 1.")
    parser.add_argument("-vv", "--very-verbose", action="store_true",
                        help="Debug level 2.")
    parser.add_argument("-t", "--timing", action="store_true",
                        help="Print the time spent per stage.")
    parser.add_argument("--no-progress", action="store_true",
                        help="Do not draw a progress bar while sieving.")
    return parser

def main(argv: list[str]|None=None) -> int:
    args = _parser().parse_args(argv)

    if args.mode == "gen_composite":
        if args.bits is None:
            print("Error: pass --bits to use this mode!", file=sys.stderr)
            return 1
        print(getComposite(args.bits))
        return 0

    if args.number is not None and args.bits is not None:
        print("Error: --number and --bits are mutually exclusive.", file=sys.stderr)
        return 1
    if args.number is None and args.bits is None:
        print("Error: One of --number or --bits must be specified.", file=sys.stderr)
        return 1

    try:
        N = args.number if args.number is not None else getComposite(args.bits)
    except ValueError as e:
        print(e, file=sys.stderr)
        return 1
    if N < 2:
        print("Error: N must be at least 2.", file=sys.stderr)
        return 1

    debug = 2 if args.very_verbose else (1 if args.verbose else 0)
    kwargs = {}
    if args.factor_base_size is not None:
        kwargs["factor_base_size"] = args.factor_base_size

    progress = None if args.no_progress else TqdmProgress()
    try:
        result = quadratic_sieve(N, margin=args.margin, progress=progress, debug=debug, timing=args.timing, **kwargs)
    finally:
        if progress is not None: progress.close()

    print(" ".join(str(f) for f in result))
    if len(result) == 2:
        return 0
    print("Factorization failed! Try a larger factor base or margin.", file=sys.stderr)
    return 1
