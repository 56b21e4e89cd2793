import random
from decimal import Decimal

import pytest

from custody.solana.units import LAMPORTS_PER_SOL, lamports_to_sol, sol_to_lamports


def test_whole_and_fractional_sol():
    assert sol_to_lamports(1) == LAMPORTS_PER_SOL
    assert sol_to_lamports(0.29) == 290_000_000
    assert sol_to_lamports("0.000000001") == 1
    assert lamports_to_sol(1_500_000_000) == 1.5


def test_sub_lamport_amounts_are_floored():
    assert sol_to_lamports(Decimal("0.0000000019")) == 1
    assert sol_to_lamports("1.9999999999") == 1_999_999_999


def test_negative_sol_rejected():
    with pytest.raises(ValueError):
        sol_to_lamports(-0.5)


def test_round_trip_with_nine_decimals():
    rng = random.Random(42)
    for _ in range(5000):
        lamports = rng.randrange(0, 10**14)
        sol = float(f"{lamports / LAMPORTS_PER_SOL:.9f}")
        assert lamports_to_sol(sol_to_lamports(sol)) == sol


@pytest.mark.parametrize("sol", [0.0, 0.1, 0.2, 0.3, 0.29, 1.1, 2.675, 123.456789012])
def test_round_trip_known_values(sol):
    assert lamports_to_sol(sol_to_lamports(sol)) == sol
