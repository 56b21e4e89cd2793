"""SOL/lamport conversion helpers."""
from decimal import Decimal, ROUND_FLOOR
from typing import Union

LAMPORTS_PER_SOL = 1_000_000_000


def sol_to_lamports(sol: Union[int, float, str, Decimal]) -> int:
    """
    Convert SOL to lamports, flooring any sub-lamport remainder.

    The amount goes through its decimal representation so that e.g. 0.29 SOL
    becomes exactly 290000000 lamports instead of 289999999.
    """
    amount = sol if isinstance(sol, Decimal) else Decimal(str(sol))
    if amount < 0:
        raise ValueError(f"SOL amount must be non-negative, got {sol}")
    return int((amount * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_FLOOR))


def lamports_to_sol(lamports: int) -> float:
    """Convert lamports to SOL."""
    return lamports / LAMPORTS_PER_SOL
