"""
PostgreSQL-backed deposit request store.

Provides deposit persistence, per-address sweep locking, and schema setup.
"""
from custody.deposits.store import (
    reserve_derivation_index,
    insert_deposit_request,
    get_deposit_request,
    mark_payment_verified,
    mark_sweep_in_progress,
    record_sweep_result,
    mark_sweep_interrupted,
    get_deposits_needing_sweep,
    get_unverified_deposits,
    to_deposit_model,
)
from custody.deposits.locks import (
    acquire_sweep_lock,
    release_sweep_lock,
)
from custody.deposits.schema import (
    init_database,
)

__all__ = [
    # Deposits
    'reserve_derivation_index',
    'insert_deposit_request',
    'get_deposit_request',
    'mark_payment_verified',
    'mark_sweep_in_progress',
    'record_sweep_result',
    'mark_sweep_interrupted',
    'get_deposits_needing_sweep',
    'get_unverified_deposits',
    'to_deposit_model',
    # Locks
    'acquire_sweep_lock',
    'release_sweep_lock',
    # Schema
    'init_database',
]
