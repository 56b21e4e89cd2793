import pytest

from custody.errors import RpcError, RpcRateLimitError
from custody.solana.model import VerificationOutcome
from custody.solana.verifier import PaymentVerifier, find_transfer_to

from conftest import signature, transfer_tx

ADDRESS = "Dep0sit111111111111111111111111111111111111"


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def verifier(fake_ledger, clock, sleep):
    return PaymentVerifier(fake_ledger, sleep=sleep, clock=clock)


@pytest.mark.asyncio
async def test_insufficient_balance(verifier, fake_ledger):
    fake_ledger.balances[ADDRESS] = 500

    result = await verifier.verify_payment(ADDRESS, 1000)

    assert result.verified is False
    assert result.amount_received == 500
    assert result.transaction_signature is None
    assert result.outcome == VerificationOutcome.INSUFFICIENT
    assert fake_ledger.calls["get_signatures_for_address"] == 0


@pytest.mark.asyncio
async def test_matching_transfer(verifier, fake_ledger):
    fake_ledger.balances[ADDRESS] = 1500
    fake_ledger.signatures[ADDRESS] = [signature("S")]
    fake_ledger.transactions["S"] = transfer_tx(ADDRESS, 1500)

    result = await verifier.verify_payment(ADDRESS, 1000)

    assert result.verified is True
    assert result.transaction_signature == "S"
    assert result.amount_received == 1500
    assert result.outcome == VerificationOutcome.MATCHED_TRANSFER


@pytest.mark.asyncio
async def test_failed_and_unrelated_transactions_are_skipped(verifier, fake_ledger):
    fake_ledger.balances[ADDRESS] = 3000
    fake_ledger.signatures[ADDRESS] = [
        signature("failed", err={"InstructionError": [0, "Custom"]}),
        signature("elsewhere"),
        signature("too-small"),
        signature("missing"),
        signature("good"),
    ]
    fake_ledger.transactions.update({
        "failed": transfer_tx(ADDRESS, 5000),
        "elsewhere": transfer_tx("Other1111111111111111111111111111111111111", 5000),
        "too-small": transfer_tx(ADDRESS, 999),
        "good": transfer_tx(ADDRESS, 2000),
    })

    result = await verifier.verify_payment(ADDRESS, 1000)

    assert result.transaction_signature == "good"
    assert result.amount_received == 2000
    # The failed signature is never fetched
    assert fake_ledger.calls["get_parsed_transaction"] == 4


@pytest.mark.asyncio
async def test_most_recent_match_wins(verifier, fake_ledger):
    fake_ledger.balances[ADDRESS] = 4000
    fake_ledger.signatures[ADDRESS] = [signature("newest"), signature("older")]
    fake_ledger.transactions.update({
        "newest": transfer_tx(ADDRESS, 2000),
        "older": transfer_tx(ADDRESS, 2000),
    })

    result = await verifier.verify_payment(ADDRESS, 1000)

    assert result.transaction_signature == "newest"


@pytest.mark.asyncio
async def test_balance_fallback_for_partial_transfers(verifier, fake_ledger):
    fake_ledger.balances[ADDRESS] = 1000
    fake_ledger.signatures[ADDRESS] = [signature("part-2"), signature("part-1")]
    fake_ledger.transactions.update({
        "part-2": transfer_tx(ADDRESS, 400),
        "part-1": transfer_tx(ADDRESS, 600),
    })

    result = await verifier.verify_payment(ADDRESS, 1000)

    assert result.verified is True
    assert result.transaction_signature == "part-2"
    assert result.amount_received == 1000
    assert result.outcome == VerificationOutcome.BALANCE_FALLBACK


@pytest.mark.asyncio
async def test_balance_fallback_without_history(verifier, fake_ledger):
    fake_ledger.balances[ADDRESS] = 1000

    result = await verifier.verify_payment(ADDRESS, 1000)

    assert result.verified is True
    assert result.transaction_signature is None
    assert result.outcome == VerificationOutcome.BALANCE_FALLBACK


@pytest.mark.asyncio
async def test_cache_returns_identical_result_without_rpc(verifier, fake_ledger, clock):
    fake_ledger.balances[ADDRESS] = 1500
    fake_ledger.signatures[ADDRESS] = [signature("S")]
    fake_ledger.transactions["S"] = transfer_tx(ADDRESS, 1500)

    first = await verifier.verify_payment(ADDRESS, 1000)
    calls_after_first = sum(fake_ledger.calls.values())
    clock.now += 4.9
    second = await verifier.verify_payment(ADDRESS, 1000)

    assert second == first
    assert sum(fake_ledger.calls.values()) == calls_after_first


@pytest.mark.asyncio
async def test_cache_expires_after_window(verifier, fake_ledger, clock):
    fake_ledger.balances[ADDRESS] = 500
    await verifier.verify_payment(ADDRESS, 1000)

    fake_ledger.balances[ADDRESS] = 1000
    clock.now += 5.0
    result = await verifier.verify_payment(ADDRESS, 1000)

    assert result.verified is True
    assert fake_ledger.calls["get_balance"] == 2


@pytest.mark.asyncio
async def test_cache_is_keyed_by_expected_amount(verifier, fake_ledger):
    fake_ledger.balances[ADDRESS] = 700

    assert (await verifier.verify_payment(ADDRESS, 1000)).verified is False
    assert (await verifier.verify_payment(ADDRESS, 500)).verified is True
    assert fake_ledger.calls["get_balance"] == 2


@pytest.mark.asyncio
async def test_rpc_failure_reported_as_unverified(verifier, fake_ledger):
    fake_ledger.balance_error = RpcError("getBalance failed: node is behind")

    result = await verifier.verify_payment(ADDRESS, 1000)

    assert result.verified is False
    assert result.amount_received == 0
    assert result.outcome == VerificationOutcome.RPC_FAILURE

    # Failures are not cached
    fake_ledger.balance_error = None
    fake_ledger.balances[ADDRESS] = 1000
    assert (await verifier.verify_payment(ADDRESS, 1000)).verified is True


@pytest.mark.asyncio
async def test_backoff_retries_rate_limits_then_succeeds(verifier, fake_ledger, sleep):
    fake_ledger.balances[ADDRESS] = 500
    fake_ledger.rate_limited_calls = 2

    result = await verifier.verify_payment_with_backoff(ADDRESS, 1000)

    assert result.amount_received == 500
    assert fake_ledger.calls["get_balance"] == 3
    assert sleep.delays == [1, 2]


@pytest.mark.asyncio
async def test_backoff_gives_up_after_schedule(verifier, fake_ledger, sleep):
    fake_ledger.rate_limited_calls = 100

    with pytest.raises(RpcRateLimitError):
        await verifier.verify_payment_with_backoff(ADDRESS, 1000)

    assert fake_ledger.calls["get_balance"] == 6
    assert sleep.delays == [1, 2, 4, 8, 15]


@pytest.mark.asyncio
async def test_backoff_does_not_retry_other_errors(verifier, fake_ledger, sleep):
    fake_ledger.balance_error = RpcError("getBalance failed with HTTP 500", code=500)

    with pytest.raises(RpcError):
        await verifier.verify_payment_with_backoff(ADDRESS, 1000)

    assert fake_ledger.calls["get_balance"] == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_backoff_shares_cache(verifier, fake_ledger):
    fake_ledger.balances[ADDRESS] = 1200

    first = await verifier.verify_payment_with_backoff(ADDRESS, 1000)
    second = await verifier.verify_payment(ADDRESS, 1000)
    third = await verifier.verify_payment_with_backoff(ADDRESS, 1000)

    assert first == second == third
    assert fake_ledger.calls["get_balance"] == 1


def test_find_transfer_ignores_non_system_instructions():
    tx = transfer_tx(ADDRESS, 5000)
    tx["transaction"]["message"]["instructions"][0]["program"] = "spl-token"
    tx["transaction"]["message"]["instructions"].append(
        {"programId": "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr", "data": "abc"}
    )

    assert find_transfer_to(tx, ADDRESS, 1000) is None


def test_find_transfer_tolerates_null_payload_fields():
    assert find_transfer_to({"transaction": None}, ADDRESS, 1000) is None
    assert find_transfer_to({"transaction": {"message": None}}, ADDRESS, 1000) is None
    null_info = {"program": "system", "parsed": {"type": "transfer", "info": None}}
    tx = {"transaction": {"message": {"instructions": [None, null_info]}}}
    assert find_transfer_to(tx, ADDRESS, 1000) is None


@pytest.mark.asyncio
async def test_expired_cache_entries_are_pruned(verifier, fake_ledger, clock):
    fake_ledger.balances[ADDRESS] = 500
    for amount in (1000, 2000, 3000):
        await verifier.verify_payment(ADDRESS, amount)
    assert len(verifier._cache) == 3

    clock.now += 5.0
    await verifier.verify_payment("Other1111111111111111111111111111111111111", 1000)

    assert list(verifier._cache) == [("Other1111111111111111111111111111111111111", 1000)]
