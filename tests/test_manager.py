import asyncio

import pytest

from txgate.exception import ErrorKind, PoolError, StatementError
from txgate.transaction import (
    CommitFailed,
    TransactionLimitReached,
    TransactionManager,
    TransactionNotFound,
    TransactionState,
)

UPDATE = "UPDATE accounts SET balance=balance-10 WHERE id=1"


async def test_begin_registers_transaction(manager, pool, clock):
    transaction, result = await manager.begin(UPDATE)

    assert transaction.handle.startswith("txn_")
    assert transaction.state is TransactionState.ACTIVE
    assert transaction.expires_at == clock.now + 10.0
    assert result.row_count == 1
    assert result.command == "UPDATE"
    assert manager.active_count == 1
    assert pool.connections[0].statements == ["BEGIN", UPDATE]
    assert pool.released == []


async def test_begin_with_timeout_override(manager, clock):
    transaction, _ = await manager.begin(UPDATE, timeout=0.05)

    assert transaction.expires_at == clock.now + 0.05


async def test_begin_then_commit(manager, pool):
    transaction, _ = await manager.begin(UPDATE)

    await manager.commit(transaction.handle)

    assert manager.active_count == 0
    assert transaction.state is TransactionState.COMMITTED
    assert pool.connections[0].statements == ["BEGIN", UPDATE, "COMMIT"]
    pool.assert_released_once()
    assert manager.statistics["committed"] == 1


async def test_begin_then_rollback(manager, pool):
    transaction, _ = await manager.begin(UPDATE)

    await manager.rollback(transaction.handle)

    assert manager.active_count == 0
    assert transaction.state is TransactionState.ROLLED_BACK
    assert pool.connections[0].statements == ["BEGIN", UPDATE, "ROLLBACK"]
    pool.assert_released_once()


@pytest.mark.parametrize("operation", ("commit", "rollback"))
async def test_unknown_handle_not_found(manager, pool, operation):
    await manager.begin(UPDATE)

    with pytest.raises(TransactionNotFound) as info:
        await getattr(manager, operation)("txn_missing")

    assert info.value.kind is ErrorKind.NOT_FOUND
    assert manager.active_count == 1
    assert pool.released == []


async def test_second_commit_not_found(manager, pool):
    transaction, _ = await manager.begin(UPDATE)
    await manager.commit(transaction.handle)

    with pytest.raises(TransactionNotFound):
        await manager.commit(transaction.handle)
    with pytest.raises(TransactionNotFound):
        await manager.rollback(transaction.handle)

    pool.assert_released_once()


async def test_limit_reached_without_touching_pool(pool, clock):
    manager = TransactionManager(pool, max_concurrent=1, clock=clock)
    await manager.begin("UPDATE a SET x = 1")

    with pytest.raises(TransactionLimitReached) as info:
        await manager.begin("UPDATE b SET x = 1")

    assert info.value.kind is ErrorKind.RESOURCE_EXHAUSTED
    assert manager.active_count == 1
    assert len(pool.connections) == 1
    assert manager.statistics["rejected"] == 1


async def test_limit_holds_for_overlapping_begins(pool, clock):
    manager = TransactionManager(pool, max_concurrent=2, clock=clock)

    results = await asyncio.gather(
        *(manager.begin(f"UPDATE t SET x = {i}") for i in range(3)),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], TransactionLimitReached)
    assert manager.active_count == 2
    assert len(pool.connections) == 2
    assert manager.registry.pending == 0


async def test_handles_are_unique(manager):
    handles = set()
    for _ in range(3):
        transaction, _ = await manager.begin(UPDATE)
        handles.add(transaction.handle)

    assert len(handles) == 3


async def test_statement_failure_rolls_back(manager, pool):
    pool.failures["UPDATE nope"] = StatementError("relation does not exist")

    with pytest.raises(StatementError) as info:
        await manager.begin("UPDATE nope")

    assert info.value.kind is ErrorKind.STATEMENT_ERROR
    assert manager.active_count == 0
    assert manager.registry.pending == 0
    assert pool.connections[0].statements == [
        "BEGIN",
        "UPDATE nope",
        "ROLLBACK",
    ]
    pool.assert_released_once()


async def test_begin_failure_is_connection_error(manager, pool):
    pool.failures["BEGIN"] = StatementError("server closed the connection")

    with pytest.raises(PoolError) as info:
        await manager.begin(UPDATE)

    assert info.value.kind is ErrorKind.CONNECTION_ERROR
    assert manager.active_count == 0
    pool.assert_released_once()


async def test_checkout_failure(manager, pool):
    pool.checkout_error = PoolError("could not connect")

    with pytest.raises(PoolError):
        await manager.begin(UPDATE)

    assert manager.active_count == 0
    assert manager.registry.pending == 0
    assert pool.released == []


async def test_commit_failure_rolls_back_and_releases(manager, pool):
    transaction, _ = await manager.begin(UPDATE)
    pool.failures["COMMIT"] = StatementError("serialization failure")

    with pytest.raises(CommitFailed) as info:
        await manager.commit(transaction.handle)

    assert info.value.kind is ErrorKind.COMMIT_FAILED
    assert transaction.state is TransactionState.ROLLED_BACK
    assert manager.active_count == 0
    assert pool.connections[0].statements[-2:] == ["COMMIT", "ROLLBACK"]
    pool.assert_released_once()
    assert manager.statistics["commit_failed"] == 1


async def test_commit_failure_with_failing_rollback(manager, pool):
    transaction, _ = await manager.begin(UPDATE)
    pool.failures["COMMIT"] = StatementError("connection lost")
    pool.failures["ROLLBACK"] = StatementError("connection lost")

    with pytest.raises(CommitFailed):
        await manager.commit(transaction.handle)

    assert manager.active_count == 0
    pool.assert_released_once()


async def test_rollback_releases_when_statement_fails(manager, pool):
    transaction, _ = await manager.begin(UPDATE)
    pool.failures["ROLLBACK"] = StatementError("connection lost")

    await manager.rollback(transaction.handle)

    assert manager.active_count == 0
    pool.assert_released_once()


async def test_sweep_only_expired(manager, pool, clock):
    short, _ = await manager.begin(UPDATE, timeout=5.0)
    default, _ = await manager.begin(UPDATE)

    clock.advance(4.0)
    assert await manager.sweep() == []

    clock.advance(1.0)
    assert await manager.sweep() == [short.handle]
    assert manager.active_count == 1
    assert short.state is TransactionState.ROLLED_BACK
    assert pool.connections[0].statements[-1] == "ROLLBACK"

    clock.advance(5.0)
    assert await manager.sweep() == [default.handle]
    assert manager.active_count == 0
    assert manager.statistics["swept"] == 2
    pool.assert_released_once()


async def test_commit_after_sweep_not_found(manager, clock):
    transaction, _ = await manager.begin(UPDATE, timeout=0.05)
    clock.advance(0.1)
    await manager.sweep()

    with pytest.raises(TransactionNotFound):
        await manager.commit(transaction.handle)


@pytest.mark.parametrize("commit_first", (True, False))
async def test_commit_racing_sweep(manager, pool, clock, commit_first):
    transaction, _ = await manager.begin(UPDATE)
    clock.advance(60)

    commit = manager.commit(transaction.handle)
    sweep = manager.sweep()
    calls = (commit, sweep) if commit_first else (sweep, commit)
    results = await asyncio.gather(*calls, return_exceptions=True)
    if not commit_first:
        results = results[::-1]
    commit_result, swept = results

    if commit_first:
        assert commit_result is None
        assert swept == []
    else:
        assert isinstance(commit_result, TransactionNotFound)
        assert swept == [transaction.handle]
    assert manager.active_count == 0
    pool.assert_released_once()


async def test_sweep_skips_handle_claimed_after_scan(
    manager, pool, clock, monkeypatch
):
    transaction, _ = await manager.begin(UPDATE)
    clock.advance(60)
    await manager.rollback(transaction.handle)
    monkeypatch.setattr(
        manager.registry, "expired", lambda now: [transaction.handle]
    )

    assert await manager.sweep() == []
    pool.assert_released_once()


async def test_cleanup_all(manager, pool):
    first, _ = await manager.begin(UPDATE)
    await manager.begin(UPDATE)

    assert await manager.cleanup_all() == 2

    assert manager.active_count == 0
    assert manager.is_closed
    pool.assert_released_once()
    assert all(c.statements[-1] == "ROLLBACK" for c in pool.connections)
    with pytest.raises(TransactionNotFound):
        await manager.commit(first.handle)
    with pytest.raises(PoolError):
        await manager.begin(UPDATE)


async def test_begin_in_flight_during_cleanup(manager, pool):
    gate = asyncio.Event()
    pool.gates[UPDATE] = gate
    begin = asyncio.create_task(manager.begin(UPDATE))
    while not pool.connections or UPDATE not in pool.connections[0].statements:
        await asyncio.sleep(0)

    assert await manager.cleanup_all() == 0
    gate.set()

    with pytest.raises(PoolError):
        await begin
    assert manager.active_count == 0
    assert manager.registry.pending == 0
    assert pool.connections[0].statements == ["BEGIN", UPDATE, "ROLLBACK"]
    pool.assert_released_once()
