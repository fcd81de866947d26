"""Integration tests for the chain listener and its supervisor."""

import asyncio
from datetime import UTC, datetime

import pytest

from tests.helpers import ALICE, BOB, GENESIS_TS, ONE_TOKEN, FakeChainClient, block_time
from tracker.services.chain.events import ZERO_ADDRESS
from tracker.services.chain.listener import ChainListener
from tracker.services.chain.manager import ChainManager
from tracker.utils.exceptions import FatalListenerError, RpcError, StoreUnavailable

CHAIN = "testnet"
FROZEN = datetime(2030, 1, 1, tzinfo=UTC)


@pytest.fixture
def listener(chain_settings, fake_client, ledger):
    return ChainListener(chain_settings, fake_client, ledger, clock=lambda: FROZEN)


async def changes_of(ledger, user):
    return await ledger.get_balance_changes_in_period(
        CHAIN, user, block_time(0), block_time(10**6)
    )


async def wait_until(predicate, timeout=5.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(_poll(), timeout)


class TestIngestion:
    """Confirmed logs become balance changes."""

    @pytest.mark.asyncio
    async def test_zero_address_transfer_is_mint(self, listener, fake_client, logs, ledger):
        fake_client.logs = [logs.transfer(ZERO_ADDRESS, ALICE, 100 * ONE_TOKEN, block=10)]
        fake_client.head = 16

        appended = await listener.poll_once()

        changes = await changes_of(ledger, ALICE)
        assert appended == 1
        assert [c.event_type for c in changes] == ["mint"]
        assert await ledger.get_current_balance(CHAIN, ALICE) == str(100 * ONE_TOKEN)
        assert await ledger.get_last_processed_block(CHAIN) == 10

    @pytest.mark.asyncio
    async def test_round_trip_transfer(self, listener, fake_client, logs, ledger):
        fake_client.logs = [
            logs.transfer(ZERO_ADDRESS, ALICE, 100 * ONE_TOKEN, block=10),
            logs.transfer(ALICE, BOB, 40 * ONE_TOKEN, block=11, log_index=2),
        ]
        fake_client.head = 20

        appended = await listener.poll_once()

        alice = await changes_of(ledger, ALICE)
        bob = await changes_of(ledger, BOB)
        assert appended == 3
        assert [c.event_type for c in alice] == ["mint", "transfer_out"]
        assert [c.event_type for c in bob] == ["transfer_in"]
        assert await ledger.get_current_balance(CHAIN, ALICE) == str(60 * ONE_TOKEN)
        assert await ledger.get_current_balance(CHAIN, BOB) == str(40 * ONE_TOKEN)
        assert listener.invariant_violations == 0

    @pytest.mark.asyncio
    async def test_balance_after_matches_running_sum(self, listener, fake_client, logs, ledger):
        fake_client.logs = [
            logs.transfer(ZERO_ADDRESS, ALICE, 10, block=2),
            logs.transfer(ALICE, BOB, 3, block=3),
            logs.transfer(BOB, ALICE, 1, block=4),
            logs.burn(ALICE, 2, block=5),
            logs.mint(BOB, 7, block=5, log_index=1),
        ]
        fake_client.head = 30

        await listener.poll_once()

        for user in (ALICE, BOB):
            changes = await changes_of(ledger, user)
            running = 0
            for change in changes:
                running += change.signed_amount
                assert int(change.balance_after) == running
            assert await ledger.get_current_balance(CHAIN, user) == str(running)

    @pytest.mark.asyncio
    async def test_unordered_logs_are_applied_in_chain_order(
        self, listener, fake_client, logs, ledger
    ):
        fake_client.logs = [
            logs.transfer(ALICE, BOB, 4, block=3, log_index=1),
            logs.transfer(ZERO_ADDRESS, ALICE, 10, block=3, log_index=0),
        ]
        fake_client.head = 10

        await listener.poll_once()

        assert listener.invariant_violations == 0
        assert await ledger.get_current_balance(CHAIN, ALICE) == "6"

    @pytest.mark.asyncio
    async def test_event_time_is_block_time(self, listener, fake_client, logs, ledger):
        fake_client.logs = [logs.transfer(ZERO_ADDRESS, ALICE, 1, block=42)]
        fake_client.head = 50

        await listener.poll_once()

        (change,) = await changes_of(ledger, ALICE)
        assert change.event_time == block_time(42)


class TestConfirmationDelay:
    """Blocks within six of the head are never read."""

    @pytest.mark.asyncio
    async def test_confirmed_blocks_only(self, listener, fake_client, logs, ledger):
        fake_client.logs = [
            logs.transfer(ZERO_ADDRESS, ALICE, ONE_TOKEN, block=block) for block in range(100, 105)
        ]

        fake_client.head = 106
        assert await listener.poll_once() == 1
        assert await ledger.get_last_processed_block(CHAIN) == 100

        fake_client.head = 110
        assert await listener.poll_once() == 4
        assert await ledger.get_last_processed_block(CHAIN) == 104
        assert await ledger.get_current_balance(CHAIN, ALICE) == str(5 * ONE_TOKEN)

    @pytest.mark.asyncio
    async def test_late_duplicate_is_ignored(self, listener, fake_client, logs, ledger):
        fake_client.logs = [
            logs.transfer(ZERO_ADDRESS, ALICE, ONE_TOKEN, block=block) for block in range(100, 105)
        ]
        fake_client.head = 110
        await listener.poll_once()

        # Same (tx_hash, log_index) as the block 101 log
        duplicate = dict(fake_client.logs[1])
        fake_client.injected = [duplicate]
        fake_client.head = 111

        assert await listener.poll_once() == 0
        assert await ledger.get_current_balance(CHAIN, ALICE) == str(5 * ONE_TOKEN)
        assert len(await changes_of(ledger, ALICE)) == 5

    @pytest.mark.asyncio
    async def test_nothing_confirmed(self, listener, fake_client):
        fake_client.head = 6

        assert await listener.poll_once() == 0
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_ranges_are_chunked(self, chain_settings, fake_client, ledger):
        chain = chain_settings.model_copy(update={"max_block_range": 3})
        listener = ChainListener(chain, fake_client, ledger)
        fake_client.head = 20

        await listener.poll_once()

        assert fake_client.calls == [(1, 3), (4, 6), (7, 9), (10, 12), (13, 14)]
        assert await ledger.get_last_processed_block(CHAIN) == 14

    @pytest.mark.asyncio
    async def test_cursor_never_moves_back(self, listener, fake_client, ledger):
        seen = []
        for head in (20, 15, 30, 30, 25, 40):
            fake_client.head = head
            await listener.poll_once()
            seen.append(await ledger.get_last_processed_block(CHAIN))

        assert seen == sorted(seen)
        assert seen[-1] == 34

    @pytest.mark.asyncio
    async def test_resume_from_stored_cursor(self, chain_settings, fake_client, ledger):
        await ledger.update_last_processed_block(CHAIN, 50)
        listener = ChainListener(chain_settings, fake_client, ledger)
        fake_client.head = 60

        await listener.poll_once()

        assert fake_client.calls == [(51, 54)]

    @pytest.mark.asyncio
    async def test_start_returns_watermark(self, listener, ledger):
        assert await listener.start() == 0

        await ledger.update_last_processed_block(CHAIN, 50)

        assert await listener.start() == 50
        assert listener.last_block == 50


class TestFailures:
    """Failure handling inside a tick."""

    @pytest.mark.asyncio
    async def test_undecodable_log_is_skipped(self, listener, fake_client, logs, ledger):
        fake_client.logs = [
            logs.unknown(block=5),
            logs.transfer(ZERO_ADDRESS, ALICE, 3, block=5, log_index=1),
        ]
        fake_client.head = 20

        assert await listener.poll_once() == 1
        assert await ledger.get_current_balance(CHAIN, ALICE) == "3"
        assert await ledger.get_last_processed_block(CHAIN) == 14

    @pytest.mark.asyncio
    async def test_rpc_failure_keeps_cursor(self, listener, fake_client, ledger):
        await listener.start()
        fake_client.head = 20
        fake_client.fail_with = RpcError("connection refused")

        with pytest.raises(RpcError):
            await listener.poll_once()

        assert await ledger.get_last_processed_block(CHAIN) == 0

    @pytest.mark.asyncio
    async def test_store_failure_abandons_batch(
        self, listener, fake_client, logs, ledger, monkeypatch
    ):
        fake_client.logs = [
            logs.transfer(ZERO_ADDRESS, ALICE, 10, block=3),
            logs.transfer(ALICE, BOB, 4, block=4),
        ]
        fake_client.head = 20
        original = ledger.append_balance_change
        calls = 0

        async def flaky(change):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise StoreUnavailable("connection reset")
            await original(change)

        monkeypatch.setattr(ledger, "append_balance_change", flaky)
        with pytest.raises(StoreUnavailable):
            await listener.poll_once()
        assert await ledger.get_last_processed_block(CHAIN) == 0

        monkeypatch.setattr(ledger, "append_balance_change", original)
        # The mint is already stored and is skipped on retry
        assert await listener.poll_once() == 2
        assert await ledger.get_current_balance(CHAIN, ALICE) == "6"
        assert await ledger.get_current_balance(CHAIN, BOB) == "4"
        assert await ledger.get_last_processed_block(CHAIN) == 14

    @pytest.mark.asyncio
    async def test_negative_balance_is_recorded_and_counted(
        self, listener, fake_client, logs, ledger
    ):
        fake_client.logs = [logs.transfer(ALICE, BOB, 5, block=3)]
        fake_client.head = 20

        await listener.poll_once()

        assert await ledger.get_current_balance(CHAIN, ALICE) == "-5"
        assert listener.invariant_violations == 1

    @pytest.mark.asyncio
    async def test_chain_id_mismatch_is_fatal(self, chain_settings, ledger):
        listener = ChainListener(chain_settings, FakeChainClient(chain_id=1), ledger)

        with pytest.raises(FatalListenerError, match="chain id 1"):
            await listener.start()


class TestEventTime:
    """Timestamp fallbacks when the node has no block header."""

    class HeaderlessClient(FakeChainClient):
        async def get_block_timestamp(self, block_number):
            return None

    @pytest.mark.asyncio
    async def test_embedded_timestamp(self, chain_settings, logs, ledger):
        client = self.HeaderlessClient()
        client.logs = [logs.mint(ALICE, 1, block=3, timestamp=GENESIS_TS + 5)]
        client.head = 10
        listener = ChainListener(chain_settings, client, ledger, clock=lambda: FROZEN)

        await listener.poll_once()

        (change,) = await changes_of(ledger, ALICE)
        assert change.event_time == datetime.fromtimestamp(GENESIS_TS + 5, UTC)

    @pytest.mark.asyncio
    async def test_clock_fallback(self, chain_settings, logs, ledger):
        client = self.HeaderlessClient()
        client.logs = [logs.transfer(ZERO_ADDRESS, ALICE, 1, block=3)]
        client.head = 10
        listener = ChainListener(chain_settings, client, ledger, clock=lambda: FROZEN)

        await listener.poll_once()

        change = await ledger.get_latest_balance_change(CHAIN, ALICE)
        assert change.event_time == FROZEN


class TestRunLoop:
    """Long-running listener behaviour."""

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, listener, fake_client, logs, ledger):
        stop = asyncio.Event()
        fake_client.logs = [logs.transfer(ZERO_ADDRESS, ALICE, 1, block=5)]
        fake_client.head = 20
        fake_client.fail_with = RpcError("node syncing")

        task = asyncio.create_task(listener.run(stop))
        await asyncio.sleep(0.05)
        assert listener.last_block == 0

        fake_client.fail_with = None
        await wait_until(lambda: listener.last_block == 14)
        stop.set()
        await asyncio.wait_for(task, 5)

        assert await ledger.get_current_balance(CHAIN, ALICE) == "1"

    @pytest.mark.asyncio
    async def test_fatal_error_ends_run(self, chain_settings, ledger):
        listener = ChainListener(chain_settings, FakeChainClient(chain_id=5), ledger)

        with pytest.raises(FatalListenerError):
            await asyncio.wait_for(listener.run(asyncio.Event()), 5)


class TestChainManager:
    """Supervision of several listeners."""

    class CrashingClient(FakeChainClient):
        async def block_number(self):
            raise RuntimeError("boom")

    @pytest.mark.asyncio
    async def test_chain_names_keep_configured_order(self, chain_settings, ledger):
        listeners = [
            ChainListener(chain_settings.model_copy(update={"name": name}), FakeChainClient(), ledger)
            for name in ("sepolia", "base", "arbitrum")
        ]
        manager = ChainManager(listeners, asyncio.Event())

        assert manager.chain_names() == ["sepolia", "base", "arbitrum"]

    @pytest.mark.asyncio
    async def test_fatal_listener_reaches_exit_channel(self, chain_settings, ledger):
        healthy = ChainListener(chain_settings, FakeChainClient(), ledger)
        broken = ChainListener(
            chain_settings.model_copy(update={"name": "broken"}),
            FakeChainClient(chain_id=99),
            ledger,
        )
        manager = ChainManager([healthy, broken], asyncio.Event())

        manager.start()
        error = await asyncio.wait_for(manager.wait_fatal(), 5)
        await manager.shutdown(timeout=5)

        assert isinstance(error, FatalListenerError)
        assert manager.stop_event.is_set()

    @pytest.mark.asyncio
    async def test_unexpected_crash_is_reported_as_fatal(self, chain_settings, ledger):
        listener = ChainListener(chain_settings, self.CrashingClient(), ledger)
        manager = ChainManager([listener], asyncio.Event())

        manager.start()
        error = await asyncio.wait_for(manager.wait_fatal(), 5)
        await manager.shutdown(timeout=5)

        assert isinstance(error, FatalListenerError)
        assert "boom" in str(error)

    @pytest.mark.asyncio
    async def test_shutdown_stops_idle_listeners(self, chain_settings, ledger):
        stop = asyncio.Event()
        manager = ChainManager([ChainListener(chain_settings, FakeChainClient(), ledger)], stop)

        manager.start()
        await asyncio.sleep(0.05)
        await manager.shutdown(timeout=5)

        assert manager.exit_channel().empty()
        assert manager.invariant_violations == {CHAIN: 0}
