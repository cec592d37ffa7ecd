"""
Relay Scheduler and Startup Tests
"""

import asyncio
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from config import Config
from jobs.relay_scheduler import RELAY_JOB_ID, SwapRelayScheduler
from relay_startup import RelayStartupManager
from conftest import TEST_ESCROW_PRIVATE_KEY


class TestSwapRelayScheduler:

    def test_job_is_single_instance_interval(self):
        scheduler = SwapRelayScheduler(MagicMock(), interval_seconds=30)
        scheduler.setup_jobs()

        job = scheduler.scheduler.get_job(RELAY_JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True
        assert job.trigger.interval == timedelta(seconds=30)

    def test_interval_defaults_to_config(self):
        with patch.object(Config, "RELAY_POLL_INTERVAL_SECONDS", 45):
            scheduler = SwapRelayScheduler(MagicMock())

        assert scheduler.interval_seconds == 45

    def test_setup_twice_keeps_one_job(self):
        scheduler = SwapRelayScheduler(MagicMock(), interval_seconds=30)
        scheduler.setup_jobs()
        scheduler.setup_jobs()

        assert len(scheduler.scheduler.get_jobs()) == 1

    @pytest.mark.asyncio
    async def test_cycle_delegates_to_relay(self):
        relay = MagicMock()
        relay.process_pending_swaps = AsyncMock(return_value={"processed": 0, "skipped": False})

        result = await SwapRelayScheduler(relay, interval_seconds=30).run_relay_cycle()

        assert result["processed"] == 0
        relay.process_pending_swaps.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        relay = MagicMock()
        relay.process_pending_swaps = AsyncMock(return_value={})
        scheduler = SwapRelayScheduler(relay, interval_seconds=3600)

        scheduler.start()
        assert scheduler.running
        scheduler.stop()
        assert not scheduler.running


class TestRelayStartupManager:

    @pytest.mark.asyncio
    async def test_startup_sequence_with_injected_collaborators(self, ledger, registry, escrow, fake_clients):
        for client in fake_clients.values():
            client.fund(native="1", token="10")
        manager = RelayStartupManager(ledger=ledger, registry=registry, escrow=escrow)

        with patch("relay_startup.get_async_engine"), \
                patch("relay_startup.test_connection", AsyncMock(return_value=True)), \
                patch("relay_startup.create_tables", AsyncMock(return_value=True)), \
                patch("relay_startup.SwapRelayScheduler") as scheduler_cls, \
                patch.object(Config, "RELAY_ENABLED", True), \
                patch.object(Config, "ESCROW_WALLET_ADDRESS", escrow.address):
            assert await manager.startup_sequence() is True

        scheduler_cls.return_value.start.assert_called_once()
        assert manager.relay is not None
        assert manager.startup_errors == []

    @pytest.mark.asyncio
    async def test_missing_escrow_key_stops_relay(self, ledger, registry):
        manager = RelayStartupManager(ledger=ledger, registry=registry)

        with patch.object(Config, "RELAY_ENABLED", True), \
                patch.object(Config, "ESCROW_PRIVATE_KEY", None):
            assert await manager.startup_sequence() is False

        assert manager.relay is None
        assert any("ESCROW_PRIVATE_KEY" in error for error in manager.startup_errors)

    @pytest.mark.asyncio
    async def test_disabled_relay_does_not_start(self, ledger, registry, escrow):
        manager = RelayStartupManager(ledger=ledger, registry=registry, escrow=escrow)

        with patch.object(Config, "RELAY_ENABLED", False):
            assert await manager.startup_sequence() is False

    @pytest.mark.asyncio
    async def test_fatal_address_mismatch_stops_relay(self, ledger, registry):
        manager = RelayStartupManager(ledger=ledger, registry=registry)

        with patch("relay_startup.get_async_engine"), \
                patch("relay_startup.test_connection", AsyncMock(return_value=True)), \
                patch("relay_startup.create_tables", AsyncMock(return_value=True)), \
                patch("relay_startup.SwapRelayScheduler") as scheduler_cls, \
                patch.object(Config, "RELAY_ENABLED", True), \
                patch.object(Config, "ESCROW_PRIVATE_KEY", TEST_ESCROW_PRIVATE_KEY), \
                patch.object(Config, "DATABASE_URL", "sqlite:///unused.db"), \
                patch.object(Config, "ESCROW_WALLET_ADDRESS", "0x9c77c6fafc1eb0821F1De12972Ef0199C97C6e45"), \
                patch.object(Config, "ESCROW_ADDRESS_MISMATCH_FATAL", True):
            assert await manager.startup_sequence() is False

        scheduler_cls.return_value.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_payout(self, ledger, registry, escrow, fake_clients, seed_swap):
        record = await seed_swap(target_amount="25")
        fake_clients["base"].confirmations[record.source_tx_hash] = 1
        payout_client = fake_clients["arbitrum"]
        payout_client.fund(native="1", token="1000")
        broadcasting = asyncio.Event()
        release = asyncio.Event()
        original_send = payout_client.send_raw_transaction

        async def slow_send(raw_transaction):
            broadcasting.set()
            await release.wait()
            return await original_send(raw_transaction)

        payout_client.send_raw_transaction = slow_send
        manager = RelayStartupManager(ledger=ledger, registry=registry, escrow=escrow)
        await manager.create_relay()
        cycle = asyncio.create_task(manager.relay.process_pending_swaps())
        await broadcasting.wait()

        with patch("relay_startup.dispose_engine", AsyncMock()) as dispose:
            stopping = asyncio.create_task(manager.shutdown())
            await asyncio.sleep(0.05)
            assert not stopping.done()
            dispose.assert_not_awaited()

            release.set()
            await stopping

            assert cycle.done()
            dispose.assert_awaited_once()

        assert (await cycle)["completed"] == 1
        stored = await ledger.get_by_id(record.swap_id)
        assert stored.status == "completed"
        assert stored.target_tx_hash == payout_client.sent_transactions[0]["hash"]

    @pytest.mark.asyncio
    async def test_shutdown_when_idle_disposes_immediately(self, ledger, registry, escrow):
        manager = RelayStartupManager(ledger=ledger, registry=registry, escrow=escrow)
        await manager.create_relay()

        with patch("relay_startup.dispose_engine", AsyncMock()) as dispose:
            await manager.shutdown()

        dispose.assert_awaited_once()
        assert not manager.relay.busy
