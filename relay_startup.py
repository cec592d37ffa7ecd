#!/usr/bin/env python3
"""
Swap Relay Startup

Deterministic startup sequence for the escrow relay process:
configuration -> database -> escrow key -> chain clients and relay ->
balance diagnostics -> scheduler. A configuration or key problem stops the
relay from starting; the rest of the process is unaffected.
"""

import asyncio
import logging
import sys
from typing import Optional

from config import Config
from database import create_tables, dispose_engine, get_async_engine, get_session_factory, test_connection
from jobs.atomic_swap_relay import AtomicSwapRelay
from jobs.relay_scheduler import SwapRelayScheduler
from services.chain_clients import ChainClientRegistry, build_default_registry
from services.escrow_account import EscrowAccount
from services.relay_errors import RelayConfigurationError
from services.swap_ledger import SwapLedger

logger = logging.getLogger(__name__)


class RelayStartupManager:
    """
    Startup manager with a fixed step order.
    Collaborators can be injected; anything missing is built from Config.
    """

    def __init__(
        self,
        ledger: Optional[SwapLedger] = None,
        registry: Optional[ChainClientRegistry] = None,
        escrow: Optional[EscrowAccount] = None,
        engine=None,
    ):
        self.ledger = ledger
        self.registry = registry
        self.escrow = escrow
        self.engine = engine
        self.relay: Optional[AtomicSwapRelay] = None
        self.scheduler: Optional[SwapRelayScheduler] = None
        self.startup_complete = False
        self.startup_errors = []
        self._stop_event = asyncio.Event()

    async def validate_configuration(self) -> bool:
        Config.log_relay_config()
        if not Config.RELAY_ENABLED:
            logger.warning("⏸️ SWAP_RELAY: Relay disabled by RELAY_ENABLED")
            self.startup_errors.append("Configuration: relay disabled")
            return False

        problems = Config.validate_relay_configuration()
        if self.ledger is not None:
            problems = [p for p in problems if not p.startswith("DATABASE_URL")]
        if self.escrow is not None:
            problems = [p for p in problems if not p.startswith("ESCROW_PRIVATE_KEY")]

        if problems:
            for problem in problems:
                logger.error(f"❌ Configuration problem: {problem}")
            self.startup_errors.append(f"Configuration: {'; '.join(problems)}")
            return False
        return True

    async def initialize_database(self) -> bool:
        """Verify the ledger database and create missing tables"""
        try:
            logger.info("🗄️ Initializing swap ledger database...")
            engine = self.engine or get_async_engine()
            if not await test_connection(engine):
                raise RelayConfigurationError("Database connection test failed")
            if not await create_tables(engine):
                raise RelayConfigurationError("Table creation failed")

            if self.ledger is None:
                self.ledger = SwapLedger(get_session_factory())
            logger.info("✅ Swap ledger ready")
            return True
        except Exception as e:
            logger.error(f"❌ Database initialization failed: {e}")
            self.startup_errors.append(f"Database: {e}")
            return False

    async def load_escrow_account(self) -> bool:
        try:
            if self.escrow is None:
                self.escrow = EscrowAccount.from_config()
            logger.info(f"🔐 Escrow account loaded: {self.escrow.address}")
            return True
        except RelayConfigurationError as e:
            logger.error(f"❌ Escrow account unavailable: {e}")
            self.startup_errors.append(f"Escrow: {e}")
            return False

    async def create_relay(self) -> bool:
        if self.registry is None:
            self.registry = build_default_registry()
        self.relay = AtomicSwapRelay(self.ledger, self.registry, self.escrow)
        logger.info("✅ Atomic swap relay created")
        return True

    async def run_diagnostics(self) -> bool:
        """Escrow address and balance check; only a fatal address mismatch stops startup"""
        try:
            report = await self.relay.run_startup_diagnostics()
        except RelayConfigurationError as e:
            logger.error(f"🚨 Escrow verification failed: {e}")
            self.startup_errors.append(f"Diagnostics: {e}")
            return False
        except Exception as e:
            logger.error(f"⚠️ Escrow diagnostics incomplete: {e}")
            self.startup_errors.append(f"Diagnostics: {e}")
            return True

        for warning in report["warnings"]:
            self.startup_errors.append(f"Balance: {warning}")
        return True

    async def start_scheduler(self) -> bool:
        self.scheduler = SwapRelayScheduler(self.relay)
        self.scheduler.start()
        self.startup_complete = True
        return True

    async def startup_sequence(self) -> bool:
        """Execute the startup steps in order; any failing step stops the relay"""
        logger.info("🚀 Starting cross-chain swap relay...")

        startup_steps = [
            ("Configuration", self.validate_configuration),
            ("Database", self.initialize_database),
            ("Escrow", self.load_escrow_account),
            ("Relay", self.create_relay),
            ("Diagnostics", self.run_diagnostics),
            ("Scheduler", self.start_scheduler),
        ]

        for step_name, step_func in startup_steps:
            logger.info(f"▶️ Executing step: {step_name}")
            success = await step_func()
            if not success:
                logger.error(f"❌ Step '{step_name}' failed - swap relay will not run")
                return False

        if self.startup_errors:
            logger.warning(f"⚠️ Startup completed with {len(self.startup_errors)} warnings:")
            for error in self.startup_errors:
                logger.warning(f"  - {error}")
        else:
            logger.info("✅ Swap relay startup completed successfully")

        return self.startup_complete

    async def run_forever(self):
        await self._stop_event.wait()

    async def shutdown(self):
        self._stop_event.set()
        if self.scheduler is not None:
            self.scheduler.stop()
        if self.relay is not None and self.relay.busy:
            logger.info("⏳ Waiting for the running relay cycle to finish...")
            await self.relay.wait_idle()
        await dispose_engine()
        logger.info("👋 Swap relay stopped")


async def main_relay():
    startup_manager = RelayStartupManager()
    try:
        success = await startup_manager.startup_sequence()
        if not success:
            logger.error("❌ Startup failed - exiting")
            sys.exit(1)

        logger.info("🎉 Swap relay running")
        await startup_manager.run_forever()
    finally:
        await startup_manager.shutdown()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(main_relay())
    except KeyboardInterrupt:
        logger.info("👋 Relay stopped by user")
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}")
        sys.exit(1)
