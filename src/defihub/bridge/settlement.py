"""Bridge transfers with a cancellable simulated settlement delay."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal

from defihub.config import Settings
from defihub.errors import ChainNotFound, InvalidInput, TransferNotFound
from defihub.journal.store import JournalStore
from defihub.store.base import Store
from defihub.types import BridgeQuote, BridgeTransfer, Chain
from defihub.utils.decimals import precise
from defihub.utils.logging import get_logger


class BridgeService:
    """Quotes transfers and settles them after a delay.

    Every scheduled settlement is an ``asyncio.Task`` owned by the service;
    ``cancel`` and ``shutdown`` stop them so no timer outlives the service.
    """

    def __init__(
        self,
        store: Store,
        settings: Settings,
        journal: JournalStore | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._journal = journal
        self._logger = get_logger("defihub.bridge.settlement")
        self._tasks: dict[int, asyncio.Task[None]] = {}

    @property
    def pending_settlements(self) -> int:
        return len(self._tasks)

    def list_chains(self) -> list[Chain]:
        return self._store.list_chains()

    def quote_transfer(
        self,
        from_chain: int,
        to_chain: int,
        token: str,
        amount: Decimal,
    ) -> BridgeQuote:
        """Fee is a proportional base fee plus a flat gas estimate."""
        self._active_chain(from_chain)
        self._active_chain(to_chain)
        if from_chain == to_chain:
            raise InvalidInput("same_chain")
        if amount <= 0:
            raise InvalidInput("amount_must_be_positive")
        with precise():
            fee = amount * self._settings.bridge_base_fee_rate + self._settings.bridge_gas_fee
            amount_out = amount - fee
        if amount_out <= 0:
            raise InvalidInput(f"amount_below_fee: amount={amount} fee={fee}")
        return BridgeQuote(
            from_chain=from_chain,
            to_chain=to_chain,
            token=token,
            amount=amount,
            fee=fee,
            amount_out=amount_out,
        )

    async def transfer(
        self,
        user: str,
        from_chain: int,
        to_chain: int,
        token: str,
        amount: Decimal,
        *,
        now: datetime | None = None,
    ) -> BridgeTransfer:
        """Record a transfer as processing and schedule its settlement."""
        now = now or datetime.now(timezone.utc)
        quote = self.quote_transfer(from_chain, to_chain, token, amount)
        transfer = self._store.append_transfer(
            BridgeTransfer(
                transfer_id=0,
                user=user,
                from_chain=from_chain,
                to_chain=to_chain,
                token=token,
                amount=amount,
                fee=quote.fee,
                created_at=now,
                status="processing",
            )
        )

        transfer_id = transfer.transfer_id
        task = asyncio.get_running_loop().create_task(
            self._settle(transfer_id), name=f"bridge-settle-{transfer_id}"
        )
        self._tasks[transfer_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(transfer_id, None))

        self._logger.info(
            "bridge_transfer_scheduled",
            transfer_id=transfer_id,
            user=user,
            token=token,
            amount=str(amount),
            delay_sec=self._settings.bridge_settlement_delay_sec,
        )
        self._journal_event(
            "bridge_transfer",
            {
                "transfer_id": transfer_id,
                "user": user,
                "from_chain": from_chain,
                "to_chain": to_chain,
                "token": token,
                "amount": amount,
                "fee": quote.fee,
            },
        )
        return transfer

    def status(self, transfer_id: int) -> BridgeTransfer:
        transfer = self._store.get_transfer(transfer_id)
        if transfer is None:
            raise TransferNotFound(f"transfer_not_found: {transfer_id}")
        return transfer

    def transfers_for(self, user: str) -> list[BridgeTransfer]:
        return self._store.list_transfers(user)

    async def cancel(self, transfer_id: int) -> BridgeTransfer:
        """Cancel a processing transfer and its pending settlement."""
        transfer = self.status(transfer_id)
        if transfer.status != "processing":
            raise InvalidInput(f"transfer_not_cancellable: status={transfer.status}")

        task = self._tasks.pop(transfer_id, None)
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        with self._store.lock(f"transfer:{transfer_id}"):
            transfer = self._store.update_transfer(
                replace(self.status(transfer_id), status="cancelled")
            )
        self._logger.info("bridge_transfer_cancelled", transfer_id=transfer_id)
        self._journal_event("bridge_cancelled", {"transfer_id": transfer_id})
        return transfer

    async def shutdown(self) -> None:
        """Cancel all pending settlements and wait for them to finish."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._logger.info("bridge_service_stopped", cancelled=len(tasks))

    async def _settle(self, transfer_id: int) -> None:
        await asyncio.sleep(self._settings.bridge_settlement_delay_sec)
        with self._store.lock(f"transfer:{transfer_id}"):
            transfer = self._store.get_transfer(transfer_id)
            if transfer is None or transfer.status != "processing":
                return
            transfer = self._store.update_transfer(
                replace(transfer, status="completed", completed_at=datetime.now(timezone.utc))
            )
        self._logger.info("bridge_transfer_completed", transfer_id=transfer_id)
        self._journal_event("bridge_settled", {"transfer_id": transfer_id})

    def _active_chain(self, chain_id: int) -> Chain:
        chain = self._store.get_chain(chain_id)
        if chain is None or not chain.is_active:
            raise ChainNotFound(f"chain_not_found: {chain_id}")
        return chain

    def _journal_event(self, event_type: str, payload: dict[str, object]) -> None:
        if self._journal is not None:
            self._journal.append(event_type, payload)
