"""Batch settlement of committed results onto the ledger."""

from __future__ import annotations

import logging

from matchday.services.ledger import (
    BatchReceipt,
    LedgerClient,
    LedgerError,
    LedgerRejectedError,
    LedgerStatus,
    SettlementInstruction,
)
from matchday.settlement.models import DispatchResult
from matchday.storage import EventStore

logger = logging.getLogger(__name__)

Entry = tuple[int, SettlementInstruction]


class BatchSettlementDispatcher:
    """Writes every committed-but-unsettled result in as few ledger calls as possible.

    The backlog is read from the store on each pass, so anything a failed
    submission left behind is picked up again on the next one. A batch the
    ledger refuses outright is retried one event at a time; events refused on
    their own are taken out of the backlog and left for manual handling.
    """

    def __init__(self, store: EventStore, ledger: LedgerClient, max_batch_size: int = 50):
        self.store = store
        self.ledger = ledger
        self.max_batch_size = max_batch_size

    async def dispatch(self) -> DispatchResult:
        result = DispatchResult()

        backlog = await self.store.list_settlement_backlog()
        if not backlog:
            return result

        batch: dict[int, Entry] = {}
        for event in backlog:
            if event.ledger_id in batch:
                logger.error(
                    f"Ledger id {event.ledger_id} shared by events "
                    f"{batch[event.ledger_id][0]} and {event.id}, skipping duplicate"
                )
                continue
            batch[event.ledger_id] = (
                event.id,
                SettlementInstruction(ledger_id=event.ledger_id, outcome=event.outcome),
            )

        entries = list(batch.values())
        for start in range(0, len(entries), self.max_batch_size):
            chunk = entries[start : start + self.max_batch_size]
            instructions = [instruction for _, instruction in chunk]
            result.submitted += len(instructions)

            try:
                receipt = await self.ledger.submit_batch(instructions)
            except LedgerRejectedError as e:
                logger.warning(
                    f"Ledger rejected settlement batch of {len(instructions)} ({e}), "
                    "resolving events one by one"
                )
                await self._settle_individually(chunk, result)
                continue
            except LedgerError as e:
                logger.error(
                    f"Settlement batch of {len(instructions)} failed, "
                    f"will retry next cycle: {e}"
                )
                result.failed_ids.extend(event_id for event_id, _ in chunk)
                continue

            await self._apply_receipt(chunk, receipt, result)
            logger.info(
                f"Settled {len(instructions)} events on the ledger (tx {receipt.tx_id})"
            )

        return result

    async def _settle_individually(self, chunk: list[Entry], result: DispatchResult) -> None:
        for event_id, instruction in chunk:
            try:
                receipt = await self.ledger.resolve(instruction.ledger_id, instruction.outcome)
            except LedgerRejectedError as e:
                logger.error(
                    f"Ledger rejected settlement of event {event_id} "
                    f"(ledger id {instruction.ledger_id}), held for manual handling: {e}"
                )
                await self.store.mark_settlement_rejected(event_id, str(e))
                result.rejected_ids.append(event_id)
                continue
            except LedgerError as e:
                logger.error(
                    f"Settlement of event {event_id} failed, will retry next cycle: {e}"
                )
                result.failed_ids.append(event_id)
                continue
            await self._apply_receipt([(event_id, instruction)], receipt, result)

    async def _apply_receipt(
        self, chunk: list[Entry], receipt: BatchReceipt, result: DispatchResult
    ) -> None:
        skipped = set(receipt.skipped)
        settled = [event_id for event_id, i in chunk if i.ledger_id not in skipped]

        await self.store.mark_ledger_settled(settled)
        result.settled_ids.extend(settled)
        result.skipped_ledger_ids.extend(receipt.skipped)
        result.tx_ids.append(receipt.tx_id)

        if skipped:
            logger.info(f"Ledger skipped {len(skipped)} events: {sorted(skipped)}")
        for event_id, instruction in chunk:
            if instruction.ledger_id in skipped:
                await self._reconcile_skipped(event_id, instruction, result)

    async def _reconcile_skipped(
        self, event_id: int, instruction: SettlementInstruction, result: DispatchResult
    ) -> None:
        """A skipped id is final on the ledger; mirror whatever the ledger holds."""
        ledger_id = instruction.ledger_id
        try:
            ledger_event = await self.ledger.get_status(ledger_id)
        except LedgerError as e:
            logger.warning(
                f"Could not confirm skipped ledger id {ledger_id}, will retry next cycle: {e}"
            )
            result.failed_ids.append(event_id)
            return

        if ledger_event.status == LedgerStatus.CANCELLED:
            logger.error(
                f"Ledger id {ledger_id} is cancelled on the ledger, "
                f"voiding event {event_id} locally"
            )
            await self.store.void_from_ledger(event_id)
            result.voided_ids.append(event_id)
        elif ledger_event.status == LedgerStatus.RESOLVED:
            if ledger_event.outcome is not None and ledger_event.outcome != instruction.outcome:
                logger.error(
                    f"Ledger resolved event {event_id} as {ledger_event.outcome.label}, "
                    f"local result was {instruction.outcome.label}; keeping the ledger outcome"
                )
                await self.store.adopt_ledger_outcome(event_id, ledger_event.outcome)
            else:
                await self.store.mark_ledger_settled([event_id])
            result.settled_ids.append(event_id)
        else:
            logger.warning(
                f"Ledger skipped id {ledger_id} but reports it {ledger_event.status.value}, "
                "will retry next cycle"
            )
            result.failed_ids.append(event_id)
