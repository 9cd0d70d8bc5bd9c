from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import uuid4

import httpx

from matchday.models import Outcome

from .auth import LedgerManagerAuth
from .config import LedgerConfig
from .exceptions import (
    LedgerAuthError,
    LedgerError,
    LedgerRejectedError,
    LedgerUnavailableError,
)
from .models import BatchReceipt, LedgerEvent, LedgerStatus, SettlementInstruction

logger = logging.getLogger(__name__)


class LedgerClient:
    """Client for the append-only settlement ledger.

    Writes are idempotent per ledger id: resolving an event that is already
    settled is reported back as skipped, never as a failure.
    """

    def __init__(
        self,
        config: LedgerConfig | None = None,
        api_key: str | None = None,
        private_key_pem: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or LedgerConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._paper_events: dict[int, LedgerEvent] = {}
        self.paper_transactions: list[str] = []

        if api_key and private_key_pem:
            self.auth = LedgerManagerAuth(api_key, private_key_pem)
        else:
            self.auth = None

        logger.info(
            f"Initialized LedgerClient (paper_mode={self.config.paper_mode}, "
            f"auth={'enabled' if self.auth else 'disabled'})"
        )

    async def __aenter__(self) -> LedgerClient:
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed LedgerClient")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "LedgerClient must be used as async context manager"
            )
        return self._client

    def _require_auth(self) -> LedgerManagerAuth:
        if self.auth is None:
            raise LedgerAuthError(
                "Manager credential required. Provide api_key and private_key_pem."
            )
        return self.auth

    def _paper_enabled(self) -> bool:
        return self.config.paper_mode and self.auth is None

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        auth_required: bool = False,
    ) -> dict[str, Any]:
        auth = self._require_auth() if auth_required else None

        retry = self.config.retry
        last_error: LedgerError | None = None

        for attempt in range(retry.max_attempts):
            try:
                response = await self.client.request(
                    method=method,
                    url=endpoint,
                    json=json_data,
                    auth=auth,
                )
            except httpx.TimeoutException as e:
                last_error = LedgerError(f"Timeout on {endpoint}: {e}", retryable=True)
            except httpx.TransportError as e:
                last_error = LedgerError(f"Network error on {endpoint}: {e}", retryable=True)
            else:
                if response.status_code in (401, 403):
                    raise LedgerAuthError(
                        "Ledger rejected the manager credential",
                        status_code=response.status_code,
                    )
                if retry.is_retryable_status(response.status_code):
                    last_error = LedgerError(
                        f"Ledger error {response.status_code}",
                        status_code=response.status_code,
                        retryable=True,
                    )
                elif response.is_error:
                    raise LedgerRejectedError(
                        f"Ledger rejected {method} {endpoint}: "
                        f"{response.status_code} {response.text[:200]}",
                        status_code=response.status_code,
                    )
                else:
                    return response.json()

            if attempt + 1 < retry.max_attempts:
                wait_time = retry.delay_for(attempt)
                logger.warning(
                    f"{last_error} (attempt {attempt + 1}/{retry.max_attempts}), "
                    f"retrying in {wait_time:.1f}s..."
                )
                await asyncio.sleep(wait_time)

        raise LedgerUnavailableError(
            f"Ledger request failed after {retry.max_attempts} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
        )

    def _paper_event(self, ledger_id: int) -> LedgerEvent:
        return self._paper_events.setdefault(
            ledger_id, LedgerEvent(ledger_id=ledger_id, status=LedgerStatus.OPEN)
        )

    async def get_status(self, ledger_id: int) -> LedgerEvent:
        if self._paper_enabled():
            return self._paper_event(ledger_id)
        data = await self._request("GET", f"events/{ledger_id}")
        return LedgerEvent.from_api(data.get("event", data))

    async def submit_batch(
        self, instructions: list[SettlementInstruction]
    ) -> BatchReceipt:
        """Resolve many events in one ledger transaction."""
        if not instructions:
            raise ValueError("Cannot submit an empty settlement batch")

        if self._paper_enabled():
            receipt = BatchReceipt(tx_id=f"paper_{uuid4().hex[:8]}")
            for instruction in instructions:
                current = self._paper_event(instruction.ledger_id)
                if current.status.is_terminal:
                    receipt.skipped.append(instruction.ledger_id)
                    continue
                self._paper_events[instruction.ledger_id] = LedgerEvent(
                    ledger_id=instruction.ledger_id,
                    status=LedgerStatus.RESOLVED,
                    outcome=instruction.outcome,
                )
                receipt.settled.append(instruction.ledger_id)
            self.paper_transactions.append(receipt.tx_id)
            return receipt

        logger.info(f"Submitting settlement batch of {len(instructions)} events")
        data = await self._request(
            "POST",
            "events/resolve-batch",
            json_data={"settlements": [i.to_api() for i in instructions]},
            auth_required=True,
        )
        return BatchReceipt.from_api(data)

    async def resolve(self, ledger_id: int, outcome: Outcome) -> BatchReceipt:
        """Resolve a single event. Same end state as a batch of one."""
        if self._paper_enabled():
            return await self.submit_batch(
                [SettlementInstruction(ledger_id=ledger_id, outcome=outcome)]
            )
        data = await self._request(
            "POST",
            f"events/{ledger_id}/resolve",
            json_data={"outcome": int(outcome)},
            auth_required=True,
        )
        return BatchReceipt.from_api(data)

    async def cancel(self, ledger_id: int, reason: str) -> str:
        """Void an event so bettors can claim refunds. Returns the tx id."""
        logger.info(f"Cancelling ledger event {ledger_id}: {reason}")
        if self._paper_enabled():
            current = self._paper_event(ledger_id)
            if current.status == LedgerStatus.RESOLVED:
                raise LedgerRejectedError(
                    f"Ledger event {ledger_id} is resolved and cannot be cancelled"
                )
            self._paper_events[ledger_id] = LedgerEvent(
                ledger_id=ledger_id,
                status=LedgerStatus.CANCELLED,
                cancel_reason=reason,
            )
            tx_id = f"paper_{uuid4().hex[:8]}"
            self.paper_transactions.append(tx_id)
            return tx_id

        data = await self._request(
            "POST",
            f"events/{ledger_id}/cancel",
            json_data={"reason": reason},
            auth_required=True,
        )
        return str(data.get("tx_id", ""))

    async def close_betting(self, ledger_id: int) -> str:
        logger.info(f"Closing betting for ledger event {ledger_id}")
        if self._paper_enabled():
            current = self._paper_event(ledger_id)
            if current.status == LedgerStatus.OPEN:
                self._paper_events[ledger_id] = LedgerEvent(
                    ledger_id=ledger_id, status=LedgerStatus.CLOSED
                )
            return f"paper_{uuid4().hex[:8]}"

        data = await self._request(
            "POST", f"events/{ledger_id}/close", auth_required=True
        )
        return str(data.get("tx_id", ""))
