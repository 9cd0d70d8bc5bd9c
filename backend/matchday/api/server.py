"""FastAPI admin server for the settlement engine."""

import logging
import secrets
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

from matchday import __version__
from matchday.config import Settings
from matchday.models import Outcome
from matchday.settlement import SettlementEngine

logger = logging.getLogger(__name__)


class LedgerRegistration(BaseModel):
    ledger_id: int


class PendingBetRequest(BaseModel):
    user_address: str
    prediction: Outcome
    amount: str


def create_app(engine: SettlementEngine, settings: Settings) -> FastAPI:
    """Build the admin API around a running engine."""
    app = FastAPI(title="MatchDay Settlement Admin API", version=__version__)

    def require_admin(authorization: str | None = Header(default=None)) -> None:
        token = settings.admin_api_token
        if not token:
            return
        expected = f"Bearer {token}"
        if authorization is None or not secrets.compare_digest(authorization, expected):
            raise HTTPException(status_code=401, detail="Invalid or missing admin token")

    @app.get("/api/health")
    async def health() -> dict[str, Any]:
        """Liveness plus a summary of scheduler state."""
        return {"status": "ok", "version": __version__, **await engine.status()}

    @app.get("/api/events")
    async def list_events(limit: int = 100) -> list[dict[str, Any]]:
        return [e.model_dump(mode="json") for e in await engine.store.list_events(limit)]

    @app.post("/api/admin/poll", dependencies=[Depends(require_admin)])
    async def trigger_poll() -> dict[str, Any]:
        """Force a resolution poll outside the timer."""
        result = await engine.run_poll_cycle()
        if result is None:
            raise HTTPException(status_code=500, detail="Poll cycle failed, see logs")
        return result.model_dump(mode="json")

    @app.post("/api/admin/sweep", dependencies=[Depends(require_admin)])
    async def trigger_sweep() -> dict[str, Any]:
        result = await engine.run_stale_sweep()
        return result.model_dump(mode="json")

    @app.post("/api/admin/ingest", dependencies=[Depends(require_admin)])
    async def trigger_ingest() -> dict[str, Any]:
        result = await engine.run_ingestion()
        return result.model_dump(mode="json")

    @app.post("/api/events/{event_id}/ledger", dependencies=[Depends(require_admin)])
    async def register_ledger(event_id: int, body: LedgerRegistration) -> dict[str, Any]:
        try:
            event = await engine.register_ledger_id(event_id, body.ledger_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return event.model_dump(mode="json")

    @app.post("/api/events/{event_id}/requeue", dependencies=[Depends(require_admin)])
    async def requeue_settlement(event_id: int) -> dict[str, Any]:
        if not await engine.requeue_settlement(event_id):
            raise HTTPException(
                status_code=409, detail=f"Event {event_id} has no rejected settlement"
            )
        return {"requeued": event_id}

    @app.post("/api/events/{event_id}/pending-bets")
    async def create_pending_bet(event_id: int, body: PendingBetRequest) -> dict[str, Any]:
        try:
            bet_id = await engine.create_pending_bet(
                body.user_address, event_id, body.prediction, body.amount
            )
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {"id": bet_id}

    return app
