"""Telegram announcements for resolved, cancelled and closed events."""

from __future__ import annotations

import html
import logging

from matchday.config import TelegramConfig
from matchday.models import Outcome
from matchday.services.telegram import NotificationResult, TelegramClient
from matchday.settlement.models import BettingClosed, CancelledBatch, ResolvedEvent
from matchday.settlement.notifier import SettlementNotifier

logger = logging.getLogger(__name__)


def format_resolved(event: ResolvedEvent) -> str:
    winner = html.escape(event.winner)
    verdict = winner if event.outcome == Outcome.DRAW else f"{winner} wins!"
    return (
        "🏁 <b>Match Result</b>\n\n"
        f"<b>{html.escape(event.home_team)} {event.home_score} - "
        f"{event.away_score} {html.escape(event.away_team)}</b>\n\n"
        f"✅ Result: {verdict}\n\n"
        "Winners can now claim their payout."
    )


def format_cancelled(batch: CancelledBatch) -> str:
    plural = len(batch.events) > 1
    lines = "\n".join(
        f"• <b>{html.escape(e.home_team)} vs {html.escape(e.away_team)}</b> "
        f"({html.escape(e.competition)})"
        for e in batch.events
    )
    subject = "These matches were" if plural else "This match was"
    verb = "have" if plural else "has"
    return (
        f"🚫 <b>Match{'es' if plural else ''} Cancelled</b>\n\n"
        f"{lines}\n\n"
        f"{subject} postponed and {verb} been automatically cancelled.\n\n"
        "💰 <b>Refunds Available:</b> all bettors can claim refunds."
    )


def format_betting_closed(closed: BettingClosed) -> str:
    return (
        "🔒 <b>Betting Closed</b>\n\n"
        f"{html.escape(closed.home_team)} vs {html.escape(closed.away_team)}\n\n"
        "Kickoff! Good luck to all bettors! ⚽"
    )


class TelegramAnnouncer:
    """Relays notifier messages to the match channel."""

    def __init__(self, client: TelegramClient, config: TelegramConfig | None = None):
        self.client = client
        self.config = config or TelegramConfig()

    def register(self, notifier: SettlementNotifier) -> None:
        if self.config.send_result_alerts:
            notifier.subscribe(ResolvedEvent, self.notify_resolved)
        if self.config.send_cancel_alerts:
            notifier.subscribe(CancelledBatch, self.notify_cancelled)
        if self.config.send_close_alerts:
            notifier.subscribe(BettingClosed, self.notify_betting_closed)

    async def _send(self, message: str) -> NotificationResult:
        result = await self.client.send_alert(message)
        if not result.success:
            logger.warning(f"Announcement not delivered: {result.error}")
        return result

    async def notify_resolved(self, event: ResolvedEvent) -> NotificationResult:
        return await self._send(format_resolved(event))

    async def notify_cancelled(self, batch: CancelledBatch) -> NotificationResult | None:
        if not batch.events:
            return None
        return await self._send(format_cancelled(batch))

    async def notify_betting_closed(self, closed: BettingClosed) -> NotificationResult:
        return await self._send(format_betting_closed(closed))
