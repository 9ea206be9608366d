"""
Telegram Bot API notifier.

Setup: create a bot via @BotFather, add it to the target chat and set
JOBDIGEST_TELEGRAM_BOT_TOKEN / JOBDIGEST_TELEGRAM_CHAT_ID.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Sequence
from zoneinfo import ZoneInfo

import aiohttp
from loguru import logger

from jobdigest.common.utils import utc_now
from jobdigest.errors import NotificationError
from jobdigest.pipeline.models import DailyStats, JobPosting
from . import formatting
from .formatting import RelevanceBands

NOT_MODIFIED = "message is not modified"


class TelegramNotifier:
    def __init__(
        self,
        bot_token: Optional[str],
        chat_id: Optional[str],
        *,
        max_chars: int = 4000,
        timeout_sec: float = 10.0,
        chunk_delay_sec: float = 1.0,
        timezone: str = "UTC",
        bands: RelevanceBands = RelevanceBands(),
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.base_url = f"https://api.telegram.org/bot{bot_token}"
        self.enabled = bool(bot_token and chat_id)
        self.max_chars = max_chars
        self.timeout_sec = timeout_sec
        self.chunk_delay_sec = chunk_delay_sec
        self.tz = ZoneInfo(timezone)
        self.bands = bands

        if not self.enabled:
            logger.warning("Telegram notifications disabled - missing bot_token or chat_id")

    @classmethod
    def from_settings(cls, s) -> "TelegramNotifier":
        return cls(
            s.telegram_bot_token,
            s.telegram_chat_id,
            max_chars=s.telegram_max_message_chars,
            timeout_sec=s.telegram_timeout_sec,
            chunk_delay_sec=s.telegram_chunk_delay_sec,
            timezone=s.schedule_timezone,
            bands=RelevanceBands.from_settings(s),
        )

    # -------------------------
    # Transport
    # -------------------------

    async def _api(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST one Bot API call; raises NotificationError on any failure."""
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.base_url}/{method}",
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_sec),
                ) as response:
                    body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise NotificationError(f"Telegram {method} failed: {exc}") from exc

        if not isinstance(body, dict) or not body.get("ok"):
            description = body.get("description") if isinstance(body, dict) else body
            raise NotificationError(f"Telegram {method} rejected: {description}")
        return body.get("result") or {}

    async def _send(self, text: str, *, preview: bool = False) -> Dict[str, Any]:
        return await self._api(
            "sendMessage",
            {
                "chat_id": self.chat_id,
                "text": text,
                "parse_mode": "Markdown",
                "disable_web_page_preview": not preview,
            },
        )

    async def _send_chunks(self, chunks: Sequence[str]) -> None:
        for i, chunk in enumerate(chunks):
            await self._send(chunk)
            if i < len(chunks) - 1 and self.chunk_delay_sec > 0:
                await asyncio.sleep(self.chunk_delay_sec)

    # -------------------------
    # Notifier interface
    # -------------------------

    async def send_digest(self, postings: Sequence[JobPosting]) -> None:
        if not self.enabled:
            logger.info("Telegram disabled; digest of {} postings not sent", len(postings))
            return
        chunks = formatting.digest_messages(
            postings,
            self.max_chars,
            bands=self.bands,
            generated_at=utc_now().astimezone(self.tz),
        )
        await self._send_chunks(chunks)
        logger.info("Sent digest with {} postings in {} message(s)", len(postings), len(chunks))

    async def send_daily_summary(self, postings: Sequence[JobPosting], stats: DailyStats) -> None:
        if not self.enabled:
            logger.info("Telegram disabled; daily summary not sent")
            return
        chunks = formatting.daily_summary_messages(
            postings,
            stats,
            self.max_chars,
            day_label=utc_now().astimezone(self.tz).strftime("%Y-%m-%d"),
        )
        await self._send_chunks(chunks)
        logger.info("Sent daily summary with {} postings", len(postings))

    async def send_status(self, text: str) -> None:
        if not self.enabled:
            return
        try:
            await self._send(formatting.status_text(text))
        except NotificationError as exc:
            logger.error("Failed to send status message: {}", exc)

    async def send_error(self, text: str) -> None:
        if not self.enabled:
            return
        try:
            await self._send(formatting.error_text(text, utc_now().astimezone(self.tz)))
        except NotificationError as exc:
            logger.error("Failed to send error message: {}", exc)

    async def create_progress_message(self, text: str) -> Optional[int]:
        if not self.enabled:
            return None
        try:
            result = await self._send(text)
        except NotificationError as exc:
            logger.warning("Could not create progress message: {}", exc)
            return None
        return result.get("message_id")

    async def update_progress_message(self, handle: Any, text: str) -> None:
        """Edit in place; if that fails, post the text as a new message instead."""
        if not self.enabled:
            return
        if handle is not None:
            try:
                await self._api(
                    "editMessageText",
                    {
                        "chat_id": self.chat_id,
                        "message_id": handle,
                        "text": text,
                        "parse_mode": "Markdown",
                        "disable_web_page_preview": True,
                    },
                )
                return
            except NotificationError as exc:
                if NOT_MODIFIED in str(exc):
                    return
                logger.debug("Progress edit failed, sending new message: {}", exc)
        try:
            await self._send(text)
        except NotificationError as exc:
            logger.warning("Progress update dropped: {}", exc)

