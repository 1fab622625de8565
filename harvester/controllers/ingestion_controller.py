# harvester/controllers/ingestion_controller.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from harvester.errors import HarvesterError
from harvester.models import TelegramChannel
from harvester.repository import TelegramRepository
from harvester.services.message_transformer import transform_all
from harvester.services.telegram_service import ChannelIdentity, TelegramService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    new_cursor: Optional[int]
    had_new_data: bool
    fetched: int = 0
    stored: int = 0
    error: Optional[HarvesterError] = None


class IngestionController:
    """One fetch -> transform -> store pass over the harvested channel."""

    def __init__(self, telegram_service: TelegramService, repository: TelegramRepository, page_size: int = 100):
        self.telegram_service = telegram_service
        self.repository = repository
        self.page_size = page_size

    async def save_identity(self, identity: ChannelIdentity) -> None:
        channel = TelegramChannel(
            channel_id=identity.id,
            username=identity.username,
            title=identity.title,
            photo_url=identity.photo_ref,
        )
        await asyncio.to_thread(self.repository.save_channel, channel)

    async def prepare(self) -> Optional[int]:
        """Resolve the channel, make sure it is stored, and return the starting cursor."""
        identity = await self.telegram_service.resolve_identity()
        await self.save_identity(identity)
        cursor = await asyncio.to_thread(self.repository.get_last_stored_message_id, identity.id)
        logger.info("Last stored message id for channel %s: %s", identity.id, cursor)
        return cursor

    async def complete_auth(self, code: str) -> ChannelIdentity:
        identity = await self.telegram_service.complete_auth(code)
        await self.save_identity(identity)
        return identity

    async def run_cycle(self, since_cursor: Optional[int]) -> CycleResult:
        messages = await self.telegram_service.fetch_since(since_cursor, limit=self.page_size)
        records = transform_all(messages)
        stored = await asyncio.to_thread(self.repository.save_messages, records)

        new_cursor = since_cursor
        if records:
            newest_id = max(r.message_id for r in records)
            if since_cursor is None or newest_id > since_cursor:
                new_cursor = newest_id

        logger.info(
            "Fetched %d, kept %d, stored %d new messages (cursor %s -> %s)",
            len(messages), len(records), stored, since_cursor, new_cursor,
        )
        return CycleResult(
            new_cursor=new_cursor,
            had_new_data=new_cursor != since_cursor,
            fetched=len(messages),
            stored=stored,
        )
