# harvester/repository.py
import logging
import math
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from harvester.errors import PersistenceError
from harvester.models import TelegramChannel, TelegramMessage

logger = logging.getLogger(__name__)


class TelegramRepository:
    """Stores channels and messages. Inserts skip rows that already exist."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _session(self) -> Session:
        return self.session_factory()

    def save_channel(self, channel: TelegramChannel) -> bool:
        with self._session() as db:
            try:
                exists = db.query(TelegramChannel.id).filter(
                    TelegramChannel.channel_id == channel.channel_id
                ).first()
                if exists:
                    return False
                db.add(channel)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Could not save channel {channel.channel_id}: {e}") from e
        logger.info("Saved channel %s (%s)", channel.channel_id, channel.title)
        return True

    def save_messages(self, messages: Sequence[TelegramMessage]) -> int:
        if not messages:
            return 0

        with self._session() as db:
            try:
                found_ids = [m.message_id for m in messages]
                existing_ids_q = db.query(TelegramMessage.message_id).filter(
                    TelegramMessage.message_id.in_(found_ids)
                )
                seen = {res[0] for res in existing_ids_q.all()}

                final_messages = []
                for m in messages:
                    if m.message_id in seen:
                        continue
                    seen.add(m.message_id)
                    final_messages.append(m)

                if final_messages:
                    db.add_all(final_messages)
                    db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Could not save {len(messages)} messages: {e}") from e

        logger.debug("Stored %d of %d messages", len(final_messages), len(messages))
        return len(final_messages)

    def get_last_stored_message_id(self, channel_id: int) -> Optional[int]:
        with self._session() as db:
            try:
                return db.query(func.max(TelegramMessage.message_id)).filter(
                    TelegramMessage.channel_id == channel_id
                ).scalar()
            except SQLAlchemyError as e:
                raise PersistenceError(f"Could not read cursor for channel {channel_id}: {e}") from e

    # --- Read side for the HTTP API ---

    def get_channel(self, channel_id: int) -> Optional[TelegramChannel]:
        with self._session() as db:
            try:
                return db.query(TelegramChannel).filter(TelegramChannel.channel_id == channel_id).first()
            except SQLAlchemyError as e:
                raise PersistenceError(f"Could not read channel {channel_id}: {e}") from e

    def paginate_messages(
        self, page: int, per_page: int, channel_id: Optional[int] = None
    ) -> Tuple[List[TelegramMessage], int]:
        """Newest first. Returns the page and the total page count (at least 1)."""
        with self._session() as db:
            query = db.query(TelegramMessage)
            if channel_id is not None:
                query = query.filter(TelegramMessage.channel_id == channel_id)
            try:
                total = query.count()
                messages = (
                    query.order_by(TelegramMessage.date.desc(), TelegramMessage.message_id.desc())
                    .offset((page - 1) * per_page)
                    .limit(per_page)
                    .all()
                )
            except SQLAlchemyError as e:
                raise PersistenceError(f"Could not page messages: {e}") from e
        return messages, max(1, math.ceil(total / per_page))
