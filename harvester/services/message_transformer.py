# harvester/services/message_transformer.py
"""
Turns raw pyrogram messages into TelegramMessage rows.

Only text, photo and document messages carry something worth keeping; every
other kind, and any message whose text or caption is empty, yields ``None``.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

from pyrogram import enums
from pyrogram.parser.utils import add_surrogates, remove_surrogates
from pyrogram.types import Message, MessageEntity

from harvester.models import TelegramMessage

logger = logging.getLogger(__name__)

# A text message with a link preview still counts as text
TEXT_MEDIA = (None, enums.MessageMediaType.WEB_PAGE)


def extract_first_url(text: str, entities: Optional[Iterable[MessageEntity]]) -> Optional[str]:
    """
    Return the first link embedded in ``text``.

    A ``[label](url)`` link wins over a bare URL span, wherever each appears.
    Within a kind the earliest entity wins. Entity offsets count UTF-16 code
    units, so the bare URL is cut from the surrogate-expanded text.
    """
    if not text or not entities:
        return None

    bare_url = None
    for entity in entities:
        if entity.type == enums.MessageEntityType.TEXT_LINK and entity.url:
            return entity.url
        if entity.type == enums.MessageEntityType.URL and bare_url is None:
            expanded = add_surrogates(text)
            bare_url = remove_surrogates(expanded[entity.offset:entity.offset + entity.length])
    return bare_url


def to_utc(date: Union[datetime, int, float]) -> datetime:
    if isinstance(date, (int, float)):
        return datetime.fromtimestamp(date, tz=timezone.utc)
    if date.tzinfo is None:
        # pyrogram hands out naive local times
        return datetime.fromtimestamp(date.timestamp(), tz=timezone.utc)
    return date.astimezone(timezone.utc)


def transform(message: Message) -> Optional[TelegramMessage]:
    media_url = None
    photo_media_url = None

    if message.media in TEXT_MEDIA:
        text = message.text
        media_url = extract_first_url(text, message.entities)
    elif message.media == enums.MessageMediaType.PHOTO:
        text = message.caption
        # pyrogram's Photo.file_id already points at the largest size
        media_url = message.photo.file_id if message.photo else None
    elif message.media == enums.MessageMediaType.DOCUMENT:
        text = message.caption
        # Documents land in photo_media_url, photos in media_url
        photo_media_url = message.document.file_id if message.document else None
    else:
        logger.debug("Skipping unsupported %s message %s", message.media, message.id)
        return None

    if not text:
        logger.debug("Skipping message %s: no usable text", message.id)
        return None

    return TelegramMessage(
        message_id=message.id,
        channel_id=message.chat.id,
        date=to_utc(message.date),
        text=str(text),
        media_url=media_url,
        photo_media_url=photo_media_url,
    )


def transform_all(messages: Iterable[Message]) -> List[TelegramMessage]:
    records = []
    for message in messages:
        record = transform(message)
        if record is not None:
            records.append(record)
    return records
