# harvester/services/telegram_service.py
import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional

from pyrogram import Client
from pyrogram.errors import FloodWait, RPCError, SessionPasswordNeeded
from pyrogram.types import Message, User

from harvester.config import Settings
from harvester.errors import AuthenticationError, TransientSourceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelIdentity:
    id: int
    username: Optional[str]
    title: Optional[str]
    photo_ref: Optional[str] = None


@contextmanager
def source_errors(action: str):
    """Re-raise pyrogram and network failures as TransientSourceError."""
    try:
        yield
    except FloodWait as e:
        raise TransientSourceError(f"{action}: rate limited for {e.value}s", retry_after=e.value) from e
    except (RPCError, OSError, asyncio.TimeoutError) as e:
        raise TransientSourceError(f"{action}: {e}") from e


class TelegramService:
    def __init__(self, settings: Settings, client: Optional[Client] = None):
        self.channel_username = settings.channel
        self.phone_number = settings.phone_number
        self.password = settings.telegram_password
        self.client = client or Client(
            name=settings.session_name,
            api_id=settings.api_id,
            api_hash=settings.api_hash,
            phone_number=settings.phone_number,
            workdir=settings.session_workdir,
        )
        self.channel_id: Optional[int] = None
        self.is_authorized = False
        self._phone_code_hash: Optional[str] = None

    async def connect(self) -> bool:
        """
        Connect the client. If the stored session is not authorized yet, ask
        Telegram to send a login code to the configured phone number.

        Returns True when the session is already authorized.
        """
        logger.info("Connecting to Telegram...")
        try:
            with source_errors("connect"):
                if not self.client.is_connected:
                    self.is_authorized = await self.client.connect()
                if self.is_authorized:
                    await self._initialize()
                    logger.info("Telegram session is authorized.")
                    return True

                sent_code = await self.client.send_code(self.phone_number)
                self._phone_code_hash = sent_code.phone_code_hash
        except TransientSourceError as e:
            logger.error("Telegram connection failed: %s", e)
            return False

        logger.info("Verification code sent to %s. Submit it with POST /auth/code.", self.phone_number)
        return False

    async def _initialize(self):
        if not self.client.is_initialized:
            await self.client.initialize()

    async def complete_auth(self, code: str) -> ChannelIdentity:
        """Sign in with the code the user received, then resolve the channel."""
        if self._phone_code_hash is None:
            raise AuthenticationError("No login code has been requested for this session.")

        logger.info("Checking login code")
        try:
            try:
                user = await self.client.sign_in(self.phone_number, self._phone_code_hash, code)
            except SessionPasswordNeeded:
                if not self.password:
                    raise AuthenticationError("Two-step verification is enabled; set TELEGRAM_PASSWORD.")
                user = await self.client.check_password(self.password)
        except RPCError as e:
            raise AuthenticationError(f"Login failed: {e}") from e

        if not isinstance(user, User):
            raise AuthenticationError("Phone number is not registered with Telegram.")

        self.is_authorized = True
        self._phone_code_hash = None
        with source_errors("initialize"):
            await self._initialize()
        return await self.resolve_identity()

    async def is_ready(self) -> bool:
        """True once the session is authorized and the channel is resolved."""
        if not self.is_authorized:
            return False
        if self.channel_id is None:
            try:
                await self.resolve_identity()
            except TransientSourceError as e:
                logger.warning("Could not resolve channel %s: %s", self.channel_username, e)
                return False
        return True

    async def resolve_identity(self) -> ChannelIdentity:
        with source_errors(f"resolve {self.channel_username}"):
            chat = await self.client.get_chat(self.channel_username)
        self.channel_id = chat.id
        logger.info("Resolved channel %s to id %s", self.channel_username, chat.id)
        return ChannelIdentity(
            id=chat.id,
            username=chat.username or self.channel_username,
            title=chat.title,
            photo_ref=chat.photo.small_file_id if chat.photo else None,
        )

    async def fetch_since(self, cursor: Optional[int], limit: int = 100) -> List[Message]:
        """
        Return up to ``limit`` messages with an id above ``cursor``, oldest
        first. Without a cursor the newest ``limit`` messages are returned.
        """
        if self.channel_id is None:
            await self.resolve_identity()

        if cursor is None:
            history = self.client.get_chat_history(self.channel_id, limit=limit)
        else:
            # A negative offset asks for the page at and above offset_id, so a
            # backlog is drained from its oldest end one page per call
            history = self.client.get_chat_history(
                self.channel_id, limit=limit, offset_id=cursor + 1, offset=-limit
            )

        page = {}
        with source_errors(f"fetch {self.channel_username}"):
            async for message in history:
                # pyrogram repeats the page when it is shorter than the limit
                if message.id in page:
                    break
                if cursor is None or message.id > cursor:
                    page[message.id] = message

        return [page[message_id] for message_id in sorted(page)][:limit]

    async def disconnect(self):
        if self.client and self.client.is_connected:
            if self.client.is_initialized:
                await self.client.stop()
            else:
                await self.client.disconnect()
