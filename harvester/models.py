# harvester/models.py
from sqlalchemy import Column, Integer, String, BigInteger, DateTime, Text, func
from .database import Base


class TelegramChannel(Base):
    __tablename__ = "telegram_channels"
    id = Column(Integer, primary_key=True)
    channel_id = Column(BigInteger, unique=True, nullable=False, index=True)
    username = Column(String)
    title = Column(String)
    photo_url = Column(String)


class TelegramMessage(Base):
    __tablename__ = "telegram_messages"
    id = Column(Integer, primary_key=True)
    message_id = Column(BigInteger, unique=True, nullable=False)
    channel_id = Column(BigInteger, index=True, nullable=False)
    date = Column(DateTime(timezone=True), nullable=False)
    text = Column(Text, nullable=False)
    media_url = Column(String)
    photo_media_url = Column(String)
    crawled_at = Column(DateTime(timezone=True), default=func.now())

    def __repr__(self):
        return f"<TelegramMessage message_id={self.message_id} channel_id={self.channel_id}>"
