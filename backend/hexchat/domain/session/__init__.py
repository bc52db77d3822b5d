"""Session domain exports."""

from .channel import RoomChannel
from .notices import Notice, NoticeBoard, NoticeCode
from .service import ChatSession, Identity

__all__ = ["ChatSession", "Identity", "Notice", "NoticeBoard", "NoticeCode", "RoomChannel"]
