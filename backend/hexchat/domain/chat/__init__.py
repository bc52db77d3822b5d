"""Chat domain exports."""

from .models import Message, ReplyRef, RoomState, UserPresence
from .store import RoomStore, StoreError
from .sync import RoomSync, SyncState

__all__ = [
	"Message",
	"ReplyRef",
	"RoomState",
	"RoomStore",
	"RoomSync",
	"StoreError",
	"SyncState",
	"UserPresence",
]
