"""User-facing notices for recoverable failures."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set

logger = logging.getLogger(__name__)


class NoticeCode(str, Enum):
	GEO_FALLBACK = "geo_fallback"
	SCHEMA_MISMATCH = "schema_mismatch"
	UPLOAD_FAILED = "upload_failed"
	ATTACHMENT_REJECTED = "attachment_rejected"
	ADMIN_REJECTED = "admin_rejected"
	SUGGESTION_FAILED = "suggestion_failed"


# Shown at most once per session
_ONE_TIME = {NoticeCode.GEO_FALLBACK, NoticeCode.SCHEMA_MISMATCH}

_MESSAGES = {
	NoticeCode.GEO_FALLBACK: "Location unavailable; using an approximate default for your timezone.",
	NoticeCode.SCHEMA_MISMATCH: "The message table is missing columns. Apply the latest database migration.",
	NoticeCode.UPLOAD_FAILED: "Upload failed; the message was not sent.",
	NoticeCode.ATTACHMENT_REJECTED: "Attachment rejected.",
	NoticeCode.ADMIN_REJECTED: "Wrong admin password.",
	NoticeCode.SUGGESTION_FAILED: "Suggestion could not be sent.",
}


@dataclass(frozen=True, slots=True)
class Notice:
	code: NoticeCode
	message: str
	blocking: bool = False
	detail: Optional[str] = None


NoticeListener = Callable[[Notice], None]


class NoticeBoard:
	def __init__(self) -> None:
		self.history: List[Notice] = []
		self._listeners: List[NoticeListener] = []
		self._shown: Set[NoticeCode] = set()

	def add_listener(self, listener: NoticeListener) -> None:
		self._listeners.append(listener)

	def remove_listener(self, listener: NoticeListener) -> None:
		if listener in self._listeners:
			self._listeners.remove(listener)

	def emit(self, code: NoticeCode, *, detail: Optional[str] = None, blocking: bool = False) -> Optional[Notice]:
		if code in _ONE_TIME and code in self._shown:
			return None
		self._shown.add(code)
		notice = Notice(code=code, message=_MESSAGES[code], blocking=blocking, detail=detail)
		self.history.append(notice)
		logger.info("notice code=%s blocking=%s detail=%s", code.value, blocking, detail)
		for listener in list(self._listeners):
			listener(notice)
		return notice

	def codes(self) -> List[NoticeCode]:
		return [notice.code for notice in self.history]
