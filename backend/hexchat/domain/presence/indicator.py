"""Local typing indicator with idle auto-clear."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Callable, Optional

from hexchat.settings import settings

logger = logging.getLogger(__name__)

Publisher = Callable[[bool], Awaitable[None]]


class TypingDebouncer:
	"""Publishes ``True`` on the first keystroke after idle and ``False`` once
	``idle_seconds`` pass without another keystroke."""

	def __init__(self, publish: Publisher, *, idle_seconds: Optional[float] = None) -> None:
		self._publish = publish
		self.idle_seconds = settings.typing_idle_seconds if idle_seconds is None else idle_seconds
		self.is_typing = False
		self._idle_task: Optional[asyncio.Task] = None

	async def keystroke(self) -> None:
		self._cancel_idle()
		self._idle_task = asyncio.create_task(self._clear_after_idle(), name="typing-idle")
		if self.is_typing:
			return
		self.is_typing = True
		await self._publish(True)

	async def _clear_after_idle(self) -> None:
		await asyncio.sleep(self.idle_seconds)
		self._idle_task = None
		if not self.is_typing:
			return
		self.is_typing = False
		await self._publish(False)

	def _cancel_idle(self) -> None:
		task = self._idle_task
		self._idle_task = None
		if task is not None and not task.done():
			task.cancel()

	async def stop(self, *, publish: bool = True) -> None:
		task = self._idle_task
		self._cancel_idle()
		if task is not None:
			with suppress(asyncio.CancelledError):
				await task
		if self.is_typing:
			self.is_typing = False
			if publish:
				await self._publish(False)
