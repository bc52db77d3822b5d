"""Policy errors for caller misuse of the chat core."""

from __future__ import annotations


class ChatPolicyError(RuntimeError):
	def __init__(self, code: str, *, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.detail = message or code


def ensure_admin(is_admin: bool, action: str) -> None:
	if not is_admin:
		raise ChatPolicyError(f"admin_required:{action}")


def ensure_author(user_id: str, author_id: str, *, is_admin: bool = False) -> None:
	if user_id != author_id and not is_admin:
		raise ChatPolicyError("not_author")
