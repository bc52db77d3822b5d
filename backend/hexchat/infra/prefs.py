"""Client-local preferences persisted as a small JSON document."""

from __future__ import annotations

import json
import logging
import random
import secrets
import string
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from hexchat.settings import settings

logger = logging.getLogger(__name__)

RECENT_EMOJI_LIMIT = 24
DISPLAY_NAME_MAX = 20

RANDOM_NAMES = (
	"Wandering Star",
	"Aurora Walker",
	"Deep Diver",
	"Cyber Poet",
	"Night Phantom",
	"Neon Courier",
	"Void Watcher",
	"Gravity Rebel",
	"Lightspeed Post",
	"Quantum Knot",
	"Cloud Stroller",
	"Pixel Ronin",
	"Electric Moth",
	"Spectrum Rover",
	"Dark Matter",
	"Critical Point",
	"Wave Function",
	"Singularity",
	"Silicon Life",
	"Orbital Barista",
	"Event Horizon",
	"Neutron Star",
	"Pulse Signal",
	"Morning Light",
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


class ClientPrefs(BaseModel):
	model_config = ConfigDict(extra="ignore", validate_assignment=True)

	user_id: Optional[str] = None
	user_name: Optional[str] = None
	avatar_seed: Optional[str] = None
	last_location: Optional[Tuple[float, float]] = None
	theme: str = "dark"
	font_size: int = Field(default=14, ge=10, le=28)
	chat_panel_width: int = Field(default=420, ge=240, le=1600)
	last_suggestion_submit_time: Optional[int] = None
	recent_emojis: List[str] = Field(default_factory=list)

	@field_validator("recent_emojis")
	@classmethod
	def _cap_recent(cls, value: List[str]) -> List[str]:
		return value[:RECENT_EMOJI_LIMIT]

	@field_validator("last_location")
	@classmethod
	def _valid_location(cls, value: Optional[Tuple[float, float]]) -> Optional[Tuple[float, float]]:
		if value is None:
			return None
		lat, lng = value
		if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
			raise ValueError("location out of range")
		return value


def random_user_id(length: int = 6) -> str:
	return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def random_display_name(rng: Optional[random.Random] = None) -> str:
	return (rng or random).choice(RANDOM_NAMES)


def normalise_display_name(value: str) -> Optional[str]:
	name = " ".join(value.split())
	if not name or len(name) > DISPLAY_NAME_MAX:
		return None
	return name


class PrefsStore:
	def __init__(self, path: Optional[Path] = None) -> None:
		self.path = Path(path) if path is not None else Path(settings.prefs_path).expanduser()

	def load(self) -> ClientPrefs:
		if not self.path.exists():
			return ClientPrefs()
		try:
			raw = json.loads(self.path.read_text(encoding="utf-8"))
			return ClientPrefs.model_validate(raw)
		except (OSError, ValueError, ValidationError) as exc:
			logger.warning("ignoring unreadable prefs at %s: %s", self.path, exc)
			return ClientPrefs()

	def save(self, prefs: ClientPrefs) -> None:
		self.path.parent.mkdir(parents=True, exist_ok=True)
		tmp = self.path.with_suffix(self.path.suffix + ".tmp")
		tmp.write_text(prefs.model_dump_json(indent=2), encoding="utf-8")
		tmp.replace(self.path)

	def update(self, **changes) -> ClientPrefs:
		prefs = self.load()
		for key, value in changes.items():
			setattr(prefs, key, value)
		self.save(prefs)
		return prefs

	def remember_emoji(self, emoji: str) -> ClientPrefs:
		prefs = self.load()
		recent = [emoji] + [item for item in prefs.recent_emojis if item != emoji]
		return self.update(recent_emojis=recent[:RECENT_EMOJI_LIMIT])

	def ensure_identity(self) -> ClientPrefs:
		"""Create the anonymous id, avatar seed and display name on first run."""
		prefs = self.load()
		changes = {}
		if not prefs.user_id:
			changes["user_id"] = random_user_id()
		if not prefs.avatar_seed:
			changes["avatar_seed"] = secrets.token_hex(8)
		if not prefs.user_name:
			changes["user_name"] = random_display_name()
		if not changes:
			return prefs
		return self.update(**changes)
