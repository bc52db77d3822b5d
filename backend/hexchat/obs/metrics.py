"""Central registry for Prometheus metrics used by the chat core."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

MESSAGES_RECEIVED = Counter(
	"hexchat_messages_received_total",
	"Broadcast messages merged into a room view",
	["scale"],
)

MESSAGES_DUPLICATE = Counter(
	"hexchat_messages_duplicate_total",
	"Incoming messages dropped because the id was already held",
	["scale"],
)

MESSAGES_SENT = Counter(
	"hexchat_messages_sent_total",
	"Messages sent from this client",
	["scale", "type"],
)

PERSIST_FAILURES = Counter(
	"hexchat_persist_failures_total",
	"Room store writes that failed",
	["op", "kind"],
)

UPLOADS = Counter(
	"hexchat_uploads_total",
	"Blob uploads by result",
	["kind", "result"],
)

PAGINATION = Counter(
	"hexchat_pagination_total",
	"History page fetches by direction and result",
	["direction", "result"],
)

PRESENCE_SYNCS = Counter(
	"hexchat_presence_syncs_total",
	"Full presence snapshots applied",
	["scale"],
)

CHANNELS_ACTIVE = Gauge(
	"hexchat_channels_active",
	"Room channels currently subscribed",
)

CHANNEL_RESUBSCRIBES = Counter(
	"hexchat_channel_resubscribes_total",
	"Full resubscribe cycles after a resume or relocation",
	["reason"],
)

STALE_RESPONSES = Counter(
	"hexchat_stale_responses_total",
	"Fetch results discarded because the room changed underneath them",
	["op"],
)

SUGGESTIONS = Counter(
	"hexchat_suggestions_total",
	"Suggestion board submissions by outcome",
	["result"],
)


def inc_message_received(scale: str) -> None:
	MESSAGES_RECEIVED.labels(scale=scale).inc()


def inc_message_duplicate(scale: str) -> None:
	MESSAGES_DUPLICATE.labels(scale=scale).inc()


def inc_message_sent(scale: str, kind: str) -> None:
	MESSAGES_SENT.labels(scale=scale, type=kind).inc()


def inc_persist_failure(op: str, kind: str) -> None:
	PERSIST_FAILURES.labels(op=op, kind=kind).inc()


def inc_upload(kind: str, result: str) -> None:
	UPLOADS.labels(kind=kind, result=result).inc()


def inc_pagination(direction: str, result: str) -> None:
	PAGINATION.labels(direction=direction, result=result).inc()


def inc_presence_sync(scale: str) -> None:
	PRESENCE_SYNCS.labels(scale=scale).inc()


def channel_subscribed() -> None:
	CHANNELS_ACTIVE.inc()


def channel_unsubscribed() -> None:
	CHANNELS_ACTIVE.dec()


def inc_resubscribe(reason: str) -> None:
	CHANNEL_RESUBSCRIBES.labels(reason=reason).inc()


def inc_stale_response(op: str) -> None:
	STALE_RESPONSES.labels(op=op).inc()


def inc_suggestion(result: str) -> None:
	SUGGESTIONS.labels(result=result).inc()
