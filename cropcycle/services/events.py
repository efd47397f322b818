"""Publish crop lifecycle events on the Redis pub/sub channel.

Consumers (notification senders, dashboards) subscribe to the channel; this
module only decides *that* an event happened.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import structlog
from redis.asyncio import Redis

from cropcycle.clock import Clock, utc_now
from cropcycle.config import get_settings
from cropcycle.models.crops import Crop
from cropcycle.models.enums import CropEventEnum

logger = structlog.get_logger("cropcycle.events")


class CropEventPublisher:
	def __init__(self, redis_client: Redis | None = None, clock: Clock = utc_now):
		settings = get_settings()
		self.redis_client = redis_client if settings.publish_events else None
		self.channel = settings.events_channel
		self.clock = clock

	async def publish(
		self,
		event_type: CropEventEnum,
		crops: Sequence[Crop],
		**details: Any,
	) -> dict[str, Any] | None:
		if not crops:
			return None
		lead = crops[0]
		payload: dict[str, Any] = {
			"event_type": event_type.value,
			"crop_id": str(lead.id),
			"recipe_id": str(lead.recipe_id),
			"crop_ids": [str(crop.id) for crop in crops],
			"tray_numbers": [crop.tray_number for crop in crops],
			"emitted_at": self.clock().isoformat(),
		}
		payload.update({key: _jsonable(value) for key, value in details.items()})

		if self.redis_client is None:
			return payload
		try:
			await self.redis_client.publish(self.channel, json.dumps(payload))
		except Exception as exc:
			# Publishing never fails the calling operation.
			logger.warning(
				"crop_event_publish_failed",
				event_type=event_type.value,
				crop_id=str(lead.id),
				error=str(exc),
			)
		return payload


def _jsonable(value: Any) -> Any:
	if hasattr(value, "isoformat"):
		return value.isoformat()
	if isinstance(value, (list, tuple)):
		return [_jsonable(item) for item in value]
	if value is None or isinstance(value, (str, int, float, bool, dict)):
		return value
	return str(value)
