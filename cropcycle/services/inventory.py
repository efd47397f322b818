"""Read-only client for seed lot availability in the inventory service."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from cropcycle.config import get_settings
from cropcycle.exceptions import InventoryUnavailableError, UnknownReferenceError

logger = structlog.get_logger("cropcycle.inventory")


class InventoryLotClient:
	"""Answers "is this lot exhausted?"; depletion itself is computed upstream.

	With no ``inventory_base_url`` configured every lot is treated as
	available, which is how single-site installs without an inventory
	service run.
	"""

	def __init__(self, base_url: str | None = None, timeout_seconds: float | None = None):
		settings = get_settings()
		self.base_url = (base_url if base_url is not None else settings.inventory_base_url).rstrip("/")
		self.timeout_seconds = timeout_seconds or settings.inventory_timeout_seconds

	@property
	def enabled(self) -> bool:
		return bool(self.base_url)

	async def is_lot_depleted(self, lot_number: str) -> bool:
		if not self.enabled:
			return False
		payload = await self._fetch_lot(lot_number)
		return self.parse_depleted(payload)

	async def _fetch_lot(self, lot_number: str) -> dict[str, Any]:
		url = f"{self.base_url}/lots/{lot_number}"
		try:
			async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
				response = await client.get(url)
				if response.status_code == 404:
					raise UnknownReferenceError("lot", lot_number)
				response.raise_for_status()
				payload = response.json()
		except httpx.HTTPError as exc:
			logger.warning("inventory_lookup_failed", lot_number=lot_number, error=str(exc))
			raise InventoryUnavailableError(f"Inventory lookup for lot {lot_number} failed") from exc
		except ValueError as exc:
			raise InventoryUnavailableError(f"Inventory returned invalid JSON for lot {lot_number}") from exc

		if not isinstance(payload, dict):
			raise InventoryUnavailableError(f"Inventory returned an unexpected body for lot {lot_number}")
		return payload

	@staticmethod
	def parse_depleted(payload: dict[str, Any]) -> bool:
		if "depleted" in payload:
			return bool(payload["depleted"])
		remaining = payload.get("available_quantity")
		try:
			return float(remaining) <= 0
		except (TypeError, ValueError):
			return False
