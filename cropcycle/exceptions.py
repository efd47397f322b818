"""Domain errors raised by the lifecycle services and mapped at the HTTP edge."""

from __future__ import annotations


class CropValidationError(ValueError):
	"""One or more data-integrity rules failed; nothing was written."""

	def __init__(self, errors: list[str] | str) -> None:
		self.errors = [errors] if isinstance(errors, str) else list(errors)
		super().__init__("; ".join(self.errors))


class SequenceViolationError(CropValidationError):
	"""Stage timestamps are out of chronological order."""


class UnknownReferenceError(LookupError):
	"""A crop, recipe or stage identifier does not exist."""

	def __init__(self, kind: str, identifier: object) -> None:
		self.kind = kind
		self.identifier = identifier
		super().__init__(f"{kind.capitalize()} {identifier} not found")


class InventoryUnavailableError(RuntimeError):
	"""The lot availability service could not be reached or answered badly."""
