"""Translate domain exceptions into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from cropcycle.exceptions import CropValidationError, InventoryUnavailableError


def map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, CropValidationError):
		return HTTPException(
			status_code=status.HTTP_400_BAD_REQUEST,
			detail={"message": str(exc), "errors": exc.errors},
		)
	if isinstance(exc, LookupError):
		return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
	if isinstance(exc, ValueError):
		return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
	if isinstance(exc, InventoryUnavailableError):
		return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
	return HTTPException(
		status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
		detail="Unexpected crop service failure",
	)
