import logging

from fastapi import HTTPException

from ..errors import GenerationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def to_http_exception(exc: Exception) -> HTTPException:
	"""Map a service error to a response; the message is passed through verbatim."""
	if isinstance(exc, HTTPException):
		return exc
	if isinstance(exc, ValidationError):
		return HTTPException(status_code=400, detail=str(exc))
	if isinstance(exc, NotFoundError):
		return HTTPException(status_code=404, detail=str(exc))
	if isinstance(exc, GenerationError):
		return HTTPException(status_code=502, detail=str(exc))
	logger.exception("Unhandled error", exc_info=exc)
	return HTTPException(status_code=500, detail=str(exc))
