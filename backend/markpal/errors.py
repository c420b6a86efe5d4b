from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class MarkpalError(Exception):
	"""Base for errors that are surfaced to API callers as a structured body."""

	code = "INTERNAL_ERROR"
	status_code = 500
	default_message = "Something went wrong"

	def __init__(self, message: Optional[str] = None) -> None:
		super().__init__(message or self.default_message)
		self.message = message or self.default_message


class InvalidRequestError(MarkpalError):
	code = "INVALID_REQUEST"
	status_code = 400
	default_message = "Invalid request"


class MalformedMarkSchemeError(MarkpalError):
	code = "MALFORMED_MARK_SCHEME"
	status_code = 400
	default_message = "No scorable points could be identified in the mark scheme"


class MarkingEngineError(MarkpalError):
	code = "MARKING_FAILED"
	status_code = 502
	default_message = "Could not mark answer, try again"


class QuotaExceededError(MarkpalError):
	code = "NO_QUESTIONS_LEFT"
	status_code = 403
	default_message = "No questions remaining. Please upgrade your plan to continue."


class TierRequiredError(MarkpalError):
	code = "UPGRADE_REQUIRED"
	status_code = 403
	default_message = "Your plan does not include exam paper uploads. Please upgrade to access this feature."


class SpanNotFoundWarning(UserWarning):
	"""A proposed highlight could not be located in the student's answer."""


def error_body(message: str, code: Optional[str] = None) -> Dict[str, Any]:
	body: Dict[str, Any] = {"success": False, "error": message}
	if code:
		body["code"] = code
	return body


_HTTP_CODES = {
	400: "INVALID_REQUEST",
	401: "UNAUTHORIZED",
	403: "FORBIDDEN",
	404: "NOT_FOUND",
	405: "METHOD_NOT_ALLOWED",
	409: "CONFLICT",
	429: "RATE_LIMITED",
}


def install_error_handlers(app: FastAPI) -> None:
	@app.exception_handler(MarkpalError)
	async def _markpal_error(request: Request, exc: MarkpalError):
		return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.code))

	@app.exception_handler(StarletteHTTPException)
	async def _http_error(request: Request, exc: StarletteHTTPException):
		message = exc.detail if isinstance(exc.detail, str) else "Request failed"
		return JSONResponse(
			status_code=exc.status_code,
			content=error_body(message, _HTTP_CODES.get(exc.status_code, "ERROR")),
			headers=getattr(exc, "headers", None),
		)

	@app.exception_handler(RequestValidationError)
	async def _validation_error(request: Request, exc: RequestValidationError):
		fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()})
		message = "Missing or invalid fields: " + ", ".join(f for f in fields if f) if fields else "Invalid request"
		return JSONResponse(status_code=422, content=error_body(message, "INVALID_REQUEST"))

	@app.exception_handler(Exception)
	async def _unexpected_error(request: Request, exc: Exception):
		logger.exception("Unhandled error on %s %s", request.method, request.url.path)
		return JSONResponse(status_code=500, content=error_body("Internal server error", "INTERNAL_ERROR"))
