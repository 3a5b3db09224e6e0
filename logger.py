# ===========================================================
# logger.py
# ===========================================================
import traceback

import sentry_sdk
from fastapi import Request
from fastapi.responses import JSONResponse

# Import central logger from logging_setup
from logging_setup import logger, SENTRY_DSN


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Last-resort handler for anything a route did not translate:
    logs the traceback, forwards it to Sentry and answers a generic 500.
    """
    logger.error(
        "Unhandled exception on %s %s:\n%s",
        request.method,
        request.url.path,
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )

    if SENTRY_DSN:
        sentry_sdk.capture_exception(exc)

    return JSONResponse(status_code=500, content={"error": "Internal server error"})
