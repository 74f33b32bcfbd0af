# ErrorEnvelopeMiddleware
import logging
import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger(__name__)


class ErrorEnvelopeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        start = time.time()
        request_id = request.headers.get("x-request-id", str(uuid.uuid4())[:8])
        try:
            response: Response = await call_next(request)
        except Exception as exc:
            logger.exception("Unhandled error on %s %s [%s]", request.method, request.url.path, request_id)
            return JSONResponse(
                status_code=500,
                content={"error": str(exc), "path": str(request.url), "request_id": request_id},
                headers={"x-request-id": request_id},
            )
        response.headers.setdefault("x-request-id", request_id)
        response.headers.setdefault("x-content-type-options", "nosniff")
        response.headers["server-timing"] = f"total;dur={(time.time() - start) * 1000:.2f}"
        return response
