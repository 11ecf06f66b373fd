import logging
import time
import uuid
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from arenaapi.logging_config import request_id_var

logger = logging.getLogger("arenaapi")

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """요청/응답 로깅 + 요청 ID 전파"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        token = request_id_var.set(request_id)
        method = request.method
        path = request.url.path
        client = request.client.host if request.client else "-"

        try:
            logger.info(f"{method} {path} from {client}")
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(f"unhandled error in {method} {path}")
                raise

            duration_ms = (time.time() - start) * 1000
            message = f"{method} {path} -> {response.status_code} in {duration_ms:.1f}ms"
            if response.status_code >= 500:
                logger.error(message)
            elif response.status_code >= 400:
                logger.warning(message)
            else:
                logger.info(message)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
