from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from txgate.exception import ErrorKind, InvalidOperation
from txgate.gateway import Gateway
from txgate.handlers import Response
from txgate.operations import Operation, ServerStatus

HTTP_STATUS = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.STATEMENT_ERROR: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.COMMIT_FAILED: 409,
    ErrorKind.RESOURCE_EXHAUSTED: 429,
    ErrorKind.CONNECTION_ERROR: 503,
}


class ResultResponse(JSONResponse):
    """JSON response that renders dates, decimals, and other database
    values as strings"""

    def render(self, content: Any) -> bytes:
        return json.dumps(
            content, ensure_ascii=False, default=str, separators=(",", ":")
        ).encode("utf-8")


def to_http(response: Response) -> ResultResponse:
    status_code = HTTP_STATUS.get(response.kind, 500) if response.kind else 200
    return ResultResponse(response.to_dict(), status_code=status_code)


def create_app(gateway: Gateway) -> Starlette:
    """Expose the gateway operations over HTTP

    Routes:
        POST /operations/{name}: run the named operation with the JSON
            body as its arguments
        GET /status: same as the `server_status` operation
    """

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await gateway.start()
        try:
            yield
        finally:
            await gateway.shutdown(gateway.fault or "shutdown")

    async def run_operation(request: Request) -> ResultResponse:
        name = request.path_params["name"]
        body = await request.body()
        try:
            payload = json.loads(body) if body.strip() else {}
        except ValueError:
            return to_http(
                Response.failure(InvalidOperation("Body must be valid JSON"))
            )
        try:
            operation = Operation.parse(name, payload)
        except InvalidOperation as e:
            return to_http(Response.failure(e))
        return to_http(await gateway.handler(operation))

    async def status(request: Request) -> ResultResponse:
        return to_http(await gateway.handler(ServerStatus()))

    app = Starlette(
        routes=[
            Route("/operations/{name}", run_operation, methods=["POST"]),
            Route("/status", status, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
    app.state.gateway = gateway
    return app
