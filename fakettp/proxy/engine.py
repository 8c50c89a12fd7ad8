"""Catch-all route for fakettp.

Every path and every method lands here and is handed to the Dispatcher held
in ``app.state.dispatcher``. The endpoint looks the dispatcher up per request,
so a config reload (which swaps in a new Dispatcher) applies to the next
request without restarting the server.

The endpoint is a plain ASGI callable rather than a function: Starlette only
enforces a method list on function endpoints, so WebDAV and custom verbs
(``PROPFIND``, ``PURGE``) reach the Dispatcher like any other request.
"""

from __future__ import annotations

from starlette.requests import Request
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from fakettp.proxy.dispatcher import Dispatcher


class DispatchEndpoint:
    """ASGI endpoint: hyjack or forward one request."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive, send)
        dispatcher: Dispatcher = request.app.state.dispatcher
        response = await dispatcher.dispatch(request)
        await response(scope, receive, send)


routes: list[Route] = [
    Route("/{path:path}", endpoint=DispatchEndpoint(), include_in_schema=False),
]
