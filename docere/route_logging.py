from __future__ import annotations

from contextvars import ContextVar

from fastapi.routing import APIRoute
from starlette.requests import Request


# Read by the slow-query hook in docere.db; jobs and websocket streams keep the default.
current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')


class EndpointNameRoute(APIRoute):
    """Tags each request with ``METHOD /path`` so slow-query logs name the endpoint."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()
        label = f"{','.join(sorted(self.methods or ()))} {self.path}"

        async def custom_handler(request: Request):
            token = current_endpoint.set(label)
            try:
                return await original_handler(request)
            finally:
                current_endpoint.reset(token)

        return custom_handler
