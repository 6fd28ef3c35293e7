"""Request metadata passed explicitly into the authorization core."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request


@dataclass(frozen=True)
class RequestContext:
    method: str | None = None
    path: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        client = request.client
        return cls(
            method=request.method,
            path=request.url.path,
            ip_address=client.host if client else None,
            user_agent=request.headers.get("user-agent"),
            request_id=request.headers.get("x-request-id"),
        )


EMPTY_CONTEXT = RequestContext()
