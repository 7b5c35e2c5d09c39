from starlette.types import ASGIApp, Receive, Scope, Send


def forwarded_client(x_forwarded_for: str, proxies_count: int) -> str | None:
    """Client address from ``X-Forwarded-For`` when ``proxies_count`` trailing hops are trusted."""
    hops = [hop.strip() for hop in x_forwarded_for.split(",") if hop.strip()]
    if proxies_count <= 0 or len(hops) <= proxies_count:
        return None
    return hops[-(proxies_count + 1)]


class TrustedProxiesMiddleware:
    """Rewrite ``scope["client"]`` so rate limiting and logs see the caller, not the load balancer."""

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            headers = dict(scope.get("headers", []))
            client = forwarded_client(headers.get(b"x-forwarded-for", b"").decode(), self.proxies_count)
            if client:
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (client, port)
        await self.app(scope, receive, send)
