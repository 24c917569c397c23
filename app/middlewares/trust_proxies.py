from starlette.types import ASGIApp, Receive, Scope, Send


class TrustedProxiesMiddleware:
    """Rewrite ``scope["client"]`` from X-Forwarded-For, trusting ``proxies_count`` hops.

    The audit trail and the rate limiter both read ``request.client.host``.
    """

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    def _client_ip(self, forwarded_for: str) -> str | None:
        # "client, proxy1, proxy2": with N trusted proxies the client sits at -(N+1)
        ips = [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]
        if len(ips) > self.proxies_count:
            return ips[-(self.proxies_count + 1)]
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.proxies_count > 0:
            headers = dict(scope.get("headers", []))
            forwarded_for = headers.get(b"x-forwarded-for", b"").decode()
            real_ip = self._client_ip(forwarded_for) if forwarded_for else None
            if real_ip:
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (real_ip, port)

        await self.app(scope, receive, send)
