"""Security headers middleware.

Learn: Adds standard security headers to every response:
- X-Content-Type-Options: prevents MIME-type sniffing
- X-Frame-Options: the login form must never be framed (clickjacking)
- Referrer-Policy: OAuth callbacks carry codes in the query string;
  don't leak them to third parties
- Strict-Transport-Security: forces HTTPS (only on HTTPS connections)

Responses from the authentication entry points also get
Cache-Control: no-store, so a shared cache never replays a login page,
a provider redirect, or a response that sets the session cookie.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    def __init__(self, app, no_store_prefixes: tuple[str, ...] = ()):
        super().__init__(app)
        self.no_store_prefixes = no_store_prefixes

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "same-origin"
        if request.url.path.startswith(self.no_store_prefixes):
            response.headers["Cache-Control"] = "no-store"
        # Only add HSTS on HTTPS connections
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response
