"""
Security headers middleware.

Applies Content-Security-Policy, X-Content-Type-Options, X-Frame-Options,
Strict-Transport-Security, Referrer-Policy, and Permissions-Policy headers
to every response.

The public approval surface (``/approval/<token>``) additionally gets
``Referrer-Policy: no-referrer`` and ``Cache-Control: no-store`` so the
token in the URL is neither forwarded to third parties nor cached.

Usage:
    from app.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

PUBLIC_APPROVAL_PREFIX = "/approval/"


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    from flask import request

    @app.after_request
    def _add_security_headers(response):
        # JSON API only; nothing is framed or scripted
        response.headers.setdefault(
            "Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'"
        )

        # Prevent MIME-type sniffing
        response.headers.setdefault("X-Content-Type-Options", "nosniff")

        # Clickjacking protection
        response.headers.setdefault("X-Frame-Options", "DENY")

        # HTTPS enforcement (ignored over HTTP, but ready for production)
        response.headers.setdefault(
            "Strict-Transport-Security", "max-age=31536000; includeSubDomains"
        )

        if request.path.startswith(PUBLIC_APPROVAL_PREFIX):
            response.headers["Referrer-Policy"] = "no-referrer"
            response.headers["Cache-Control"] = "no-store"
        else:
            response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")

        # Permissions policy: disable dangerous browser features
        response.headers.setdefault(
            "Permissions-Policy",
            "camera=(), microphone=(), geolocation=(), payment=()"
        )

        # Remove server identification
        response.headers.pop("Server", None)

        return response
