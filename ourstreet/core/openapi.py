"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- A bearer token security scheme required by the admin endpoints
- Tags metadata
- 429 responses on rate limited operations

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMITED_PREFIXES = ("/api/",)


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "BearerAuth",
            {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Token issued by /api/auth/login.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "Auth", "description": "Login and token refresh."},
            {"name": "Admin", "description": "Audit log queries and export (admin role)."},
            {"name": "Health", "description": "Liveness checks."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.startswith("/api/admin/"):
                    method_obj["security"] = [{"BearerAuth": []}]
                if path.startswith(_RATE_LIMITED_PREFIXES):
                    method_obj.setdefault("responses", {}).setdefault(
                        "429",
                        {"description": "Rate limit exceeded; see Retry-After."},
                    )

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
