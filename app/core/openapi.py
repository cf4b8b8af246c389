"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Tags metadata
- API Key security scheme (``X-API-Key``) applied to the admin endpoints
- The ``API_KEY`` rate limiting header, documented as an optional
  parameter on every rate limited operation

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from app.core.config import settings
from app.core.rate_limit import is_exempt_path

_ADMIN_PATH_PREFIX = "/v1/limits"


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
            "AdminApiKey",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Operator key required by the /v1/limits endpoints.",
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "Root", "description": "Sample resource behind the rate limiter."},
            {"name": "Limits", "description": "Inspect and reset limiter records."},
            {"name": "Health", "description": "Liveness and backend checks."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        token_header = {
            "name": settings.rate_limit.rate_limit_token_header,
            "in": "header",
            "required": False,
            "schema": {"type": "string"},
            "description": "API token; when present the per-token budget applies instead of the per-IP one.",
        }

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.startswith(_ADMIN_PATH_PREFIX):
                    method_obj["security"] = [{"AdminApiKey": []}]
                if not is_exempt_path(path):
                    method_obj.setdefault("parameters", []).append(token_header)
                    method_obj.setdefault("responses", {}).setdefault(
                        "429", {"description": "Rate limit exceeded; the identifier is blocked."}
                    )

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
