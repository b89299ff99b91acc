"""OpenAPI customization.

Adds the ``X-API-Key`` security scheme and tag descriptions, and marks
only the admin operations (rules, stats, state) as requiring the key.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

ADMIN_PATH_PREFIXES = ("/v1/rules", "/v1/stats", "/v1/state")

TAGS_METADATA = [
    {"name": "Decisions", "description": "Admission decisions for normalized requests."},
    {"name": "Rules", "description": "Create, update and remove rate limit rules."},
    {"name": "Stats", "description": "Decision statistics and their reset."},
    {"name": "State", "description": "Per-key algorithm state maintenance."},
    {"name": "Health", "description": "Liveness checks."},
]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch ``app.openapi`` to add the security scheme and tags."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {}).setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Admin API key (APP_API_KEYS).",
            },
        )

        tags = schema.setdefault("tags", [])
        existing = {t.get("name") for t in tags}
        tags.extend(t for t in TAGS_METADATA if t["name"] not in existing)

        for path, methods in schema.get("paths", {}).items():
            if not path.startswith(ADMIN_PATH_PREFIXES):
                continue
            for operation in methods.values():
                if isinstance(operation, dict):
                    operation["security"] = [{"ApiKeyAuth": []}]

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
