"""
Utility script to generate and write the OpenAPI schema for the FastAPI app.

This script imports the FastAPI application instance and serializes its OpenAPI
schema to the interfaces/openapi.json file so that API clients (including the
browser UI) and documentation tools can consume a stable contract without
running the server.

Usage:
    python -m src.api.generate_openapi

Notes:
- The script ensures the 'notes' tag is present in the OpenAPI tags metadata.
- Default output path is relative to the container root: interfaces/openapi.json
"""
from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

from .main import app, openapi_tags


def _ensure_tags(schema: Dict[str, Any]) -> None:
    """
    Ensure the OpenAPI schema carries the expected tags metadata without
    overriding tag definitions that are already present.
    """
    existing_tags: List[Dict[str, Any]] = schema.get("tags", []) or []
    existing_names = {t.get("name") for t in existing_tags if isinstance(t, dict)}
    for tag in openapi_tags:
        if tag.get("name") not in existing_names:
            existing_tags.append(tag)
    if existing_tags:
        schema["tags"] = existing_tags


def default_output_path() -> str:
    # <container_root>/interfaces/openapi.json, container root being the parent of src/
    src_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.path.join(os.path.dirname(src_dir), "interfaces", "openapi.json")


# PUBLIC_INTERFACE
def generate_openapi(out_path: Optional[str] = None) -> str:
    """Write the OpenAPI schema to ``out_path`` (or the default location) and return the path."""
    schema = app.openapi()
    _ensure_tags(schema)

    out_path = out_path or default_output_path()
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(schema, f, indent=2, ensure_ascii=False)
    return out_path


def main() -> None:
    print(f"Wrote OpenAPI schema to: {generate_openapi()}")


if __name__ == "__main__":
    main()
