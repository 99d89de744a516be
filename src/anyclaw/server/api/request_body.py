"""Narrow parsing of opaque JSON request bodies."""

import json
from typing import Any

from fastapi import HTTPException, Request


async def read_json_body(request: Request, invalid_message: str) -> Any:
    """Return the decoded JSON body or raise a 400 with ``invalid_message``."""
    raw = await request.body()
    if not raw.strip():
        raise HTTPException(status_code=400, detail=invalid_message)
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=400, detail=invalid_message) from exc
