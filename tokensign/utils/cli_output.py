"""Schema-stamped JSON output for CLI commands.

Every ``--json`` payload carries ``schema_id``, ``schema_version``,
``producer`` and ``produced_at`` so downstream tooling can detect format
changes.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from tokensign import __version__


def json_response(
    schema_id: str,
    schema_version: int,
    **data: Any,
) -> str:
    """Create schema-wrapped JSON response for CLI output.

    Args:
        schema_id: Identifier for the output type (e.g., "token_list").
        schema_version: Integer version for backward compatibility.
        **data: Payload data to include in the response.

    Returns:
        JSON string with schema metadata and payload.

    Example:
        >>> json_response("token_list", 1, tokens=[])
        {
          "schema_id": "token_list",
          "schema_version": 1,
          "producer": "tokensign-0.1.0",
          "produced_at": "2026-10-19T10:30:00+00:00",
          "tokens": []
        }
    """
    wrapped = {
        "schema_id": schema_id,
        "schema_version": schema_version,
        "producer": f"tokensign-{__version__}",
        "produced_at": datetime.now(UTC).isoformat(),
        **data,
    }
    return json.dumps(wrapped, indent=2, default=str)
