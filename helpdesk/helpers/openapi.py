"""OpenAPI augmentation helpers.

Adds request/response examples for ticket creation and the shared error
payload schema to the generated spec.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


def _operation(paths: Dict[str, Any], path: str, method: str) -> Optional[Dict[str, Any]]:
    # Collection routes are declared as "/" under their prefix
    for candidate in (path, path.rstrip("/") + "/"):
        op = paths.get(candidate, {}).get(method)
        if op is not None:
            return op
    return None


def augment_openapi(spec: Dict[str, Any]) -> Dict[str, Any]:
    """Augment `spec` in place with examples for key operations and return it.

    Adds:
    - JSON and multipart request examples plus a 201 example for POST /api/tickets
    - a 409 example for ticket key conflicts
    - the APIError schema and validation/storage error examples
    """
    s = spec
    paths = s.setdefault("paths", {})

    post_tickets = _operation(paths, "/api/tickets", "post")
    if post_tickets is not None:
        rb = post_tickets.setdefault("requestBody", {})
        content = rb.setdefault("content", {})
        app_json = content.setdefault("application/json", {})
        app_json.setdefault("examples", {})["create_ticket_example"] = {
            "summary": "JSON ticket creation (no files)",
            "value": {
                "title": "Printer on floor 2 is jammed",
                "description": "Paper jam error since this morning",
                "type": "bug",
                "priority": "high",
                "severity": "major",
                "company_id": 1,
            },
        }
        multipart = content.setdefault("multipart/form-data", {})
        multipart.setdefault(
            "schema",
            {
                "type": "object",
                "required": ["title", "company_id"],
                "properties": {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "type": {"type": "string"},
                    "priority": {"type": "string"},
                    "severity": {"type": "string"},
                    "company_id": {"type": "integer"},
                    "assignee_id": {"type": "integer"},
                    "attachments": {"type": "array", "items": {"type": "string", "format": "binary"}},
                },
            },
        )

        responses = post_tickets.setdefault("responses", {})
        resp_201 = responses.setdefault("201", {"description": "Ticket created"})
        resp_json = resp_201.setdefault("content", {}).setdefault("application/json", {})
        resp_json.setdefault("examples", {})["created_ticket"] = {
            "summary": "Created ticket with its per-company key",
            "value": {
                "message": "Ticket created successfully.",
                "ticket": {
                    "id": "5f0c2a57-5d0e-4c39-9d4b-1f1d0f0e2a11",
                    "ticket_key": "MM-3",
                    "title": "Printer on floor 2 is jammed",
                    "description": "Paper jam error since this morning",
                    "type": "bug",
                    "status": "open",
                    "priority": "high",
                    "severity": "major",
                    "reporter_id": 3,
                    "assignee_id": None,
                    "company_id": 1,
                    "comments": [],
                    "attachments": [
                        {
                            "id": "9a3f6a0e-5d6c-4f7b-8c1e-2b7d1f3e4a55",
                            "ticket_id": "5f0c2a57-5d0e-4c39-9d4b-1f1d0f0e2a11",
                            "comment_id": None,
                            "file_name": "jam.png",
                            "file_size_bytes": 48213,
                            "uploaded_date": "2026-02-07T10:00:00Z",
                        }
                    ],
                    "created_at": "2026-02-07T10:00:00Z",
                    "updated_at": "2026-02-07T10:00:00Z",
                },
            },
        }
        resp_409 = responses.setdefault("409", {"description": "Ticket key could not be allocated"})
        resp_409.setdefault("content", {}).setdefault("application/json", {}).setdefault("examples", {})["ticket_key_conflict"] = {
            "summary": "Key allocation kept conflicting; safe to retry",
            "value": {"error": {"code": "ticket_key_conflict", "message": "Ticket key already taken, please retry"}},
        }

    components = s.setdefault("components", {})
    schemas = components.setdefault("schemas", {})
    schemas.setdefault(
        "APIError",
        {
            "type": "object",
            "properties": {
                "error": {
                    "type": "object",
                    "properties": {
                        "code": {"type": "string"},
                        "message": {"type": "string"},
                        "details": {"type": "array", "items": {"type": "object"}},
                    },
                }
            },
        },
    )

    examples = components.setdefault("examples", {})
    examples.setdefault(
        "attachment_rejected_example",
        {
            "summary": "Attachment too large or of a disallowed type",
            "value": {
                "error": {
                    "code": "validation_error",
                    "message": "Validation error",
                    "details": [{"loc": ["body", "attachments"], "msg": "File type not allowed: tool.exe", "type": "value_error"}],
                }
            },
        },
    )
    examples.setdefault(
        "storage_unavailable_example",
        {
            "summary": "File storage could not be written",
            "value": {"error": {"code": "storage_unavailable", "message": "File storage is unavailable"}},
        },
    )

    return s
