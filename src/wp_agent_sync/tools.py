# tools.py
# Operation registry and the adapter that dispatches validated calls.
#
# Operation names are the join key with the remote ability registry. The MCP
# adapter exposes WordPress abilities with hyphens ('wordpress/get-post'
# becomes 'wordpress-get-post'), and these strings must match exactly.

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import pydantic

from wp_agent_sync.config import environment_label
from wp_agent_sync.connections import ConnectionManager
from wp_agent_sync.errors import ValidationError
from wp_agent_sync.models import (
    CreatePostInput,
    DeletePostInput,
    DeleteResult,
    GetPostInput,
    ListPostsInput,
    OperationInput,
    Post,
    PostList,
    ToolDescriptor,
    UpdatePostInput,
)

logger = logging.getLogger(__name__)

GET_POST = "wordpress-get-post"
LIST_POSTS = "wordpress-list-posts"
CREATE_POST = "wordpress-create-post"
UPDATE_POST = "wordpress-update-post"
DELETE_POST = "wordpress-delete-post"


@dataclass(frozen=True)
class Operation:
    name: str
    input_model: type[OperationInput]
    result_model: type[pydantic.BaseModel]
    description: str

    def describe(self, environment: str) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description.format(env=environment_label(environment)),
            input_schema=self.input_model.model_json_schema(),
        )


OPERATIONS: dict[str, Operation] = {
    op.name: op
    for op in (
        Operation(
            GET_POST,
            GetPostInput,
            Post,
            "Retrieves a WordPress post by ID from the {env} environment. "
            "Returns post details including title, content, status, author, and date.",
        ),
        Operation(
            LIST_POSTS,
            ListPostsInput,
            PostList,
            "Lists WordPress posts with pagination from the {env} environment. "
            "Returns an array of posts with their IDs, titles, status, and dates.",
        ),
        Operation(
            CREATE_POST,
            CreatePostInput,
            Post,
            "Creates a new WordPress post in the {env} environment. "
            "Returns the created post with its ID, title, content, status, and URL.",
        ),
        Operation(
            UPDATE_POST,
            UpdatePostInput,
            Post,
            "Updates an existing WordPress post in the {env} environment. "
            "Only provided fields will be updated. Returns the updated post details.",
        ),
        Operation(
            DELETE_POST,
            DeletePostInput,
            DeleteResult,
            "Deletes a WordPress post from the {env} environment. "
            "By default moves to trash. Set force=true for permanent deletion.",
        ),
    )
}


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_input(operation: str, arguments: Any) -> OperationInput:
    """
    Validate raw arguments against the named operation's input shape.

    Declared defaults are applied. Raises ValidationError naming the
    offending field(s); unknown operation names are rejected the same way.
    """
    op = OPERATIONS.get(operation)
    if op is None:
        raise ValidationError(
            operation, [], f"unknown operation, expected one of {sorted(OPERATIONS)}"
        )
    if not isinstance(arguments, Mapping):
        raise ValidationError(
            operation, [], f"expected an object, got {type(arguments).__name__}"
        )

    try:
        return op.input_model.model_validate(dict(arguments))
    except pydantic.ValidationError as exc:
        errors = exc.errors()
        fields = [".".join(str(part) for part in err["loc"]) for err in errors]
        reason = "; ".join(err["msg"] for err in errors)
        raise ValidationError(operation, fields, reason) from exc


def validate_result(operation: str, output: Any) -> dict[str, Any] | None:
    """Return output normalised to the operation's result shape, or None if it does not fit."""
    op = OPERATIONS.get(operation)
    if op is None or not isinstance(output, Mapping):
        return None
    try:
        return op.result_model.model_validate(dict(output)).model_dump(exclude_none=True)
    except pydantic.ValidationError:
        return None


def to_payload(validated: OperationInput) -> dict[str, Any]:
    # Unset optionals (update-post title/content/status) must not be sent as null.
    return validated.model_dump(exclude_none=True)


def extract_content(envelope: Mapping[str, Any]) -> Any:
    """
    Unwrap an MCP tool result into the plain WordPress payload.

    The first text item is parsed as JSON, falling back to the raw text.
    """
    content = envelope.get("content")
    if isinstance(content, list):
        for item in content:
            if isinstance(item, Mapping) and item.get("type") == "text" and item.get("text"):
                try:
                    return json.loads(item["text"])
                except json.JSONDecodeError:
                    return item["text"]
    if envelope.get("structuredContent") is not None:
        return envelope["structuredContent"]
    return content


# ---------------------------------------------------------------------------
# ToolAdapter
# ---------------------------------------------------------------------------


class ToolAdapter:
    """Validates operation input and forwards it to an environment's MCP client."""

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    def descriptors(self, environment: str) -> list[ToolDescriptor]:
        return [op.describe(environment) for op in OPERATIONS.values()]

    def execute(self, environment: str, operation: str, arguments: Any) -> Any:
        # Validation first: the remote never sees unvalidated input.
        validated = validate_input(operation, arguments)
        logger.debug("Dispatching %s to %s", operation, environment)
        client = self._connections.get(environment)
        envelope = client.invoke(operation, to_payload(validated))
        return extract_content(envelope)
