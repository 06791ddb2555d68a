# models.py
# Data contracts for the WordPress agent and the sandbox -> production sync.
# No business logic lives here, only schema and validation.
#
# Operation inputs are strict and closed: a replayed change must carry exactly
# the fields the remote ability declares. Result shapes are open (extra keys
# allowed) because WordPress decorates posts with fields we never read.

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr

PostStatus = Literal["publish", "draft", "pending", "private"]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Operation inputs
# ---------------------------------------------------------------------------


class OperationInput(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")


class GetPostInput(OperationInput):
    id: int = Field(..., description="The post ID to retrieve")


class ListPostsInput(OperationInput):
    per_page: int = Field(default=10, description="Number of posts per page")
    page: int = Field(default=1, description="Page number for pagination")


class CreatePostInput(OperationInput):
    title: str = Field(..., description="The post title")
    content: str = Field(..., description="The post content (HTML allowed)")
    status: PostStatus = Field(default="draft", description="The post status")


class UpdatePostInput(OperationInput):
    id: int = Field(..., description="The post ID to update")
    title: str | None = Field(default=None, description="The new post title")
    content: str | None = Field(default=None, description="The new post content (HTML allowed)")
    status: PostStatus | None = Field(default=None, description="The new post status")


class DeletePostInput(OperationInput):
    id: int = Field(..., description="The post ID to delete")
    force: bool = Field(
        default=False, description="Whether to bypass trash and force permanent deletion"
    )


# ---------------------------------------------------------------------------
# CMS results
# ---------------------------------------------------------------------------


class Post(BaseModel):
    """get-post, create-post and update-post all return one of these."""

    model_config = ConfigDict(extra="allow")

    id: StrictInt
    title: StrictStr
    content: str | None = None
    status: str | None = None
    author: int | None = None
    date: str | None = None
    url: str | None = None


class PostList(BaseModel):
    model_config = ConfigDict(extra="allow")

    posts: list[Post]
    total: StrictInt
    page: int | None = None
    per_page: int | None = None


class DeletedPost(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    title: str


class DeleteResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    success: StrictBool
    message: StrictStr
    deleted_post: DeletedPost | None = None


# ---------------------------------------------------------------------------
# Remote registry
# ---------------------------------------------------------------------------


class ToolDescriptor(BaseModel):
    """A named remote capability as advertised to the model or by tools/list."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Agent trace
# ---------------------------------------------------------------------------


class ToolCall(BaseModel):
    call_id: str
    name: str
    input: Any = None


class ToolResult(BaseModel):
    call_id: str
    name: str
    output: Any = None
    is_error: bool = False


class AgentStep(BaseModel):
    """One model turn: optional text plus the tool calls it requested."""

    index: int
    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)
    finish_reason: str = ""


class AgentRunResult(BaseModel):
    environment: str
    text: str
    finish_reason: str
    steps: list[AgentStep] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Change tracking and sync
# ---------------------------------------------------------------------------


class TrackedChange(BaseModel):
    """A validated tool call recorded from an agent run, ready for replay."""

    operation: str
    args: dict[str, Any]
    result: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    step_index: int


class ChangeOutcome(BaseModel):
    change: TrackedChange
    success: bool
    error: str | None = None
    result: Any = None


class SyncOutcome(BaseModel):
    success: bool
    total: int
    applied: int
    failed: int
    results: list[ChangeOutcome] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: list[ChangeOutcome]) -> "SyncOutcome":
        applied = sum(1 for r in results if r.success)
        failed = len(results) - applied
        return cls(
            success=failed == 0,
            total=len(results),
            applied=applied,
            failed=failed,
            results=results,
            errors=[f"{r.change.operation}: {r.error}" for r in results if not r.success],
        )
