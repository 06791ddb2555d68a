import pytest
from unittest.mock import MagicMock

from wp_agent_sync.errors import RemoteOperationError, ValidationError
from wp_agent_sync.tools import (
    CREATE_POST,
    DELETE_POST,
    GET_POST,
    LIST_POSTS,
    OPERATIONS,
    UPDATE_POST,
    ToolAdapter,
    extract_content,
    to_payload,
    validate_input,
    validate_result,
)

# ---------------------------------------------------------------------------
# Input shapes
# ---------------------------------------------------------------------------

def test_create_post_accepts_explicit_status():
    validated = validate_input(CREATE_POST, {"title": "Test", "content": "Content", "status": "draft"})
    assert to_payload(validated) == {"title": "Test", "content": "Content", "status": "draft"}

def test_create_post_defaults_status_to_draft():
    validated = validate_input(CREATE_POST, {"title": "T", "content": "C"})
    assert to_payload(validated) == {"title": "T", "content": "C", "status": "draft"}

def test_create_post_missing_content_names_field():
    with pytest.raises(ValidationError, match="content") as excinfo:
        validate_input(CREATE_POST, {"title": "Test"})
    assert excinfo.value.fields == ["content"]
    assert excinfo.value.operation == CREATE_POST

def test_create_post_rejects_unknown_status():
    with pytest.raises(ValidationError) as excinfo:
        validate_input(CREATE_POST, {"title": "T", "content": "C", "status": "scheduled"})
    assert excinfo.value.fields == ["status"]

def test_list_posts_defaults():
    assert to_payload(validate_input(LIST_POSTS, {})) == {"per_page": 10, "page": 1}

def test_update_post_sends_only_provided_fields():
    validated = validate_input(UPDATE_POST, {"id": 7, "title": "New"})
    assert to_payload(validated) == {"id": 7, "title": "New"}

def test_delete_post_force_defaults_false():
    assert to_payload(validate_input(DELETE_POST, {"id": 3})) == {"id": 3, "force": False}

@pytest.mark.parametrize(
    "operation, args, field",
    [
        (GET_POST, {}, "id"),
        (GET_POST, {"id": "5"}, "id"),
        (GET_POST, {"id": 5.5}, "id"),
        (LIST_POSTS, {"per_page": "ten"}, "per_page"),
        (DELETE_POST, {"id": 1, "force": "yes"}, "force"),
        (UPDATE_POST, {"id": 1, "colour": "red"}, "colour"),
    ],
)
def test_invalid_inputs_are_rejected(operation, args, field):
    with pytest.raises(ValidationError) as excinfo:
        validate_input(operation, args)
    assert field in excinfo.value.fields

def test_unknown_operation_is_rejected():
    with pytest.raises(ValidationError, match="unknown operation"):
        validate_input("wordpress-publish-everything", {})

def test_non_object_arguments_are_rejected():
    with pytest.raises(ValidationError, match="expected an object"):
        validate_input(GET_POST, "{not json")

# ---------------------------------------------------------------------------
# Result shapes
# ---------------------------------------------------------------------------

def test_validate_result_accepts_post_and_keeps_extras():
    result = validate_result(GET_POST, {"id": 1, "title": "Hi", "content": "<p>x</p>", "status": "publish", "link": "u"})
    assert result["id"] == 1
    assert result["link"] == "u"

def test_validate_result_rejects_mismatched_shape():
    assert validate_result(GET_POST, {"posts": [], "total": 0}) is None
    assert validate_result(LIST_POSTS, {"posts": [{"id": 1, "title": "a"}], "total": 1}) is not None
    assert validate_result(DELETE_POST, {"success": True, "message": "Moved to trash", "deleted_post": {"id": 1, "title": "a"}}) is not None
    assert validate_result(DELETE_POST, "deleted") is None

# ---------------------------------------------------------------------------
# Envelope unwrapping
# ---------------------------------------------------------------------------

def test_extract_content_parses_json_text():
    envelope = {"content": [{"type": "text", "text": '{"id": 4, "title": "A"}'}]}
    assert extract_content(envelope) == {"id": 4, "title": "A"}

def test_extract_content_returns_raw_text_when_not_json():
    envelope = {"content": [{"type": "image", "data": "..."}, {"type": "text", "text": "Post deleted"}]}
    assert extract_content(envelope) == "Post deleted"

def test_extract_content_falls_back_to_structured_content():
    envelope = {"content": [], "structuredContent": {"id": 9, "title": "S"}}
    assert extract_content(envelope) == {"id": 9, "title": "S"}

# ---------------------------------------------------------------------------
# ToolAdapter
# ---------------------------------------------------------------------------

def test_execute_validates_before_touching_the_connection():
    connections = MagicMock()
    adapter = ToolAdapter(connections)

    with pytest.raises(ValidationError):
        adapter.execute("sandbox", CREATE_POST, {"title": "Test"})

    connections.get.assert_not_called()

def test_execute_forwards_payload_and_unwraps_envelope():
    connections = MagicMock()
    client = connections.get.return_value
    client.invoke.return_value = {"content": [{"type": "text", "text": '{"id": 11, "title": "T"}'}]}
    adapter = ToolAdapter(connections)

    output = adapter.execute("production", CREATE_POST, {"title": "T", "content": "C"})

    connections.get.assert_called_once_with("production")
    client.invoke.assert_called_once_with(CREATE_POST, {"title": "T", "content": "C", "status": "draft"})
    assert output == {"id": 11, "title": "T"}

def test_execute_propagates_remote_errors():
    connections = MagicMock()
    connections.get.return_value.invoke.side_effect = RemoteOperationError(GET_POST, [{"type": "text", "text": "Post not found"}])
    adapter = ToolAdapter(connections)

    with pytest.raises(RemoteOperationError, match="Post not found"):
        adapter.execute("sandbox", GET_POST, {"id": 404})

def test_descriptors_cover_every_operation_and_name_the_environment():
    adapter = ToolAdapter(MagicMock())
    descriptors = adapter.descriptors("real-site")

    assert [d.name for d in descriptors] == list(OPERATIONS)
    assert all("real site environment" in d.description for d in descriptors)
    create = next(d for d in descriptors if d.name == CREATE_POST)
    assert set(create.input_schema["required"]) == {"title", "content"}
