import pytest

from app.schemas.serious_plan import ArtifactsResult
from app.services.response_parser import LLMResponseParseError, extract_json_object, parse_model


def test_strict_json():
    assert extract_json_object('{"a": 1}') == {"a": 1}


def test_object_wrapped_in_prose_and_fence():
    text = 'Here you go:\n```json\n{"a": {"b": "brace } in string"}}\n```\nThanks!'
    assert extract_json_object(text) == {"a": {"b": "brace } in string"}}


def test_truncated_reply_fails():
    with pytest.raises(LLMResponseParseError, match="truncated"):
        extract_json_object('{"artifacts": [{"artifact_key": "x", "content": "cut o')


def test_empty_reply_fails():
    with pytest.raises(LLMResponseParseError):
        extract_json_object("   ")


def test_array_is_not_an_object():
    with pytest.raises(LLMResponseParseError, match="Expected a JSON object"):
        extract_json_object("[1, 2]")


def test_parse_model_validates():
    result = parse_model('{"artifacts": [{"artifact_key": "risk_map", "content": "# Risks",'
                         ' "importance_level": "critical"}]}', ArtifactsResult)
    assert result.artifacts[0].artifact_key == "risk_map"
    # Unknown importance levels are coerced
    assert result.artifacts[0].importance_level == "recommended"
    assert result.metadata is None


def test_parse_model_rejects_invalid_shape():
    with pytest.raises(LLMResponseParseError, match="validation"):
        parse_model('{"artifacts": [{"title": "no key"}]}', ArtifactsResult)
