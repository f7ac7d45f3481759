"""Tests for generation response classification."""

from __future__ import annotations

import json
from typing import Any

import pytest

from storyloom.story.classifier import classify_response
from storyloom.story.errors import ResponseParseError
from storyloom.story.models import (
    BranchContinuation,
    ConcludingContinuation,
    DialogueLine,
    LinearContinuation,
)
from tests.fixtures.story_fixtures import (
    branch_response,
    concluding_response,
    linear_response,
    scenelet_payload,
)


def _response(**overrides: Any) -> str:
    data: dict[str, Any] = {
        "branch_point": False,
        "is_concluding_scene": False,
        "next_scenelets": [scenelet_payload("A lighthouse at dusk")],
    }
    data.update(overrides)
    return json.dumps(data)


class TestClassification:
    """Each flag combination maps to exactly one continuation shape."""

    def test_linear(self) -> None:
        result = classify_response(linear_response("The keeper climbs the stairs"))
        assert isinstance(result, LinearContinuation)
        assert result.scenelet.description == "The keeper climbs the stairs"

    def test_concluding(self) -> None:
        result = classify_response(concluding_response("The light goes out"))
        assert isinstance(result, ConcludingContinuation)
        assert result.scenelet.description == "The light goes out"

    def test_branch_keeps_label_order(self) -> None:
        raw = branch_response(
            "Which door?", [("Left", "The left door"), ("Right", "The right door")]
        )
        result = classify_response(raw)
        assert isinstance(result, BranchContinuation)
        assert result.choice_prompt == "Which door?"
        assert [s.choice_label for s in result.scenelets] == ["Left", "Right"]

    def test_branch_with_three_options(self) -> None:
        raw = branch_response("Pick", [("A", "a"), ("B", "b"), ("C", "c")])
        result = classify_response(raw)
        assert isinstance(result, BranchContinuation)
        assert len(result.scenelets) == 3

    def test_choice_prompt_is_trimmed(self) -> None:
        raw = _response(
            branch_point=True,
            choice_prompt="  Which door?  ",
            next_scenelets=[
                scenelet_payload("left", choice_label="Left"),
                scenelet_payload("right", choice_label="Right"),
            ],
        )
        result = classify_response(raw)
        assert isinstance(result, BranchContinuation)
        assert result.choice_prompt == "Which door?"

    def test_choice_prompt_ignored_for_linear(self) -> None:
        """A stray choice_prompt does not turn a linear response into a branch."""
        result = classify_response(_response(choice_prompt="Unused"))
        assert isinstance(result, LinearContinuation)


class TestScriptNormalization:
    """Per-scenelet fields are trimmed and validated."""

    def test_fields_are_trimmed(self) -> None:
        raw = _response(
            next_scenelets=[
                {
                    "description": "  Fog rolls in  ",
                    "dialogue": [{"character": " Mara ", "line": " Who's there? "}],
                    "shot_suggestions": ["  Wide shot  "],
                }
            ]
        )
        result = classify_response(raw)
        assert isinstance(result, LinearContinuation)
        assert result.scenelet.description == "Fog rolls in"
        assert result.scenelet.dialogue == [DialogueLine(character="Mara", line="Who's there?")]
        assert result.scenelet.shot_suggestions == ["Wide shot"]

    def test_empty_dialogue_allowed(self) -> None:
        result = classify_response(linear_response("Silence", dialogue=[]))
        assert isinstance(result, LinearContinuation)
        assert result.scenelet.dialogue == []

    def test_choice_label_absent_on_linear(self) -> None:
        result = classify_response(linear_response("Silence"))
        assert isinstance(result, LinearContinuation)
        assert result.scenelet.choice_label is None
        assert "choice_label" not in result.scenelet.to_payload()

    @pytest.mark.parametrize(
        ("scenelet", "field_path"),
        [
            ({"description": "  ", "dialogue": [], "shot_suggestions": []}, "description"),
            ({"dialogue": [], "shot_suggestions": []}, "description"),
            ({"description": "x", "shot_suggestions": []}, "dialogue"),
            ({"description": "x", "dialogue": [], "shot_suggestions": [""]}, "shot_suggestions[0]"),
            (
                {"description": "x", "dialogue": [{"character": "", "line": "hi"}], "shot_suggestions": []},
                "dialogue[0].character",
            ),
            (
                {"description": "x", "dialogue": [{"character": "A"}], "shot_suggestions": []},
                "dialogue[0].line",
            ),
            ({"description": 42, "dialogue": [], "shot_suggestions": []}, "description"),
        ],
    )
    def test_invalid_field_names_index_and_field(
        self, scenelet: dict[str, Any], field_path: str
    ) -> None:
        with pytest.raises(ResponseParseError) as exc_info:
            classify_response(_response(next_scenelets=[scenelet]))
        assert "index 0" in str(exc_info.value)
        assert f"next_scenelets[0].{field_path}" in str(exc_info.value)

    def test_non_object_scenelet(self) -> None:
        with pytest.raises(ResponseParseError, match="index 1 is not an object"):
            classify_response(
                _response(
                    branch_point=True,
                    choice_prompt="?",
                    next_scenelets=[scenelet_payload("a", choice_label="A"), "oops"],
                )
            )

    def test_blank_choice_label_rejected(self) -> None:
        with pytest.raises(ResponseParseError, match="choice_label"):
            classify_response(
                _response(next_scenelets=[scenelet_payload("a", choice_label="   ")])
            )


class TestMalformedResponses:
    """Anything that does not fit the contract raises ResponseParseError."""

    def test_not_json(self) -> None:
        with pytest.raises(ResponseParseError, match="as JSON") as exc_info:
            classify_response("Once upon a time")
        assert exc_info.value.raw_response == "Once upon a time"

    def test_not_an_object(self) -> None:
        with pytest.raises(ResponseParseError, match="not a JSON object"):
            classify_response("[1, 2]")

    @pytest.mark.parametrize("value", [None, "false", 0])
    def test_branch_point_must_be_boolean(self, value: Any) -> None:
        raw = _response(branch_point=value)
        with pytest.raises(ResponseParseError, match="branch_point boolean"):
            classify_response(raw)

    def test_missing_concluding_flag(self) -> None:
        data = json.loads(_response())
        del data["is_concluding_scene"]
        with pytest.raises(ResponseParseError, match="is_concluding_scene boolean"):
            classify_response(json.dumps(data))

    @pytest.mark.parametrize("value", [None, [], {}])
    def test_missing_scenelets(self, value: Any) -> None:
        with pytest.raises(ResponseParseError, match="missing next_scenelets"):
            classify_response(_response(next_scenelets=value))

    def test_branch_and_concluding_together(self) -> None:
        raw = _response(
            branch_point=True,
            is_concluding_scene=True,
            choice_prompt="?",
            next_scenelets=[
                scenelet_payload("a", choice_label="A"),
                scenelet_payload("b", choice_label="B"),
            ],
        )
        with pytest.raises(ResponseParseError, match="both a branch point and a concluding"):
            classify_response(raw)

    def test_branch_with_single_scenelet(self) -> None:
        raw = _response(
            branch_point=True,
            choice_prompt="Which door?",
            next_scenelets=[scenelet_payload("a", choice_label="A")],
        )
        with pytest.raises(ResponseParseError, match="must include at least two scenelets"):
            classify_response(raw)

    @pytest.mark.parametrize("prompt", [None, "", "   ", 3])
    def test_branch_without_prompt(self, prompt: Any) -> None:
        raw = _response(
            branch_point=True,
            choice_prompt=prompt,
            next_scenelets=[
                scenelet_payload("a", choice_label="A"),
                scenelet_payload("b", choice_label="B"),
            ],
        )
        with pytest.raises(ResponseParseError, match="non-empty choice_prompt"):
            classify_response(raw)

    def test_branch_scenelet_without_label(self) -> None:
        raw = _response(
            branch_point=True,
            choice_prompt="Which door?",
            next_scenelets=[scenelet_payload("a", choice_label="A"), scenelet_payload("b")],
        )
        with pytest.raises(ResponseParseError, match="index 1 must include a non-empty choice_label"):
            classify_response(raw)

    def test_linear_with_two_scenelets(self) -> None:
        raw = _response(next_scenelets=[scenelet_payload("a"), scenelet_payload("b")])
        with pytest.raises(ResponseParseError, match="Linear continuation response must contain exactly one"):
            classify_response(raw)

    def test_concluding_with_two_scenelets(self) -> None:
        raw = _response(
            is_concluding_scene=True,
            next_scenelets=[scenelet_payload("a"), scenelet_payload("b")],
        )
        with pytest.raises(ResponseParseError, match="Concluding response must contain exactly one"):
            classify_response(raw)
