import json
from unittest.mock import patch

import pytest

import coach


def _reply(payload):
    return json.dumps(payload)


def test_thinking_process_parses_fenced_json():
    raw = "```json\n" + _reply(
        {"steps": [{"title": "Clarify", "content": "Restate the goal"}, {"title": "Plan", "content": "Pick a method"}]}
    ) + "\n```"
    with patch("coach._llm_call", return_value=raw) as llm:
        result = coach.generate_thinking_process("Math", "Split a bill fairly")

    assert result.source == "model"
    assert [step.title for step in result.steps] == ["Clarify", "Plan"]
    messages = llm.call_args[0][0]
    assert "The problem is of type: Math." in messages[0]["content"]
    assert messages[1]["content"] == "Split a bill fairly"
    assert llm.call_args.kwargs["operation"] == "thinking_process"


def test_thinking_process_accepts_alternate_keys():
    raw = _reply({"thinkingProcess": ["Look at the data", {"step": "Decide", "description": "Choose one"}]})
    with patch("coach._llm_call", return_value=raw):
        result = coach.generate_thinking_process("Business", "Pick a supplier")

    assert result.dump() == {
        "steps": [
            {"title": "Step 1", "content": "Look at the data"},
            {"title": "Decide", "content": "Choose one"},
        ]
    }


def test_thinking_process_falls_back_to_step_extractor():
    raw = "Step 1: Define the goal\nKnow what success means.\nStep 2: Brainstorm\nList ideas."
    with patch("coach._llm_call", return_value=raw):
        result = coach.generate_thinking_process("Design", "Redesign a form")

    assert result.source == "heuristic"
    assert [step.title for step in result.steps] == ["Define the goal", "Brainstorm"]


def test_thinking_process_json_without_steps_uses_error_step():
    with patch("coach._llm_call", return_value=_reply({"answer": "42"})):
        result = coach.generate_thinking_process("Math", "Life")

    assert result.source == "fallback"
    assert result.steps[0].title == "Error Generating Thinking Process"


def test_thinking_process_llm_failure_uses_error_step():
    with patch("coach._llm_call", side_effect=coach.LLMError("down")):
        result = coach.generate_thinking_process("Math", "Anything")

    assert result.source == "fallback"
    assert len(result.steps) == 1


def test_evaluation_success_and_fallback():
    raw = _reply(
        {
            "score": 72,
            "feedback": "Solid start",
            "strengths": ["Clear framing"],
            "weaknesses": ["No alternatives"],
            "improvements": ["Consider counterexamples"],
        }
    )
    with patch("coach._llm_call", return_value=raw) as llm:
        result = coach.evaluate_thinking_process("Coding", "Fix a bug", "I read logs", "Bug fixed")

    assert result.score == 72
    assert result.strengths == ["Clear framing"]
    user_message = llm.call_args[0][0][1]["content"]
    assert "Problem: Fix a bug" in user_message
    assert "User's thinking process: I read logs" in user_message
    assert "Expected outcome: Bug fixed" in user_message

    with patch("coach._llm_call", return_value="I cannot help with that."):
        fallback = coach.evaluate_thinking_process("Coding", "Fix a bug", "I read logs", "Bug fixed")

    assert fallback.source == "fallback"
    assert fallback.dump() == {
        "score": 0,
        "feedback": "We couldn't evaluate your thinking process at this time. Please try again later.",
        "strengths": [],
        "weaknesses": ["Error in evaluation process"],
        "improvements": ["Please try again with a clearer description"],
    }


def test_generate_exercise_and_fallback():
    raw = _reply(
        {
            "exercise": {
                "title": "Six hats",
                "description": "Look from six angles",
                "difficulty": "Beginner",
                "duration": 25,
                "instructions": "Wear each hat",
                "evaluation": "Count perspectives",
            }
        }
    )
    with patch("coach._llm_call", return_value=raw) as llm:
        result = coach.generate_exercise("Creative")

    assert result.title == "Six hats"
    assert result.duration == 25
    assert "Creative thinking skills" in llm.call_args[0][0][0]["content"]

    with patch("coach._llm_call", side_effect=coach.LLMError("down")):
        fallback = coach.generate_exercise("Strategic")

    assert fallback.title == "Strategic Exercise"
    assert fallback.duration == 20
    assert fallback.difficulty == "Intermediate"


def test_reverse_engineering_includes_problem_type_and_default_solution():
    raw = _reply(
        {
            "process": [{"step": "Notice the pattern", "reasoning": "Numbers double"}],
            "principles": ["Look for invariants"],
            "insights": ["Doubling implies exponential growth"],
        }
    )
    with patch("coach._llm_call", return_value=raw) as llm:
        result = coach.reverse_engineer_thinking("Math", "2, 4, 8, ?", "")

    assert result.process[0].step == "Notice the pattern"
    system, user = llm.call_args[0][0]
    assert "The problem is of type: Math." in system["content"]
    assert "Solution: (not provided)" in user["content"]


def test_reverse_engineering_recovers_steps_or_falls_back():
    with patch("coach._llm_call", return_value="1. Read: understand it\n2. Solve: do it"):
        recovered = coach.reverse_engineer_thinking("Math", "p", "s")
    assert recovered.source == "heuristic"
    assert [step.step for step in recovered.process] == ["Read", "Solve"]

    with patch("coach._llm_call", side_effect=coach.LLMError("down")):
        fallback = coach.reverse_engineer_thinking("Math", "p", "s")
    assert fallback.process[0].step == "Error in analysis"
    assert fallback.principles == ["Error occurred during analysis"]


def test_verification_normalises_model_output():
    raw = "Here you go:\n" + _reply(
        {"is_valid": True, "confidence": 90, "gaps": [], "alternatives": ["It might be seasonal"]}
    )
    with patch("coach._llm_call", return_value=raw):
        result = coach.verify_thinking_process("Sales dropped", "Prices rose", "Prices caused it")

    assert result.is_valid is True
    assert result.confidence == pytest.approx(0.9)
    assert result.alternatives == ["It might be seasonal"]


def test_verification_fallback():
    with patch("coach._llm_call", return_value="not json"):
        result = coach.verify_thinking_process("p", "t", "c")

    assert result.dump() == {
        "isValid": False,
        "confidence": 0.0,
        "gaps": ["Error in verification process"],
        "alternatives": ["We couldn't verify this thinking process at this time. Please try again later."],
    }


@pytest.mark.parametrize("steps", [5, 3.5, True, {"steps": 2}, None])
def test_thinking_process_scalar_steps_use_error_step(steps):
    with patch("coach._llm_call", return_value=_reply({"steps": steps})):
        result = coach.generate_thinking_process("Math", "Split a bill")

    assert result.source == "fallback"
    assert result.steps[0].title == "Error Generating Thinking Process"


def test_thinking_process_string_steps_become_one_step():
    with patch("coach._llm_call", return_value=_reply({"steps": "Restate the goal"})):
        result = coach.generate_thinking_process("Math", "Split a bill")

    assert result.source == "model"
    assert result.dump() == {"steps": [{"title": "Step 1", "content": "Restate the goal"}]}


@pytest.mark.parametrize("process", [7, 2.0, True, {"step": "Guess"}])
def test_reverse_engineering_scalar_process_uses_fallback(process):
    with patch("coach._llm_call", return_value=_reply({"process": process, "principles": ["x"]})):
        result = coach.reverse_engineer_thinking("Math", "p", "s")

    assert result.source == "fallback"
    assert result.process[0].step == "Error in analysis"


@pytest.mark.parametrize(
    "payload",
    [
        {"isValid": True, "confidence": 0.7, "gaps": 3, "alternatives": {"a": "b"}},
        {"isValid": [], "confidence": {"value": 1}, "gaps": None, "alternatives": True},
    ],
)
def test_verification_wrong_shaped_fields_are_coerced(payload):
    with patch("coach._llm_call", return_value=_reply(payload)):
        result = coach.verify_thinking_process("p", "t", "c")

    assert result.source == "model"
    assert result.gaps == []
    assert result.alternatives == []
    assert 0.0 <= result.confidence <= 1.0


@pytest.mark.parametrize(
    "payload",
    [
        {"score": {"value": 80}, "feedback": 12, "strengths": 4, "weaknesses": {"a": 1}, "improvements": True},
        {"score": [90], "feedback": None, "strengths": None},
    ],
)
def test_evaluation_wrong_shaped_fields_are_coerced(payload):
    with patch("coach._llm_call", return_value=_reply(payload)):
        result = coach.evaluate_thinking_process("Coding", "Fix a bug", "Read logs", "Fixed")

    assert result.source == "model"
    assert result.score == 0
    assert result.strengths == []
    assert result.improvements == []


@pytest.mark.parametrize("duration", [1e400, "forever", [15], {"minutes": 5}])
def test_generate_exercise_odd_duration_defaults(duration):
    raw = '{"title": "Hats", "duration": %s}' % (
        "1e400" if duration == 1e400 else json.dumps(duration)
    )
    with patch("coach._llm_call", return_value=raw):
        result = coach.generate_exercise("Creative")

    assert result.title == "Hats"
    assert result.duration == 20


def test_wrong_shape_type_error_is_treated_as_invalid():
    class _Strict(coach.BaseModel):
        value: int

        @classmethod
        def model_validate(cls, data):
            raise TypeError("'int' object is not iterable")

    assert coach._validate(_Strict, {"value": 1}) is None
