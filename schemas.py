"""Pydantic schemas for stored records, request bodies and validated model outputs."""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "THINKING_TYPES",
    "ThinkingType",
    "CamelModel",
    "User",
    "PublicUser",
    "ThinkingSkill",
    "UserSkill",
    "Exercise",
    "UserActivity",
    "UserProblem",
    "Achievement",
    "UserAchievement",
    "WeeklyActivity",
    "HistoryEntry",
    "TabState",
    "ThinkingStep",
    "ThinkingProcess",
    "Evaluation",
    "GeneratedExercise",
    "ReverseStep",
    "ReverseEngineering",
    "Verification",
    "strip_code_fences",
    "extract_json_object",
]

THINKING_TYPES = ("Critical", "Creative", "Strategic", "Analytical")
ThinkingType = Literal["Critical", "Creative", "Strategic", "Analytical"]


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------- Stored records ----------


class User(CamelModel):
    id: int
    username: str
    password: str
    password_salt: str = Field(default="", exclude=True)
    display_name: str
    level: str = "Beginner Thinker"

    def public(self) -> "PublicUser":
        return PublicUser(
            id=self.id,
            username=self.username,
            display_name=self.display_name,
            level=self.level,
        )


class PublicUser(CamelModel):
    id: int
    username: str
    display_name: str
    level: str


class ThinkingSkill(CamelModel):
    id: int
    name: str
    description: str
    color: str


class UserSkill(CamelModel):
    id: int
    user_id: int
    skill_id: int
    progress: int = Field(default=0, ge=0, le=100)
    level: str = "Beginner"
    last_updated: datetime


class Exercise(CamelModel):
    id: int
    title: str
    description: str
    skill_id: int
    duration: int
    difficulty: str = "Beginner"


class UserActivity(CamelModel):
    id: int
    user_id: int
    activity_type: str
    skill_id: Optional[int] = None
    exercise_id: Optional[int] = None
    title: str
    description: str
    score: Optional[int] = None
    created_at: datetime


class UserProblem(CamelModel):
    id: int
    user_id: int
    problem_type: str
    description: str
    thinking_process: Optional[Dict[str, Any]] = None
    created_at: datetime


class Achievement(CamelModel):
    id: int
    name: str
    description: str
    icon: str
    condition: str


class UserAchievement(CamelModel):
    id: int
    user_id: int
    achievement_id: int
    unlocked_at: datetime


class WeeklyActivity(CamelModel):
    id: int
    user_id: int
    day_of_week: str
    minutes_spent: int = 0
    week_start_date: datetime


class HistoryEntry(CamelModel):
    id: int
    kind: Literal["evaluate", "reverse", "verify"]
    user_id: int
    payload: Dict[str, Any]
    created_at: datetime


class TabState(CamelModel):
    tab_id: str
    title: str
    content: Any = None
    created_at: datetime


# ---------- Model outputs ----------

_TRUE_WORDS = {"true", "yes", "valid", "1", "y"}
_FALSE_WORDS = {"false", "no", "invalid", "0", "n"}


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        return [text] if text else []
    if isinstance(value, (list, tuple)):
        items: List[str] = []
        for entry in value:
            if isinstance(entry, str):
                text = entry.strip()
            elif isinstance(entry, (int, float)) and not isinstance(entry, bool):
                text = str(entry)
            elif isinstance(entry, dict):
                text = str(
                    entry.get("text")
                    or entry.get("description")
                    or entry.get("content")
                    or ""
                ).strip()
            else:
                continue
            if text:
                items.append(text)
        return items
    return []


class _ModelOutput(BaseModel):
    # Provenance of the payload: parsed from the model, recovered heuristically,
    # or the static fallback.
    source: Literal["model", "heuristic", "fallback"] = Field(default="model", exclude=True)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ThinkingStep(BaseModel):
    title: str
    content: str

    @field_validator("title", "content", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()


class ThinkingProcess(_ModelOutput):
    steps: List[ThinkingStep] = Field(default_factory=list)


class Evaluation(_ModelOutput):
    score: int = 0
    feedback: str = ""
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0
        if number != number:  # NaN
            return 0
        return int(round(max(0.0, min(100.0, number))))

    @field_validator("feedback", mode="before")
    @classmethod
    def _feedback(cls, value: Any) -> str:
        if isinstance(value, list):
            return " ".join(_string_list(value))
        return "" if value is None else str(value).strip()

    @field_validator("strengths", "weaknesses", "improvements", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> List[str]:
        return _string_list(value)


class GeneratedExercise(_ModelOutput):
    title: str
    description: str = ""
    difficulty: str = "Intermediate"
    duration: int = 20
    instructions: str = ""
    evaluation: str = ""

    @field_validator("duration", mode="before")
    @classmethod
    def _minutes(cls, value: Any) -> int:
        if isinstance(value, str):
            match = re.search(r"\d+", value)
            value = match.group(0) if match else None
        try:
            minutes = int(float(value))
        except (TypeError, ValueError, OverflowError):
            return 20
        return minutes if minutes > 0 else 20

    @field_validator("description", "instructions", "evaluation", mode="before")
    @classmethod
    def _flatten(cls, value: Any) -> str:
        if isinstance(value, list):
            lines = _string_list(value)
            return "\n".join(f"{idx}. {line}" for idx, line in enumerate(lines, start=1))
        return "" if value is None else str(value).strip()

    @field_validator("difficulty", mode="before")
    @classmethod
    def _difficulty(cls, value: Any) -> str:
        text = str(value or "").strip().capitalize()
        return text if text in {"Beginner", "Intermediate", "Advanced"} else "Intermediate"


class ReverseStep(BaseModel):
    step: str
    reasoning: str = ""

    @field_validator("step", "reasoning", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()


class ReverseEngineering(_ModelOutput):
    process: List[ReverseStep] = Field(default_factory=list)
    principles: List[str] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)

    @field_validator("process", mode="before")
    @classmethod
    def _steps(cls, value: Any) -> List[Dict[str, str]]:
        if isinstance(value, str):
            value = [value]
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            # Left for the list type check to reject.
            return value
        steps: List[Dict[str, str]] = []
        for entry in value:
            if isinstance(entry, str):
                if entry.strip():
                    steps.append({"step": entry.strip(), "reasoning": ""})
            elif isinstance(entry, dict):
                step = entry.get("step") or entry.get("title") or entry.get("name")
                reasoning = (
                    entry.get("reasoning")
                    or entry.get("content")
                    or entry.get("explanation")
                    or ""
                )
                if step:
                    steps.append({"step": str(step), "reasoning": str(reasoning)})
        return steps

    @field_validator("principles", "insights", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> List[str]:
        return _string_list(value)


class Verification(_ModelOutput):
    is_valid: bool = Field(default=False, alias="isValid")
    confidence: float = 0.0
    gaps: List[str] = Field(default_factory=list)
    alternatives: List[str] = Field(default_factory=list)

    @field_validator("is_valid", mode="before")
    @classmethod
    def _flag(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return bool(value)
        text = str(value or "").strip().lower()
        if text in _TRUE_WORDS:
            return True
        if text in _FALSE_WORDS:
            return False
        return False

    @field_validator("confidence", mode="before")
    @classmethod
    def _unit(cls, value: Any) -> float:
        if isinstance(value, str):
            value = value.strip().rstrip("%")
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        if number != number:
            return 0.0
        if 1.0 < number <= 100.0:
            number = number / 100.0
        return max(0.0, min(1.0, number))

    @field_validator("gaps", "alternatives", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> List[str]:
        return _string_list(value)


# ---------- Parsing helpers ----------

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_OPEN_FENCE = re.compile(r"^\s*```[ \t]*(?:json)?[ \t]*\n?", re.IGNORECASE)
_CLOSE_FENCE = re.compile(r"\n?[ \t]*```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove reasoning blocks and a surrounding markdown code fence."""

    if not text:
        return ""
    s = _THINK_BLOCK.sub("", text).strip()
    fenced = re.search(r"```[ \t]*(?:json)?[ \t]*\n(.*?)```", s, re.DOTALL | re.IGNORECASE)
    if fenced and not s.startswith("```"):
        return fenced.group(1).strip()
    s = _OPEN_FENCE.sub("", s)
    s = _CLOSE_FENCE.sub("", s)
    return s.strip()


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            char = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except ValueError:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Best-effort: parse ``text`` as a JSON object after stripping fences.

    Returns ``None`` when no object can be recovered.
    """

    cleaned = strip_code_fences(text)
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data
    try:
        snippet, _, _ = _find_first_json_object(cleaned)
    except ValueError:
        return None
    data = json.loads(snippet)
    return data if isinstance(data, dict) else None
