"""Prompt building, model calls and structured-output recovery for the coaching tools.

Every public operation returns a validated pydantic model and never raises: a
transport failure or unparseable reply is turned into a heuristic or static
fallback payload, tagged through the model's ``source`` attribute.
"""

import json
import logging
import os
import time
from typing import Any, Callable, Dict, Optional, Type, TypeVar
from uuid import uuid4

import requests
from pydantic import BaseModel, ValidationError

from engines.step_extraction import ERROR_STEP, extract_steps
from env_validation import get_env_bool
from prompts.coach_prompts import CoachPrompt, get_prompt
from schemas import (
    Evaluation,
    GeneratedExercise,
    ReverseEngineering,
    ThinkingProcess,
    Verification,
    extract_json_object,
    strip_code_fences,
)

logger = logging.getLogger(__name__)


def _safe_float(env_name: str, default: float) -> float:
    raw = os.getenv(env_name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def _safe_int(env_name: str, default: int) -> int:
    raw = os.getenv(env_name, "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


# --------- Model/endpoint from environment ---------
MODEL_ID = os.getenv("MODEL_ID", "gpt-4o")
LLM_URL = os.getenv("LLM_URL", "https://api.openai.com/v1/chat/completions")
SEND_MAX_TOKENS = get_env_bool("SEND_MAX_TOKENS", True)

_LLM_LOGGER = logging.getLogger("thinkcoach.llm")
if not _LLM_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _LLM_LOGGER.addHandler(_handler)
_LLM_LOGGER.setLevel(logging.INFO)
_LLM_LOGGER.propagate = False

_T = TypeVar("_T", bound=BaseModel)


class LLMError(RuntimeError):
    """Raised when the chat-completion endpoint fails or returns no content."""


def _base_params() -> Dict[str, Any]:
    return {
        "temperature": _safe_float("LLM_TEMPERATURE", 0.7),
        "top_p": _safe_float("LLM_TOP_P", 1.0),
        "response_format": {"type": "json_object"},
    }


def _headers() -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    api_key = os.getenv("OPENAI_API_KEY")
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _coerce_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _llm_call(
    messages,
    max_tokens: Optional[int],
    *,
    operation: Optional[str] = None,
    prompt_version: Optional[str] = None,
    request_id: Optional[str] = None,
) -> str:
    payload = {"model": MODEL_ID, "messages": messages, **_base_params()}
    if max_tokens is not None and SEND_MAX_TOKENS:
        payload["max_tokens"] = int(max_tokens)

    call_request_id = request_id or str(uuid4())
    timeout = _safe_int("LLM_TIMEOUT", 60)
    start = time.perf_counter()
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    status = "ok"
    try:
        try:
            r = requests.post(LLM_URL, json=payload, headers=_headers(), timeout=timeout)
            if r.status_code == 400:
                # Fallback: send minimal payload
                minimal = {"model": MODEL_ID, "messages": messages}
                if max_tokens is not None and SEND_MAX_TOKENS:
                    minimal["max_tokens"] = int(max_tokens)
                r2 = requests.post(LLM_URL, json=minimal, headers=_headers(), timeout=timeout)
                r2.raise_for_status()
                data = r2.json()
            else:
                r.raise_for_status()
                data = r.json()
        except requests.HTTPError as e:
            status = "http_error"
            response = e.response
            code = getattr(response, "status_code", "?")
            text = getattr(response, "text", "") or ""
            raise LLMError(f"LLM-HTTP {code}: {text[:300]}") from e
        except (requests.RequestException, ValueError) as e:
            status = "error"
            raise LLMError(f"LLM error: {e}") from e

        usage = data.get("usage") if isinstance(data, dict) else None
        if isinstance(usage, dict):
            tokens_in = _coerce_int(usage.get("prompt_tokens") or usage.get("input_tokens"))
            tokens_out = _coerce_int(usage.get("completion_tokens") or usage.get("output_tokens"))

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            try:
                content = data["choices"][0]["text"]
            except (KeyError, IndexError, TypeError):
                status = "bad_response"
                raise LLMError(f"Unexpected LLM response: {str(data)[:300]}") from None
        if not content:
            status = "empty"
            raise LLMError("No content in response")
        return str(content)
    finally:
        latency_ms = int((time.perf_counter() - start) * 1000)
        log_record = {
            "event": "llm_call",
            "request_id": call_request_id,
            "operation": operation,
            "prompt_version": prompt_version or "default",
            "model": MODEL_ID,
            "status": status,
            "latency_ms": latency_ms,
            "tokens_in": tokens_in,
            "tokens_out": tokens_out,
        }
        _LLM_LOGGER.info(json.dumps(log_record, ensure_ascii=False))


def _validate(model: Type[_T], data: Dict[str, Any]) -> Optional[_T]:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("Model payload failed %s validation: %s", model.__name__, exc.errors()[:3])
        return None
    except TypeError as exc:
        logger.warning("Model payload has the wrong shape for %s: %s", model.__name__, exc)
        return None


def _run(
    prompt: CoachPrompt,
    model: Type[_T],
    fallback: Callable[[], _T],
    *,
    recover: Optional[Callable[[str], Optional[_T]]] = None,
    reshape: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
    **fields: Any,
) -> _T:
    messages = prompt.render(**fields)
    try:
        raw = _llm_call(
            messages,
            prompt.max_tokens,
            operation=prompt.operation,
            prompt_version=prompt.prompt_version,
        )
    except LLMError as exc:
        logger.error("%s: model call failed, using fallback: %s", prompt.operation, exc)
        return fallback()

    data = extract_json_object(raw)
    if data is not None:
        if reshape is not None:
            data = reshape(data)
        result = _validate(model, data)
        if result is not None:
            return result

    if data is None and recover is not None:
        recovered = recover(raw)
        if recovered is not None:
            logger.info("%s: recovered structured output heuristically", prompt.operation)
            return recovered

    logger.warning("%s: unparseable model reply, using fallback", prompt.operation)
    return fallback()


# ---------- Thinking process ----------


def _thinking_process_fallback() -> ThinkingProcess:
    return ThinkingProcess(steps=[dict(ERROR_STEP)], source="fallback")


def _reshape_thinking_process(data: Dict[str, Any]) -> Dict[str, Any]:
    steps = data.get("steps")
    if steps is None:
        steps = data.get("thinkingProcess") or data.get("thinking_process") or data.get("process")
    if isinstance(steps, dict):
        steps = steps.get("steps")
    if isinstance(steps, str):
        steps = [steps]
    if not isinstance(steps, (list, tuple)):
        steps = []
    normalized = []
    for idx, entry in enumerate(steps, start=1):
        if isinstance(entry, str):
            normalized.append({"title": f"Step {idx}", "content": entry})
        elif isinstance(entry, dict):
            title = entry.get("title") or entry.get("step") or entry.get("name") or f"Step {idx}"
            content = (
                entry.get("content")
                or entry.get("description")
                or entry.get("reasoning")
                or entry.get("details")
                or ""
            )
            normalized.append({"title": title, "content": content})
    return {"steps": normalized}


def _recover_thinking_process(raw: str) -> Optional[ThinkingProcess]:
    steps = extract_steps(strip_code_fences(raw))
    if not steps:
        return None
    return ThinkingProcess(steps=steps, source="heuristic")


def generate_thinking_process(problem_type: str, description: str) -> ThinkingProcess:
    """Break ``description`` into ordered ``{title, content}`` thinking steps."""

    def _reshape(data: Dict[str, Any]) -> Dict[str, Any]:
        shaped = _reshape_thinking_process(data)
        # An object without any steps is treated as unparseable.
        return shaped if shaped["steps"] else {"steps": None}

    return _run(
        get_prompt("thinking_process"),
        ThinkingProcess,
        _thinking_process_fallback,
        recover=_recover_thinking_process,
        reshape=_reshape,
        problem_type=problem_type,
        description=description,
    )


# ---------- Evaluation ----------


def _evaluation_fallback() -> Evaluation:
    return Evaluation(
        score=0,
        feedback="We couldn't evaluate your thinking process at this time. Please try again later.",
        strengths=[],
        weaknesses=["Error in evaluation process"],
        improvements=["Please try again with a clearer description"],
        source="fallback",
    )


def evaluate_thinking_process(
    problem_type: str,
    description: str,
    thinking_process: str,
    expected_outcome: str,
) -> Evaluation:
    return _run(
        get_prompt("evaluate"),
        Evaluation,
        _evaluation_fallback,
        problem_type=problem_type,
        description=description,
        thinking_process=thinking_process,
        expected_outcome=expected_outcome,
    )


# ---------- Exercise ----------


def generate_exercise(thinking_type: str) -> GeneratedExercise:
    def _fallback() -> GeneratedExercise:
        return GeneratedExercise(
            title=f"{thinking_type} Exercise",
            description="This is a practice exercise to improve your thinking skills.",
            difficulty="Intermediate",
            duration=20,
            instructions="We couldn't generate custom instructions at this time. Please try again later.",
            evaluation="Evaluate your performance based on how well you completed the exercise.",
            source="fallback",
        )

    def _reshape(data: Dict[str, Any]) -> Dict[str, Any]:
        if "exercise" in data and isinstance(data["exercise"], dict):
            data = data["exercise"]
        return data

    return _run(
        get_prompt("exercise"),
        GeneratedExercise,
        _fallback,
        reshape=_reshape,
        thinking_type=thinking_type,
    )


# ---------- Reverse engineering ----------


def _reverse_fallback() -> ReverseEngineering:
    return ReverseEngineering(
        process=[
            {
                "step": "Error in analysis",
                "reasoning": "We couldn't analyze this solution at this time. Please try again later.",
            }
        ],
        principles=["Error occurred during analysis"],
        insights=["Please try again with a clearer problem and solution description"],
        source="fallback",
    )


def _recover_reverse(raw: str) -> Optional[ReverseEngineering]:
    steps = extract_steps(strip_code_fences(raw))
    if not steps:
        return None
    return ReverseEngineering(
        process=[{"step": s["title"], "reasoning": s["content"]} for s in steps],
        source="heuristic",
    )


def reverse_engineer_thinking(problem_type: str, problem: str, solution: str = "") -> ReverseEngineering:
    """Infer the step-by-step reasoning that leads from ``problem`` to ``solution``."""

    def _reshape(data: Dict[str, Any]) -> Dict[str, Any]:
        if "process" not in data:
            for key in ("steps", "thinkingProcess", "thinking_process"):
                if key in data:
                    data = {**data, "process": data[key]}
                    break
        return data

    return _run(
        get_prompt("reverse_engineer"),
        ReverseEngineering,
        _reverse_fallback,
        recover=_recover_reverse,
        reshape=_reshape,
        problem_type=problem_type,
        problem=problem,
        solution=solution or "(not provided)",
    )


# ---------- Verification ----------


def _verification_fallback() -> Verification:
    return Verification(
        is_valid=False,
        confidence=0,
        gaps=["Error in verification process"],
        alternatives=["We couldn't verify this thinking process at this time. Please try again later."],
        source="fallback",
    )


def verify_thinking_process(problem: str, thinking_process: str, conclusion: str) -> Verification:
    def _reshape(data: Dict[str, Any]) -> Dict[str, Any]:
        if "isValid" not in data:
            for key in ("is_valid", "valid", "isLogicallyValid"):
                if key in data:
                    data = {**data, "isValid": data[key]}
                    break
        return data

    return _run(
        get_prompt("verify"),
        Verification,
        _verification_fallback,
        reshape=_reshape,
        problem=problem,
        thinking_process=thinking_process,
        conclusion=conclusion,
    )
