# app.py — Thinking Coach API v1.0
# - REST layer over the in-memory store under /api
# - Coaching tools delegate to coach.py and log through history.py
# - Single demo user (DEMO_USER_ID, default 1)

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import Field

import coach
import storage
from history import ACTIVITY_TYPES, HistoryRecorder
from passwords import hash_password, verify_password
from schemas import CamelModel, ThinkingType
from storage import DAYS_OF_WEEK, day_label, week_start

logger = logging.getLogger(__name__)

HISTORY = HistoryRecorder()


@asynccontextmanager
async def _lifespan(_: FastAPI):
    global HISTORY
    try:
        from env_validation import validate_environment
        validate_environment()

        HISTORY = HistoryRecorder.from_env()
        logger.info(
            "Model in use: %s @ %s | remote history: %s",
            coach.MODEL_ID,
            coach.LLM_URL,
            "on" if HISTORY.remote else "off",
        )
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Thinking Coach API", version="1.0.0", lifespan=_lifespan)


@app.exception_handler(RequestValidationError)
async def _validation_error(_: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages) or "invalid request"})


def _demo_user_id() -> int:
    raw = os.getenv("DEMO_USER_ID", "1")
    try:
        return int(raw)
    except ValueError:
        return 1


def _store() -> storage.MemStorage:
    return storage.get_storage()


def _dump(rows) -> List[dict[str, Any]]:
    return [row.dump() for row in rows]


# ---------- Request bodies ----------


class RegisterBody(CamelModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    display_name: str = Field(min_length=1)


class LoginBody(CamelModel):
    username: str
    password: str


class UserSkillUpdateBody(CamelModel):
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    level: Optional[str] = None


class ActivityBody(CamelModel):
    user_id: int
    activity_type: str
    skill_id: Optional[int] = None
    exercise_id: Optional[int] = None
    title: str
    description: str
    score: Optional[int] = None


class ProblemBody(CamelModel):
    user_id: int
    problem_type: str
    description: str


class EvaluateBody(CamelModel):
    problem_type: str
    description: str
    thinking_process: str
    expected_outcome: str


class GenerateExerciseBody(CamelModel):
    thinking_type: ThinkingType


class ReverseEngineerBody(CamelModel):
    problem_type: str
    problem: str
    solution: Optional[str] = None


class VerifyBody(CamelModel):
    problem: str
    thinking_process: str
    conclusion: str


class TabStateBody(CamelModel):
    title: str
    content: Any = None


class WeeklyMinutesBody(CamelModel):
    minutes: int = Field(ge=0, le=24 * 60)
    day_of_week: Optional[Literal["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]] = None


# ---------- Auth ----------
@app.post("/api/auth/register", status_code=201)
def auth_register(body: RegisterBody):
    store = _store()
    pw_hash, pw_salt = hash_password(body.password)
    user = store.create_user_if_absent(
        {
            "username": body.username,
            "password": pw_hash,
            "password_salt": pw_salt,
            "display_name": body.display_name,
        }
    )
    if user is None:
        raise HTTPException(status_code=400, detail="Username already exists")
    for skill in store.get_skills():
        store.create_user_skill(
            {"user_id": user.id, "skill_id": skill.id, "progress": 0, "level": "Beginner"}
        )
    return user.public().dump()


@app.post("/api/auth/login")
def auth_login(body: LoginBody):
    user = _store().get_user_by_username(body.username)
    if not user or not verify_password(body.password, user.password, user.password_salt):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user.public().dump()


# ---------- Users & skills ----------
@app.get("/api/users/current")
def current_user():
    user = _store().get_user(_demo_user_id())
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user.public().dump()


@app.get("/api/skills")
def list_skills():
    return _dump(_store().get_skills())


@app.get("/api/skills/{skill_id}")
def get_skill(skill_id: int):
    skill = _store().get_skill(skill_id)
    if not skill:
        raise HTTPException(status_code=404, detail="Skill not found")
    return skill.dump()


@app.get("/api/user-skills")
def list_user_skills():
    store = _store()
    result = []
    for user_skill in store.get_user_skills(_demo_user_id()):
        skill = store.get_skill(user_skill.skill_id)
        result.append({**user_skill.dump(), "skill": skill.dump() if skill else None})
    return result


@app.put("/api/user-skills/{user_skill_id}")
def update_user_skill(user_skill_id: int, body: UserSkillUpdateBody):
    updated = _store().update_user_skill(user_skill_id, body.model_dump(exclude_none=True))
    if not updated:
        raise HTTPException(status_code=404, detail="User skill not found")
    return updated.dump()


# ---------- Exercises ----------
@app.get("/api/exercises")
def list_exercises(skill_id: Optional[int] = Query(default=None, alias="skillId")):
    store = _store()
    rows = store.get_exercises_by_skill(skill_id) if skill_id else store.get_exercises()
    return _dump(rows)


@app.get("/api/exercises/{exercise_id}")
def get_exercise(exercise_id: int):
    exercise = _store().get_exercise(exercise_id)
    if not exercise:
        raise HTTPException(status_code=404, detail="Exercise not found")
    return exercise.dump()


@app.post("/api/generate-exercise")
def generate_exercise(body: GenerateExerciseBody):
    return coach.generate_exercise(body.thinking_type).dump()


# ---------- Activities ----------
@app.get("/api/user-activities")
def list_user_activities(limit: Optional[int] = Query(default=None, ge=1)):
    store = _store()
    result = []
    for activity in store.get_user_activities(_demo_user_id(), limit):
        skill = store.get_skill(activity.skill_id) if activity.skill_id else None
        exercise = store.get_exercise(activity.exercise_id) if activity.exercise_id else None
        result.append(
            {
                **activity.dump(),
                "skill": skill.dump() if skill else None,
                "exercise": exercise.dump() if exercise else None,
            }
        )
    return result


@app.post("/api/user-activities", status_code=201)
def create_user_activity(body: ActivityBody):
    return _store().create_user_activity(body.model_dump()).dump()


# ---------- Problems ----------
@app.post("/api/problems", status_code=201)
def create_problem(body: ProblemBody):
    return _store().create_user_problem(body.model_dump()).dump()


@app.get("/api/problems")
def list_problems():
    return _dump(_store().get_user_problems(_demo_user_id()))


@app.get("/api/problems/{problem_id}")
def get_problem(problem_id: int):
    problem = _store().get_user_problem(problem_id)
    if not problem:
        raise HTTPException(status_code=404, detail="Problem not found")
    return problem.dump()


@app.post("/api/problems/{problem_id}/thinking-process")
def generate_problem_thinking_process(problem_id: int):
    store = _store()
    problem = store.get_user_problem(problem_id)
    if not problem:
        raise HTTPException(status_code=404, detail="Problem not found")
    process = coach.generate_thinking_process(problem.problem_type, problem.description)
    updated = store.update_user_problem_thinking_process(problem_id, process.dump())
    return updated.dump()


# ---------- Thinking tools ----------
@app.post("/api/evaluate-thinking")
def evaluate_thinking(body: EvaluateBody):
    evaluation = coach.evaluate_thinking_process(
        body.problem_type,
        body.description,
        body.thinking_process,
        body.expected_outcome,
    )
    HISTORY.record_evaluation(
        _demo_user_id(),
        problem_type=body.problem_type,
        description=body.description,
        thinking_process=body.thinking_process,
        expected_outcome=body.expected_outcome,
        result=evaluation,
    )
    return evaluation.dump()


@app.post("/api/reverse-engineer")
def reverse_engineer(body: ReverseEngineerBody):
    solution = body.solution or ""
    result = coach.reverse_engineer_thinking(body.problem_type, body.problem, solution)
    HISTORY.record_reverse(
        _demo_user_id(),
        problem_type=body.problem_type,
        problem=body.problem,
        solution=solution,
        result=result,
    )
    return result.dump()


@app.post("/api/verify-thinking")
def verify_thinking(body: VerifyBody):
    result = coach.verify_thinking_process(body.problem, body.thinking_process, body.conclusion)
    HISTORY.record_verification(
        _demo_user_id(),
        problem=body.problem,
        thinking_process=body.thinking_process,
        conclusion=body.conclusion,
        result=result,
    )
    return result.dump()


@app.get("/api/thinking-history")
def thinking_history(activity_type: Optional[str] = Query(default=None, alias="type")):
    if not activity_type or activity_type not in ACTIVITY_TYPES.values():
        raise HTTPException(status_code=400, detail="Invalid activity type")
    activities = [
        activity
        for activity in _store().get_user_activities(_demo_user_id())
        if activity.activity_type == activity_type
    ]
    return _dump(activities)


@app.get("/api/history/{kind}")
def history_list(kind: Literal["evaluate", "reverse", "verify"], limit: int = Query(default=10, ge=1, le=100)):
    return HISTORY.list_history(kind, limit)


@app.get("/api/tab-history/{tab_id}")
def tab_history_get(tab_id: str):
    state = HISTORY.get_tab_state(tab_id)
    if state is None:
        raise HTTPException(status_code=404, detail="Tab state not found")
    return state


@app.put("/api/tab-history/{tab_id}")
def tab_history_put(tab_id: str, body: TabStateBody):
    return HISTORY.save_tab_state(tab_id, body.title, body.content)


# ---------- Weekly activity ----------
@app.get("/api/weekly-activity")
def weekly_activity():
    rows = _store().get_weekly_activity(_demo_user_id(), week_start())
    return _dump(sorted(rows, key=lambda row: DAYS_OF_WEEK.index(row.day_of_week)))


@app.post("/api/weekly-activity")
def log_weekly_minutes(body: WeeklyMinutesBody):
    store = _store()
    user_id = _demo_user_id()
    now = datetime.now()
    start = week_start(now)
    day = body.day_of_week or day_label(now)
    for row in store.get_weekly_activity(user_id, start):
        if row.day_of_week == day:
            return store.update_weekly_activity(row.id, row.minutes_spent + body.minutes).dump()
    return store.create_weekly_activity(
        {
            "user_id": user_id,
            "day_of_week": day,
            "minutes_spent": body.minutes,
            "week_start_date": start,
        }
    ).dump()


# ---------- Achievements ----------
@app.get("/api/achievements")
def list_achievements():
    return _dump(_store().get_achievements())


@app.get("/api/user-achievements")
def list_user_achievements():
    store = _store()
    unlocked = {
        row.achievement_id: row.unlocked_at
        for row in store.get_user_achievements(_demo_user_id())
    }
    result = []
    for achievement in store.get_achievements():
        unlocked_at = unlocked.get(achievement.id)
        result.append(
            {
                **achievement.dump(),
                "unlocked": unlocked_at is not None,
                "unlockedAt": unlocked_at.isoformat() if unlocked_at else None,
            }
        )
    return result

