"""In-memory record store for users, skills, exercises, activity and history.

Every entity lives in its own ``dict`` keyed by an auto-incrementing integer id.
Nothing survives a restart; the store is seeded with demo fixtures when it is
constructed.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, TypeVar

from passwords import hash_password
from schemas import (
    Achievement,
    Exercise,
    HistoryEntry,
    TabState,
    ThinkingSkill,
    User,
    UserAchievement,
    UserActivity,
    UserProblem,
    UserSkill,
    WeeklyActivity,
)

logger = logging.getLogger(__name__)

DAYS_OF_WEEK = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
HISTORY_KINDS = ("evaluate", "reverse", "verify")

_R = TypeVar("_R")


def week_start(moment: Optional[datetime] = None) -> datetime:
    """Return Monday 00:00 of the week containing ``moment`` (local time)."""

    moment = moment or datetime.now()
    monday = moment - timedelta(days=moment.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def day_label(moment: Optional[datetime] = None) -> str:
    return DAYS_OF_WEEK[(moment or datetime.now()).weekday()]


class _Table:
    """A single entity map plus its id counter."""

    def __init__(self) -> None:
        self.rows: Dict[int, Any] = {}
        self._next_id = 1

    def next_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def values(self) -> List[Any]:
        return list(self.rows.values())


class MemStorage:
    """Map-backed CRUD layer. Getters and updaters return ``None`` for unknown ids."""

    def __init__(self, *, seed: bool = True) -> None:
        self._lock = threading.RLock()
        self._users = _Table()
        self._skills = _Table()
        self._user_skills = _Table()
        self._exercises = _Table()
        self._activities = _Table()
        self._problems = _Table()
        self._achievements = _Table()
        self._user_achievements = _Table()
        self._weekly = _Table()
        self._history = _Table()
        self._tabs: Dict[str, TabState] = {}
        if seed:
            self._seed()

    # ---------- Helpers ----------

    def _insert(self, table: _Table, factory: Callable[[int], _R]) -> _R:
        with self._lock:
            row_id = table.next_id()
            row = factory(row_id)
            table.rows[row_id] = row
            return row

    def _update(self, table: _Table, row_id: int, changes: Mapping[str, Any]) -> Optional[Any]:
        with self._lock:
            current = table.rows.get(row_id)
            if current is None:
                return None
            updates = {k: v for k, v in changes.items() if v is not None and k != "id"}
            updated = current.model_copy(update=updates)
            table.rows[row_id] = updated
            return updated

    @staticmethod
    def _newest_first(rows: Iterable[Any], key: str = "created_at") -> List[Any]:
        return sorted(rows, key=lambda row: getattr(row, key), reverse=True)

    # ---------- Users ----------

    def get_user(self, user_id: int) -> Optional[User]:
        return self._users.rows.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self._users.values():
            if user.username == username:
                return user
        return None

    def create_user(self, data: Mapping[str, Any]) -> User:
        return self._insert(
            self._users,
            lambda row_id: User(
                id=row_id,
                username=data["username"],
                password=data["password"],
                password_salt=data.get("password_salt", ""),
                display_name=data["display_name"],
                level="Beginner Thinker",
            ),
        )

    def create_user_if_absent(self, data: Mapping[str, Any]) -> Optional[User]:
        """Create the user unless the username is taken; returns ``None`` when it is."""

        with self._lock:
            if self.get_user_by_username(data["username"]):
                return None
            return self.create_user(data)

    def update_user(self, user_id: int, changes: Mapping[str, Any]) -> Optional[User]:
        return self._update(self._users, user_id, changes)

    # ---------- Skills ----------

    def get_skills(self) -> List[ThinkingSkill]:
        return self._skills.values()

    def get_skill(self, skill_id: int) -> Optional[ThinkingSkill]:
        return self._skills.rows.get(skill_id)

    def create_skill(self, data: Mapping[str, Any]) -> ThinkingSkill:
        return self._insert(self._skills, lambda row_id: ThinkingSkill(id=row_id, **data))

    # ---------- User skills ----------

    def get_user_skills(self, user_id: int) -> List[UserSkill]:
        return [row for row in self._user_skills.values() if row.user_id == user_id]

    def get_user_skill(self, user_id: int, skill_id: int) -> Optional[UserSkill]:
        for row in self._user_skills.values():
            if row.user_id == user_id and row.skill_id == skill_id:
                return row
        return None

    def create_user_skill(self, data: Mapping[str, Any]) -> UserSkill:
        return self._insert(
            self._user_skills,
            lambda row_id: UserSkill(
                id=row_id,
                user_id=data["user_id"],
                skill_id=data["skill_id"],
                progress=data.get("progress") if data.get("progress") is not None else 0,
                level=data.get("level") or "Beginner",
                last_updated=datetime.now(),
            ),
        )

    def update_user_skill(self, row_id: int, changes: Mapping[str, Any]) -> Optional[UserSkill]:
        return self._update(
            self._user_skills,
            row_id,
            {**changes, "last_updated": datetime.now()},
        )

    # ---------- Exercises ----------

    def get_exercises(self) -> List[Exercise]:
        return self._exercises.values()

    def get_exercise(self, exercise_id: int) -> Optional[Exercise]:
        return self._exercises.rows.get(exercise_id)

    def get_exercises_by_skill(self, skill_id: int) -> List[Exercise]:
        return [row for row in self._exercises.values() if row.skill_id == skill_id]

    def create_exercise(self, data: Mapping[str, Any]) -> Exercise:
        payload = dict(data)
        payload["difficulty"] = payload.get("difficulty") or "Beginner"
        return self._insert(self._exercises, lambda row_id: Exercise(id=row_id, **payload))

    # ---------- Activities ----------

    def get_user_activities(self, user_id: int, limit: Optional[int] = None) -> List[UserActivity]:
        rows = self._newest_first(
            row for row in self._activities.values() if row.user_id == user_id
        )
        return rows[:limit] if limit else rows

    def create_user_activity(self, data: Mapping[str, Any]) -> UserActivity:
        return self._insert(
            self._activities,
            lambda row_id: UserActivity(
                id=row_id,
                user_id=data["user_id"],
                activity_type=data["activity_type"],
                skill_id=data.get("skill_id"),
                exercise_id=data.get("exercise_id"),
                title=data["title"],
                description=data["description"],
                score=data.get("score"),
                created_at=data.get("created_at") or datetime.now(),
            ),
        )

    # ---------- Problems ----------

    def get_user_problems(self, user_id: int) -> List[UserProblem]:
        return self._newest_first(row for row in self._problems.values() if row.user_id == user_id)

    def get_user_problem(self, problem_id: int) -> Optional[UserProblem]:
        return self._problems.rows.get(problem_id)

    def create_user_problem(self, data: Mapping[str, Any]) -> UserProblem:
        return self._insert(
            self._problems,
            lambda row_id: UserProblem(
                id=row_id,
                user_id=data["user_id"],
                problem_type=data["problem_type"],
                description=data["description"],
                thinking_process=None,
                created_at=datetime.now(),
            ),
        )

    def update_user_problem_thinking_process(
        self, problem_id: int, thinking_process: Dict[str, Any]
    ) -> Optional[UserProblem]:
        return self._update(self._problems, problem_id, {"thinking_process": thinking_process})

    # ---------- Achievements ----------

    def get_achievements(self) -> List[Achievement]:
        return self._achievements.values()

    def get_achievement(self, achievement_id: int) -> Optional[Achievement]:
        return self._achievements.rows.get(achievement_id)

    def create_achievement(self, data: Mapping[str, Any]) -> Achievement:
        return self._insert(self._achievements, lambda row_id: Achievement(id=row_id, **data))

    def get_user_achievements(self, user_id: int) -> List[UserAchievement]:
        return [row for row in self._user_achievements.values() if row.user_id == user_id]

    def create_user_achievement(self, data: Mapping[str, Any]) -> UserAchievement:
        return self._insert(
            self._user_achievements,
            lambda row_id: UserAchievement(
                id=row_id,
                user_id=data["user_id"],
                achievement_id=data["achievement_id"],
                unlocked_at=data.get("unlocked_at") or datetime.now(),
            ),
        )

    # ---------- Weekly activity ----------

    def get_weekly_activity(self, user_id: int, week_start_date: datetime) -> List[WeeklyActivity]:
        return [
            row
            for row in self._weekly.values()
            if row.user_id == user_id and row.week_start_date == week_start_date
        ]

    def create_weekly_activity(self, data: Mapping[str, Any]) -> WeeklyActivity:
        return self._insert(self._weekly, lambda row_id: WeeklyActivity(id=row_id, **data))

    def update_weekly_activity(self, row_id: int, minutes_spent: int) -> Optional[WeeklyActivity]:
        return self._update(self._weekly, row_id, {"minutes_spent": minutes_spent})

    # ---------- Thinking history ----------

    def add_history_entry(self, kind: str, user_id: int, payload: Dict[str, Any]) -> HistoryEntry:
        if kind not in HISTORY_KINDS:
            raise ValueError(f"Unknown history kind: {kind}")
        return self._insert(
            self._history,
            lambda row_id: HistoryEntry(
                id=row_id,
                kind=kind,
                user_id=user_id,
                payload=payload,
                created_at=datetime.now(),
            ),
        )

    def get_history_entries(self, kind: str, limit: int = 10) -> List[HistoryEntry]:
        rows = self._newest_first(row for row in self._history.values() if row.kind == kind)
        return rows[:limit] if limit else rows

    def save_tab_state(self, tab_id: str, title: str, content: Any) -> TabState:
        state = TabState(tab_id=tab_id, title=title, content=content, created_at=datetime.now())
        with self._lock:
            self._tabs[tab_id] = state
        return state

    def get_tab_state(self, tab_id: str) -> Optional[TabState]:
        return self._tabs.get(tab_id)

    # ---------- Fixtures ----------

    def _seed(self) -> None:
        now = datetime.now()
        pw_hash, pw_salt = hash_password("password")
        user = self.create_user(
            {
                "username": "Abdo",
                "password": pw_hash,
                "password_salt": pw_salt,
                "display_name": "Sabbagh",
            }
        )
        user = self.update_user(user.id, {"level": "Intermediate Thinker"})

        critical = self.create_skill(
            {
                "name": "Critical Thinking",
                "description": "Analyze and evaluate information to form a judgment",
                "color": "#ef476f",
            }
        )
        creative = self.create_skill(
            {
                "name": "Creative Thinking",
                "description": "Generate innovative ideas and solutions",
                "color": "#06d6a0",
            }
        )
        strategic = self.create_skill(
            {
                "name": "Strategic Thinking",
                "description": "Plan and make decisions for long-term success",
                "color": "#118ab2",
            }
        )
        analytical = self.create_skill(
            {
                "name": "Analytical Thinking",
                "description": "Break complex problems into parts to find solutions",
                "color": "#ffd166",
            }
        )

        for skill, progress, level in (
            (critical, 85, "Advanced"),
            (creative, 65, "Intermediate"),
            (strategic, 60, "Intermediate"),
            (analytical, 80, "Advanced"),
        ):
            self.create_user_skill(
                {"user_id": user.id, "skill_id": skill.id, "progress": progress, "level": level}
            )

        exercises = [
            ("Logical Fallacies Challenge", "Identify common logical fallacies in arguments", critical, 20, "Intermediate"),
            ("Lateral Thinking Puzzles", "Solve problems using indirect and creative approaches", creative, 25, "Intermediate"),
            ("Market Entry Strategy", "Develop a strategic plan for a company entering a new market", strategic, 30, "Advanced"),
            ("Data Pattern Recognition", "Identify patterns and trends in datasets", analytical, 15, "Beginner"),
            ("Divergent Thinking Challenge", "Generate multiple solutions to everyday problems", creative, 20, "Intermediate"),
        ]
        for title, description, skill, duration, difficulty in exercises:
            self.create_exercise(
                {
                    "title": title,
                    "description": description,
                    "skill_id": skill.id,
                    "duration": duration,
                    "difficulty": difficulty,
                }
            )

        self.create_user_activity(
            {
                "user_id": user.id,
                "activity_type": "exercise",
                "skill_id": critical.id,
                "exercise_id": 1,
                "title": "Completed Critical Thinking Exercise",
                "description": "Logical Fallacies Challenge - Score: 92%",
                "score": 92,
                "created_at": now - timedelta(hours=2),
            }
        )
        self.create_user_activity(
            {
                "user_id": user.id,
                "activity_type": "exercise",
                "skill_id": creative.id,
                "exercise_id": 2,
                "title": "Started Creative Thinking Session",
                "description": "Lateral Thinking Puzzles - In progress",
                "created_at": now - timedelta(days=1),
            }
        )
        self.create_user_activity(
            {
                "user_id": user.id,
                "activity_type": "problem",
                "skill_id": strategic.id,
                "title": "Solved Business Problem",
                "description": "Market Entry Strategy - Score: 78%",
                "score": 78,
                "created_at": now - timedelta(days=2),
            }
        )

        for name, description, icon, condition in (
            ("Critical Thinker", "Complete 10 critical thinking exercises", "ri-award-line", "exercises.critical >= 10"),
            ("Strategic Master", "75% accuracy in strategic exercises", "ri-rocket-line", "accuracy.strategic >= 75"),
            ("Consistency", "Practice for 5 consecutive days", "ri-timer-line", "streak >= 5"),
            ("Idea Generator", "Create 50 unique ideas in exercises", "ri-lightbulb-line", "ideas >= 50"),
        ):
            self.create_achievement(
                {"name": name, "description": description, "icon": icon, "condition": condition}
            )

        self.create_user_achievement(
            {"user_id": user.id, "achievement_id": 1, "unlocked_at": now - timedelta(days=5)}
        )
        self.create_user_achievement(
            {"user_id": user.id, "achievement_id": 3, "unlocked_at": now - timedelta(days=2)}
        )

        start = week_start(now)
        for day, minutes in zip(DAYS_OF_WEEK, (30, 45, 60, 35, 50, 40, 45)):
            self.create_weekly_activity(
                {
                    "user_id": user.id,
                    "day_of_week": day,
                    "minutes_spent": minutes,
                    "week_start_date": start,
                }
            )
        logger.debug("Seeded in-memory storage with demo fixtures for user %s", user.id)


_storage = MemStorage()


def get_storage() -> MemStorage:
    return _storage


def reset(*, seed: bool = True) -> MemStorage:
    """Replace the module-level store with a fresh one and return it."""

    global _storage
    _storage = MemStorage(seed=seed)
    return _storage
