"""JSON-file persistence for capture schedules."""

from __future__ import annotations

import json
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from dashsnap.cron.types import Schedule, validate_cron_expression


def generate_schedule_id() -> str:
    return f"schedule_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class ScheduleStore:
    """
    Reads and writes the schedules file.

    The file is re-read on every call so edits made by other processes
    are picked up on the next scheduler reload.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read_raw(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading schedules from {self.path}: {e}")
            return []
        if not isinstance(data, list):
            logger.error(f"Schedules file {self.path} does not contain a list")
            return []
        items = [item for item in data if isinstance(item, dict)]
        if len(items) != len(data):
            logger.warning(f"Ignoring {len(data) - len(items)} non-object entries in {self.path}")
        return items

    def _write_raw(self, items: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(items, indent=2, ensure_ascii=False), encoding="utf-8")

    def load(self) -> list[Schedule]:
        """All schedules in the file; malformed entries are skipped."""
        schedules = []
        for item in self._read_raw():
            try:
                schedules.append(Schedule.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed schedule {item.get('id', '?')}: {e.error_count()} errors")
        return schedules

    def get(self, schedule_id: str) -> Schedule | None:
        for schedule in self.load():
            if schedule.id == schedule_id:
                return schedule
        return None

    def create(self, data: dict[str, Any]) -> Schedule:
        """
        Persist a new schedule with a generated id.

        Raises:
            ValueError: If the cron expression is invalid.
        """
        now = _now_iso()
        schedule = Schedule.model_validate({**data, "id": generate_schedule_id(), "created_at": now, "updated_at": now})
        if not validate_cron_expression(schedule.cron):
            raise ValueError(f"Invalid cron expression: {schedule.cron}")

        items = self._read_raw()
        items.append(schedule.model_dump(mode="json"))
        self._write_raw(items)
        logger.info(f"Schedule created: {schedule.display_name} ({schedule.id})")
        return schedule

    def update(self, schedule_id: str, updates: dict[str, Any]) -> Schedule | None:
        """
        Merge updates into an existing schedule.

        Returns:
            The updated schedule, or None if the id is unknown.

        Raises:
            ValueError: If the merged cron expression is invalid.
        """
        items = self._read_raw()
        for index, item in enumerate(items):
            if item.get("id") != schedule_id:
                continue
            merged = {**item, **updates, "id": schedule_id, "updated_at": _now_iso()}
            schedule = Schedule.model_validate(merged)
            if not validate_cron_expression(schedule.cron):
                raise ValueError(f"Invalid cron expression: {schedule.cron}")
            items[index] = schedule.model_dump(mode="json")
            self._write_raw(items)
            logger.info(f"Schedule updated: {schedule.display_name} ({schedule_id})")
            return schedule
        return None

    def delete(self, schedule_id: str) -> bool:
        items = self._read_raw()
        remaining = [item for item in items if item.get("id") != schedule_id]
        if len(remaining) == len(items):
            return False
        self._write_raw(remaining)
        logger.info(f"Schedule deleted: {schedule_id}")
        return True


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
