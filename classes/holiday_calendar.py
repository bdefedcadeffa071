# classes/holiday_calendar.py
import logging
import threading
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import commentjson
import yaml

from classes.errors import CalendarConfigError
from classes.settings import HOLIDAYS_PATH

logger = logging.getLogger("planner_schedule")

SATURDAY = 5
SUNDAY = 6


class HolidayCalendar:
    """
    Working-day calendar: Saturday/Sunday plus a per-year set of non-working dates.

    Years are loaded from a data file so the table can be refreshed each year
    without a code change. Dates in a year with no entry count weekends only;
    the first lookup in such a year logs a warning.
    """

    def __init__(self, holidays_by_year: Optional[Dict[int, Iterable[date]]] = None):
        self._lock = threading.Lock()
        self._years: Dict[int, Set[date]] = {}
        self._warned_years: Set[int] = set()
        for year, days in (holidays_by_year or {}).items():
            self._years[int(year)] = set(days)

    @classmethod
    def from_file(cls, path: str | Path) -> "HolidayCalendar":
        cfg_path = Path(path)
        if not cfg_path.exists():
            raise CalendarConfigError(f"Holiday calendar file not found at '{cfg_path}'")

        with cfg_path.open("r", encoding="utf-8") as f:
            if cfg_path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = commentjson.load(f)

        if not isinstance(data, dict) or not isinstance(data.get("years"), dict):
            raise CalendarConfigError(f"Holiday calendar '{cfg_path}' must define a 'years' mapping")

        parsed: Dict[int, Set[date]] = {}
        for year_key, raw_dates in data["years"].items():
            try:
                year = int(year_key)
            except (TypeError, ValueError):
                raise CalendarConfigError(f"Invalid year key in holiday calendar: {year_key!r}")
            if not isinstance(raw_dates, list):
                raise CalendarConfigError(f"Holidays for {year} must be a list of ISO dates")
            days: Set[date] = set()
            for raw in raw_dates:
                # yaml already turns unquoted ISO dates into date objects
                day = raw if isinstance(raw, date) else _parse_iso(raw)
                if day.year != year:
                    raise CalendarConfigError(f"Holiday {day.isoformat()} listed under year {year}")
                days.add(day)
            parsed[year] = days

        logger.info("Loaded holiday calendar from %s (years: %s)", cfg_path, sorted(parsed))
        return cls(parsed)

    def years(self) -> List[int]:
        with self._lock:
            return sorted(self._years)

    def holidays_for(self, year: int) -> Optional[List[date]]:
        with self._lock:
            days = self._years.get(int(year))
            return sorted(days) if days is not None else None

    def set_year(self, year: int, days: Iterable[date]) -> None:
        with self._lock:
            self._years[int(year)] = set(days)
            self._warned_years.discard(int(year))

    def is_holiday(self, day: date) -> bool:
        with self._lock:
            days = self._years.get(day.year)
            if days is None:
                if day.year not in self._warned_years:
                    self._warned_years.add(day.year)
                    logger.warning(
                        "No holiday data configured for %d; counting weekends only", day.year
                    )
                return False
            return day in days

    def is_working_day(self, day: date) -> bool:
        if day.weekday() in (SATURDAY, SUNDAY):
            return False
        return not self.is_holiday(day)


def _parse_iso(raw) -> date:
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError:
        raise CalendarConfigError(f"Invalid ISO date in holiday calendar: {raw!r}")


def load_default_calendar() -> HolidayCalendar:
    return HolidayCalendar.from_file(HOLIDAYS_PATH)
