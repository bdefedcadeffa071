from datetime import date

import pytest

from classes.errors import CalendarConfigError
from classes.holiday_calendar import HolidayCalendar


class TestBundledCalendar:

    def test_loads_2025_table(self, calendar):
        days = calendar.holidays_for(2025)
        assert len(days) == 28
        assert days[0] == date(2025, 1, 1)
        assert days[-1] == date(2025, 12, 31)
        assert calendar.years() == [2025]

    def test_weekends_are_never_working_days(self, calendar):
        assert not calendar.is_working_day(date(2025, 10, 18))
        assert not calendar.is_working_day(date(2025, 10, 19))
        assert calendar.is_working_day(date(2025, 10, 20))

    def test_listed_weekday_holiday(self, calendar):
        # Thursday
        assert not calendar.is_working_day(date(2025, 5, 1))

    def test_unknown_year_has_no_holidays(self, calendar):
        assert calendar.holidays_for(2031) is None
        assert calendar.is_working_day(date(2031, 1, 1))


class TestLoading:

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "holidays.yaml"
        path.write_text("years:\n  2026:\n    - 2026-01-01\n    - '2026-01-02'\n", encoding="utf-8")

        cal = HolidayCalendar.from_file(path)

        assert cal.holidays_for(2026) == [date(2026, 1, 1), date(2026, 1, 2)]
        assert not cal.is_working_day(date(2026, 1, 2))

    def test_json_with_comments(self, tmp_path):
        path = tmp_path / "holidays.json"
        path.write_text(
            '// office closures\n{"years": {"2027": ["2027-01-01"]}}\n',
            encoding="utf-8",
        )
        cal = HolidayCalendar.from_file(path)
        assert cal.holidays_for(2027) == [date(2027, 1, 1)]

    def test_missing_file(self, tmp_path):
        with pytest.raises(CalendarConfigError):
            HolidayCalendar.from_file(tmp_path / "nope.json")

    def test_missing_years_mapping(self, tmp_path):
        path = tmp_path / "holidays.json"
        path.write_text('{"2025": []}', encoding="utf-8")
        with pytest.raises(CalendarConfigError):
            HolidayCalendar.from_file(path)

    def test_date_under_wrong_year(self, tmp_path):
        path = tmp_path / "holidays.json"
        path.write_text('{"years": {"2025": ["2026-01-01"]}}', encoding="utf-8")
        with pytest.raises(CalendarConfigError):
            HolidayCalendar.from_file(path)

    def test_bad_date(self, tmp_path):
        path = tmp_path / "holidays.json"
        path.write_text('{"years": {"2025": ["2025-13-01"]}}', encoding="utf-8")
        with pytest.raises(CalendarConfigError):
            HolidayCalendar.from_file(path)


def test_set_year_replaces_table():
    cal = HolidayCalendar({2025: [date(2025, 3, 3)]})
    assert not cal.is_working_day(date(2025, 3, 3))

    cal.set_year(2025, [date(2025, 3, 4)])

    assert cal.is_working_day(date(2025, 3, 3))
    assert not cal.is_working_day(date(2025, 3, 4))
