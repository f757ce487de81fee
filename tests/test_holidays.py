"""Tests for weekwise.core.holidays."""

from datetime import date

from weekwise.core.holidays import holiday_on, holidays_in_range, public_holidays


class TestPublicHolidays:
    def test_uk_easter_2026(self):
        names = {h.name: h.date for h in public_holidays("UK", 2026)}
        assert names["Good Friday"] == date(2026, 4, 3)
        assert names["Easter Monday"] == date(2026, 4, 6)

    def test_uk_bank_holiday_mondays(self):
        names = {h.name: h.date for h in public_holidays("UK", 2026)}
        assert names["Early May Bank Holiday"] == date(2026, 5, 4)
        assert names["Spring Bank Holiday"] == date(2026, 5, 25)
        assert names["Summer Bank Holiday"] == date(2026, 8, 31)

    def test_uk_weekend_christmas_gets_distinct_substitute_days(self):
        # 2027: Christmas on Saturday, Boxing Day on Sunday
        observed = {h.name: h.effective_date for h in public_holidays("UK", 2027)}
        assert observed["Christmas Day"] == date(2027, 12, 27)
        assert observed["Boxing Day"] == date(2027, 12, 28)

    def test_uk_sunday_christmas_skips_boxing_day(self):
        # 2022: Christmas on Sunday, Boxing Day on Monday
        observed = {h.name: h.effective_date for h in public_holidays("UK", 2022)}
        assert observed["Boxing Day"] == date(2022, 12, 26)
        assert observed["Christmas Day"] == date(2022, 12, 27)

    def test_us_thanksgiving(self):
        names = {h.name: h.date for h in public_holidays("US", 2026)}
        assert names["Thanksgiving"] == date(2026, 11, 26)

    def test_ca_victoria_day(self):
        names = {h.name: h.date for h in public_holidays("CA", 2026)}
        assert names["Victoria Day"] == date(2026, 5, 18)

    def test_country_code_is_case_insensitive(self):
        assert public_holidays("us", 2026) == public_holidays("US", 2026)

    def test_unknown_country_falls_back_to_uk(self):
        assert public_holidays("ZZ", 2026) == public_holidays("UK", 2026)


class TestHolidayLookup:
    def test_range_uses_effective_date(self):
        found = holidays_in_range("UK", date(2027, 12, 27), date(2027, 12, 31))
        assert [h.name for h in found] == ["Christmas Day", "Boxing Day"]

    def test_range_spanning_new_year(self):
        found = holidays_in_range("UK", date(2026, 12, 20), date(2027, 1, 5))
        assert [h.effective_date for h in found] == [
            date(2026, 12, 25), date(2026, 12, 28), date(2027, 1, 1),
        ]

    def test_holiday_on(self):
        assert holiday_on("UK", date(2026, 12, 25)).name == "Christmas Day"
        assert holiday_on("UK", date(2026, 12, 24)) is None
