"""Public holiday calendar: national holidays per supported country.

No I/O: holidays are computed from fixed dates, Easter offsets and
nth-weekday rules. Unknown country codes fall back to the UK calendar.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Callable

from dateutil.easter import easter
from dateutil.relativedelta import MO, TH, relativedelta

from weekwise.data.models import Holiday

logger = logging.getLogger(__name__)


def _nth(year: int, month: int, weekday, n: int) -> date:
    """nth weekday of a month, e.g. _nth(y, 11, TH, 4) is US Thanksgiving."""
    return date(year, month, 1) + relativedelta(weekday=weekday(+n))


def _last(year: int, month: int, weekday) -> date:
    return date(year, month, 1) + relativedelta(day=31, weekday=weekday(-1))


def _uk(year: int) -> list[Holiday]:
    e = easter(year)
    holidays = [
        Holiday(date(year, 1, 1), "New Year's Day"),
        Holiday(e - timedelta(days=2), "Good Friday"),
        Holiday(e + timedelta(days=1), "Easter Monday"),
        Holiday(_nth(year, 5, MO, 1), "Early May Bank Holiday"),
        Holiday(_last(year, 5, MO), "Spring Bank Holiday"),
        Holiday(_last(year, 8, MO), "Summer Bank Holiday"),
        Holiday(date(year, 12, 25), "Christmas Day"),
        Holiday(date(year, 12, 26), "Boxing Day"),
    ]
    # Weekend holidays move to the next weekday that is not already a holiday
    taken = {h.date for h in holidays if h.date.weekday() < 5}
    for h in holidays:
        if h.date.weekday() < 5:
            continue
        day = h.date + timedelta(days=1)
        while day.weekday() >= 5 or day in taken:
            day += timedelta(days=1)
        h.observed = day
        taken.add(day)
    return holidays


def _us(year: int) -> list[Holiday]:
    return [
        Holiday(date(year, 1, 1), "New Year's Day"),
        Holiday(_nth(year, 1, MO, 3), "Martin Luther King Jr. Day"),
        Holiday(_nth(year, 2, MO, 3), "Presidents' Day"),
        Holiday(_last(year, 5, MO), "Memorial Day"),
        Holiday(date(year, 6, 19), "Juneteenth"),
        Holiday(date(year, 7, 4), "Independence Day"),
        Holiday(_nth(year, 9, MO, 1), "Labor Day"),
        Holiday(_nth(year, 10, MO, 2), "Columbus Day"),
        Holiday(date(year, 11, 11), "Veterans Day"),
        Holiday(_nth(year, 11, TH, 4), "Thanksgiving"),
        Holiday(date(year, 12, 25), "Christmas Day"),
    ]


def _au(year: int) -> list[Holiday]:
    e = easter(year)
    return [
        Holiday(date(year, 1, 1), "New Year's Day"),
        Holiday(date(year, 1, 26), "Australia Day"),
        Holiday(e - timedelta(days=2), "Good Friday"),
        Holiday(e - timedelta(days=1), "Easter Saturday"),
        Holiday(e + timedelta(days=1), "Easter Monday"),
        Holiday(date(year, 4, 25), "ANZAC Day"),
        Holiday(_nth(year, 6, MO, 2), "King's Birthday"),
        Holiday(date(year, 12, 25), "Christmas Day"),
        Holiday(date(year, 12, 26), "Boxing Day"),
    ]


def _ca(year: int) -> list[Holiday]:
    e = easter(year)
    return [
        Holiday(date(year, 1, 1), "New Year's Day"),
        Holiday(e - timedelta(days=2), "Good Friday"),
        # Monday on or before May 24
        Holiday(date(year, 5, 24) + relativedelta(weekday=MO(-1)), "Victoria Day"),
        Holiday(date(year, 7, 1), "Canada Day"),
        Holiday(_nth(year, 9, MO, 1), "Labour Day"),
        Holiday(_nth(year, 10, MO, 2), "Thanksgiving"),
        Holiday(date(year, 11, 11), "Remembrance Day"),
        Holiday(date(year, 12, 25), "Christmas Day"),
        Holiday(date(year, 12, 26), "Boxing Day"),
    ]


def _de(year: int) -> list[Holiday]:
    e = easter(year)
    return [
        Holiday(date(year, 1, 1), "Neujahr"),
        Holiday(e - timedelta(days=2), "Karfreitag"),
        Holiday(e + timedelta(days=1), "Ostermontag"),
        Holiday(date(year, 5, 1), "Tag der Arbeit"),
        Holiday(e + timedelta(days=39), "Christi Himmelfahrt"),
        Holiday(e + timedelta(days=50), "Pfingstmontag"),
        Holiday(date(year, 10, 3), "Tag der Deutschen Einheit"),
        Holiday(date(year, 12, 25), "Erster Weihnachtstag"),
        Holiday(date(year, 12, 26), "Zweiter Weihnachtstag"),
    ]


def _fr(year: int) -> list[Holiday]:
    e = easter(year)
    return [
        Holiday(date(year, 1, 1), "Jour de l'An"),
        Holiday(e + timedelta(days=1), "Lundi de Pâques"),
        Holiday(date(year, 5, 1), "Fête du Travail"),
        Holiday(date(year, 5, 8), "Victoire 1945"),
        Holiday(e + timedelta(days=39), "Ascension"),
        Holiday(e + timedelta(days=50), "Lundi de Pentecôte"),
        Holiday(date(year, 7, 14), "Fête Nationale"),
        Holiday(date(year, 8, 15), "Assomption"),
        Holiday(date(year, 11, 1), "Toussaint"),
        Holiday(date(year, 11, 11), "Armistice"),
        Holiday(date(year, 12, 25), "Noël"),
    ]


def _in(year: int) -> list[Holiday]:
    # National holidays only; regional ones vary by state.
    return [
        Holiday(date(year, 1, 26), "Republic Day"),
        Holiday(date(year, 8, 15), "Independence Day"),
        Holiday(date(year, 10, 2), "Gandhi Jayanti"),
    ]


_CALENDARS: dict[str, Callable[[int], list[Holiday]]] = {
    "UK": _uk,
    "GB": _uk,
    "US": _us,
    "AU": _au,
    "CA": _ca,
    "DE": _de,
    "FR": _fr,
    "IN": _in,
}

SUPPORTED_COUNTRIES = {
    "UK": "United Kingdom",
    "US": "United States",
    "AU": "Australia",
    "CA": "Canada",
    "DE": "Germany",
    "FR": "France",
    "IN": "India",
}


def public_holidays(country: str, year: int) -> list[Holiday]:
    """Return the national holidays of `country` for `year`."""
    code = (country or "").strip().upper()
    fn = _CALENDARS.get(code)
    if fn is None:
        logger.debug("No holiday calendar for %r, using UK", country)
        fn = _uk
    return fn(year)


def holidays_in_range(country: str, start: date, end: date) -> list[Holiday]:
    """Holidays whose effective (observed) date falls in [start, end]."""
    found: list[Holiday] = []
    for year in range(start.year, end.year + 1):
        found.extend(
            h for h in public_holidays(country, year)
            if start <= h.effective_date <= end
        )
    found.sort(key=lambda h: h.effective_date)
    return found


def holiday_on(country: str, day: date) -> Holiday | None:
    for h in public_holidays(country, day.year):
        if h.effective_date == day:
            return h
    return None
