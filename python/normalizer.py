"""
Field normalization for sanctions screening

Pure functions that turn free-text query and list values into the
canonical forms the matcher compares:
- names become a set of lower-case tokens
- country names become lower-case ISO 3166-1 alpha-2 codes
- document / postal values become case-folded strings
- dates of birth become calendar dates or UTC-midnight epoch seconds
"""

import calendar
import re
from datetime import date, datetime
from typing import Optional, FrozenSet, Mapping, Union

import pycountry

DOB_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def normalize_name(name: Optional[str]) -> FrozenSet[str]:
    """Normalize a name into its token set

    Lower-cases, splits on whitespace, drops empty tokens and
    collapses duplicates.

    Args:
        name: Free-text name (can be None)

    Returns:
        Frozen set of tokens, empty if name is None/blank
    """
    if not name:
        return frozenset()
    return frozenset(token for token in name.lower().split() if token)


def normalize_country(value: Optional[str], aliases: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Resolve a free-text country name to its 2-letter code

    The alias table is consulted first (keys are lower-case names),
    then the ISO 3166 table: alpha-2, alpha-3, name, official name
    and common name are all accepted, case-insensitively.

    Args:
        value: Country name or code as typed by the caller
        aliases: Optional extra name -> code mapping

    Returns:
        Lower-case alpha-2 code, or None if the value is not recognized
    """
    if value is None:
        return None
    key = ' '.join(str(value).split()).lower()
    if not key:
        return None

    if aliases and key in aliases:
        return aliases[key].lower()

    try:
        country = pycountry.countries.lookup(key)
    except LookupError:
        return None
    return country.alpha_2.lower()


def normalize_text(value: Optional[str]) -> Optional[str]:
    """Normalize a verbatim field (postal code, national ID, passport)

    Returns:
        Stripped, case-folded string, or None for blank input
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.casefold()


def parse_dob(value: Union[date, datetime, str]) -> date:
    """Parse a date of birth supplied by a caller

    Args:
        value: date, datetime, or ISO 'YYYY-MM-DD' string

    Returns:
        Calendar date

    Raises:
        ValueError: If the value is not a recognizable date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if DOB_PATTERN.match(text):
            return datetime.strptime(text, '%Y-%m-%d').date()
    raise ValueError(f"Unrecognized date of birth: {value!r}")


def date_to_epoch(value: date) -> int:
    """Seconds since the Unix epoch at UTC midnight of the given date"""
    return calendar.timegm(value.timetuple())
