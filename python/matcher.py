"""
Sanctions Matcher
Token-containment name matching with date-of-birth and
restriction-field corroboration

Matching rules:
- Names are compared as token sets. The smaller set must be fully
  contained in the larger one, so partial names on either side match
  as long as nothing in the shorter name is missing from the longer.
- A query date of birth must agree with the entry's exact dates or
  birth years when the entry lists any.
- Every restriction field the query supplies must be accepted by the
  entry; a single disagreeing field rules the whole entry out.
- The first qualifying entry wins. Sources are visited in snapshot
  order, entries in stored order.

SECURITY: Input validation runs before matching.
"""

import logging
import unicodedata
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from config_manager import ConfigManager, get_config
from log_utils import sanitize_for_logging
from normalizer import (
    date_to_epoch,
    normalize_country,
    normalize_name,
    normalize_text,
    parse_dob,
)
from store.records import COUNTRY_FIELDS, TEXT_FIELDS, Entry, Snapshot

logger = logging.getLogger(__name__)

DOB_COMMENT_PREFIX = "dob raw text: "

# camelCase aliases accepted in structured queries
QUERY_KEY_ALIASES = {
    'firstName': 'first_name',
    'lastName': 'last_name',
    'placeOfBirth': 'place_of_birth',
    'postalCode': 'postal_code',
    'nationalId': 'national_id',
    'passportNo': 'passport_no',
}


@dataclass
class QueryPerson:
    """Input data for a sanctions query"""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    dob: Optional[Union[date, datetime, str]] = None
    place_of_birth: Optional[str] = None
    residence: Optional[str] = None
    nationality: Optional[str] = None
    citizen: Optional[str] = None
    postal_code: Optional[str] = None
    national_id: Optional[str] = None
    passport_no: Optional[str] = None

    @property
    def full_name(self) -> str:
        if self.name:
            return self.name
        return ' '.join(p for p in (self.first_name, self.last_name) if p)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> 'QueryPerson':
        """Build from a structured attribute map (snake or camel case keys)"""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            key = QUERY_KEY_ALIASES.get(key, key)
            if key not in known:
                raise InputValidationError(
                    f"Unknown query field: '{key}'",
                    field=key,
                    code="UNKNOWN_FIELD",
                    suggestion=f"Use one of: {', '.join(sorted(known))}"
                )
            kwargs[key] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                data[f.name] = value.isoformat() if isinstance(value, date) else value
        return data


@dataclass
class MatchResult:
    """Outcome of a sanctions query"""
    matched: bool
    list: Optional[str] = None
    matched_args: Dict[str, Any] = field(default_factory=dict)
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.matched:
            return {'matched': False}
        return {
            'matched': True,
            'list': self.list,
            'matchedArgs': dict(self.matched_args),
            'comment': self.comment
        }


class InputValidationError(ValueError):
    """Raised when input validation fails

    Attributes:
        field: The field that failed validation
        code: Error code for programmatic handling
        message: Human-readable error message
        suggestion: Optional suggestion for fixing the error
    """
    def __init__(self, message: str, field: str = "unknown", code: str = "VALIDATION_ERROR", suggestion: str = ""):
        self.field = field
        self.code = code
        self.suggestion = suggestion
        super().__init__(message)


def build_query(*args: Any, **kwargs: Any) -> QueryPerson:
    """Build a QueryPerson from any supported call form

    Supported:
        build_query(query_person)
        build_query({'first_name': ..., 'last_name': ..., ...})
        build_query(first_name, last_name[, dob])
        build_query(first_name=..., last_name=..., residence=...)
    """
    if len(args) == 1 and not kwargs:
        arg = args[0]
        if isinstance(arg, QueryPerson):
            return arg
        if isinstance(arg, Mapping):
            return QueryPerson.from_mapping(arg)

    if args:
        if len(args) > 3:
            raise InputValidationError(
                f"Expected (first_name, last_name[, dob]), got {len(args)} positional arguments",
                field="query",
                code="INVALID_ARGUMENTS"
            )
        positional = dict(zip(('first_name', 'last_name', 'dob'), args))
        overlap = set(positional) & set(kwargs)
        if overlap:
            raise InputValidationError(
                f"Field given twice: {sorted(overlap)}",
                field=sorted(overlap)[0],
                code="INVALID_ARGUMENTS"
            )
        kwargs = {**positional, **kwargs}

    return QueryPerson.from_mapping(kwargs)


def validate_query(query: QueryPerson, config: Optional[ConfigManager] = None) -> None:
    """Validate query input for security and correctness

    Args:
        query: QueryPerson to validate
        config: Optional configuration manager for validation settings

    Raises:
        InputValidationError: If validation fails with detailed error info
    """
    if config is None:
        config = get_config()

    iv_config = config.input_validation
    name = query.full_name

    if not normalize_name(name):
        raise InputValidationError(
            "A name is required (first_name/last_name or name)",
            field="name",
            code="NAME_REQUIRED",
            suggestion="Provide at least one name token"
        )

    if len(name) > iv_config.name_max_length:
        raise InputValidationError(
            f"Name too long ({len(name)} chars, maximum {iv_config.name_max_length})",
            field="name",
            code="NAME_TOO_LONG",
            suggestion=f"Shorten the name to {iv_config.name_max_length} characters or less"
        )

    found_blocked = [c for c in name if c in iv_config.blocked_characters]
    if found_blocked:
        logger.warning("SECURITY: Blocked characters detected in name input: %s",
                       sanitize_for_logging(name))
        raise InputValidationError(
            f"Name contains blocked characters: {found_blocked}",
            field="name",
            code="BLOCKED_CHARACTERS",
            suggestion="Remove special characters like < > { } [ ] | \\ ; ` $"
        )

    for char in name:
        # Cc/Cf/Cs: control, format and surrogate characters
        if unicodedata.category(char).startswith('C'):
            logger.warning("SECURITY: Control character detected in name: %s",
                           sanitize_for_logging(name))
            raise InputValidationError(
                f"Name contains invalid control character (code: {ord(char)})",
                field="name",
                code="CONTROL_CHARACTER",
                suggestion="Remove invisible or control characters from the name"
            )

    if query.dob is not None:
        try:
            parse_dob(query.dob)
        except ValueError:
            raise InputValidationError(
                f"DOB must be a date or ISO 8601 string. Got: '{sanitize_for_logging(str(query.dob))}'",
                field="dob",
                code="INVALID_DOB_FORMAT",
                suggestion="Use format YYYY-MM-DD, e.g. '1980-01-15'"
            )


def names_contained(a: FrozenSet[str], b: FrozenSet[str]) -> bool:
    """Containment match between two token sets

    The smaller set (by cardinality) must be non-empty and a subset
    of the larger one.
    """
    small, large = (a, b) if len(a) <= len(b) else (b, a)
    return bool(small) and small <= large


def _match_alias(entry: Entry, query_tokens: FrozenSet[str]) -> Optional[str]:
    for alias in entry.names:
        if names_contained(query_tokens, normalize_name(alias)):
            return alias
    return None


def _match_dob(entry: Entry, dob: Optional[date]) -> Tuple[bool, Dict[str, int]]:
    """Check the date of birth; returns (passed, matched args)"""
    if dob is None or not (entry.dob_epoch or entry.dob_year):
        return True, {}
    epoch = date_to_epoch(dob)
    if epoch in entry.dob_epoch:
        return True, {'dob_epoch': epoch}
    if dob.year in entry.dob_year:
        return True, {'dob_year': dob.year}
    return False, {}


def _match_restrictions(
    entry: Entry,
    normalized: Dict[str, Optional[str]],
    unresolved_country: str
) -> Tuple[bool, Dict[str, str]]:
    """Check every query-supplied restriction field against the entry"""
    matched: Dict[str, str] = {}
    for field_name, value in normalized.items():
        allowed = entry.restriction(field_name)
        if allowed is None:
            continue

        if field_name in COUNTRY_FIELDS:
            if value is None:
                if unresolved_country == 'reject':
                    return False, {}
                continue
            if value not in allowed:
                return False, {}
            matched[field_name] = value
        else:
            if not any(v.casefold() == value for v in allowed):
                return False, {}
            matched[field_name] = value
    return True, matched


def _normalize_restrictions(
    query: QueryPerson,
    country_aliases: Optional[Mapping[str, str]]
) -> Dict[str, Optional[str]]:
    """Normalize the restriction values the query actually supplies

    Country values that cannot be resolved are kept as None.
    """
    normalized: Dict[str, Optional[str]] = {}
    for field_name in COUNTRY_FIELDS:
        raw = getattr(query, field_name)
        if raw is None or not str(raw).strip():
            continue
        code = normalize_country(raw, country_aliases)
        if code is None:
            logger.warning("Unrecognized country for %s: %s", field_name, sanitize_for_logging(str(raw)))
        normalized[field_name] = code
    for field_name in TEXT_FIELDS:
        value = normalize_text(getattr(query, field_name))
        if value is not None:
            normalized[field_name] = value
    return normalized


def find_match(
    snapshot: Snapshot,
    query: QueryPerson,
    country_aliases: Optional[Mapping[str, str]] = None,
    unresolved_country: str = 'ignore'
) -> MatchResult:
    """Find the first entry across all sources that matches the query

    Args:
        snapshot: Loaded source content
        query: Query person (validated)
        country_aliases: Extra country name -> code mapping
        unresolved_country: 'ignore' or 'reject' for country values
            that cannot be resolved to a code

    Returns:
        MatchResult (matched=False if nothing qualifies)
    """
    query_tokens = normalize_name(query.full_name)
    if not query_tokens:
        return MatchResult(matched=False)

    dob = parse_dob(query.dob) if query.dob is not None else None
    restrictions = _normalize_restrictions(query, country_aliases)

    for source_name, source in snapshot.sources.items():
        for entry in source.content:
            alias = _match_alias(entry, query_tokens)
            if alias is None:
                continue

            dob_ok, dob_args = _match_dob(entry, dob)
            if not dob_ok:
                continue

            fields_ok, field_args = _match_restrictions(entry, restrictions, unresolved_country)
            if not fields_ok:
                continue

            comment = None
            if entry.dob_text:
                comment = DOB_COMMENT_PREFIX + ', '.join(entry.dob_text)

            logger.info("Match found in list '%s' for alias: %s", source_name, sanitize_for_logging(alias))
            return MatchResult(
                matched=True,
                list=source_name,
                matched_args={'name': alias, **dob_args, **field_args},
                comment=comment
            )

    return MatchResult(matched=False)
