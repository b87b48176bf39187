"""
Watchlist record types shared by the fetcher, the cache store and the matcher

Entries are immutable once built; a source's content is replaced
wholesale whenever it changes. The JSON form (camelCase keys) is the
one persisted in the store and served by list endpoints.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple


class EntryFormatError(ValueError):
    """Raised when an entry cannot be built from its serialized form"""
    pass


# Python attribute -> JSON key
COUNTRY_FIELDS: Dict[str, str] = {
    'place_of_birth': 'placeOfBirth',
    'residence': 'residence',
    'nationality': 'nationality',
    'citizen': 'citizen',
}

TEXT_FIELDS: Dict[str, str] = {
    'postal_code': 'postalCode',
    'national_id': 'nationalId',
    'passport_no': 'passportNo',
}

RESTRICTION_FIELDS: Dict[str, str] = {**COUNTRY_FIELDS, **TEXT_FIELDS}


def _as_list(value: Any, key: str) -> list:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        return [value]
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    raise EntryFormatError(f"Field '{key}' must be a list, got {type(value).__name__}")


def _as_int_set(value: Any, key: str) -> FrozenSet[int]:
    try:
        return frozenset(int(v) for v in _as_list(value, key))
    except (TypeError, ValueError):
        raise EntryFormatError(f"Field '{key}' must contain integers")


def _restriction(value: Any, key: str, lower: bool) -> Optional[FrozenSet[str]]:
    if value is None:
        return None
    items = [str(v).strip() for v in _as_list(value, key)]
    items = [v for v in items if v]
    if lower:
        items = [v.lower() for v in items]
    return frozenset(items)


@dataclass(frozen=True)
class Entry:
    """One sanctioned identity within a source

    A restriction field set to None means the entry places no
    constraint on that attribute.
    """
    names: Tuple[str, ...]
    dob_epoch: FrozenSet[int] = frozenset()
    dob_year: FrozenSet[int] = frozenset()
    dob_text: Tuple[str, ...] = ()
    place_of_birth: Optional[FrozenSet[str]] = None
    residence: Optional[FrozenSet[str]] = None
    nationality: Optional[FrozenSet[str]] = None
    citizen: Optional[FrozenSet[str]] = None
    postal_code: Optional[FrozenSet[str]] = None
    national_id: Optional[FrozenSet[str]] = None
    passport_no: Optional[FrozenSet[str]] = None

    def __post_init__(self):
        if not self.names or not any(n.strip() for n in self.names):
            raise EntryFormatError("Entry requires at least one name")

    def restriction(self, field_name: str) -> Optional[FrozenSet[str]]:
        """Get the restriction set for a field, None if unrestricted"""
        return getattr(self, field_name)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Entry':
        """Build an entry from its JSON form

        Raises:
            EntryFormatError: If the data is malformed
        """
        if not isinstance(data, Mapping):
            raise EntryFormatError(f"Entry must be a mapping, got {type(data).__name__}")

        names = tuple(
            str(n).strip() for n in _as_list(data.get('names'), 'names') if str(n).strip()
        )
        if not names:
            raise EntryFormatError("Entry requires at least one name")

        dob_text = tuple(dict.fromkeys(
            str(t).strip() for t in _as_list(data.get('dobText'), 'dobText') if str(t).strip()
        ))

        kwargs: Dict[str, Any] = {
            'names': names,
            'dob_epoch': _as_int_set(data.get('dobEpoch'), 'dobEpoch'),
            'dob_year': _as_int_set(data.get('dobYear'), 'dobYear'),
            'dob_text': dob_text,
        }
        for attr, key in COUNTRY_FIELDS.items():
            kwargs[attr] = _restriction(data.get(key), key, lower=True)
        for attr, key in TEXT_FIELDS.items():
            kwargs[attr] = _restriction(data.get(key), key, lower=False)

        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Convert entry to its JSON form (restriction fields only when set)"""
        data: Dict[str, Any] = {'names': list(self.names)}
        if self.dob_epoch:
            data['dobEpoch'] = sorted(self.dob_epoch)
        if self.dob_year:
            data['dobYear'] = sorted(self.dob_year)
        if self.dob_text:
            data['dobText'] = list(self.dob_text)
        for attr, key in RESTRICTION_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = sorted(value)
        return data


def entries_from_dicts(items: Optional[Iterable[Mapping[str, Any]]]) -> Tuple[Entry, ...]:
    """Build an ordered entry tuple from serialized content"""
    if items is None:
        return ()
    if isinstance(items, (str, bytes, Mapping)):
        raise EntryFormatError("Content must be a list of entries")
    return tuple(Entry.from_dict(item) for item in items)


def entries_to_dicts(entries: Iterable[Entry]) -> list:
    return [e.to_dict() for e in entries]


@dataclass(frozen=True)
class SourceRecord:
    """Persisted state of a single source"""
    content: Tuple[Entry, ...] = ()
    published: int = 0
    verified: int = 0
    error: str = ""


EMPTY_RECORD = SourceRecord()


@dataclass(frozen=True)
class FetchedRecord:
    """Result of fetching one source, either data or an error message"""
    published: int = 0
    content: Tuple[Entry, ...] = ()
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return bool(self.error)

    @classmethod
    def failure(cls, message: str) -> 'FetchedRecord':
        return cls(error=message or "unknown fetch error")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'FetchedRecord':
        """Build from the fetcher wire form {published, content, error}"""
        if data.get('error'):
            return cls.failure(str(data['error']))
        try:
            published = int(data.get('published') or 0)
        except (TypeError, ValueError):
            raise EntryFormatError(f"'published' must be an integer, got {data.get('published')!r}")
        return cls(published=published, content=entries_from_dicts(data.get('content')))


@dataclass(frozen=True)
class SnapshotSource:
    """What the matcher sees of one source"""
    content: Tuple[Entry, ...]
    published: int
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'content': entries_to_dicts(self.content),
            'published': self.published,
            'error': self.error,
        }


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of every source's content

    A new Snapshot is built on every load; existing instances are never
    modified, so readers can keep using one while a refresh runs.
    """
    sources: Mapping[str, SnapshotSource] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_records(cls, records: Mapping[str, SourceRecord]) -> 'Snapshot':
        projected = {
            name: SnapshotSource(
                content=record.content,
                published=record.published,
                error=record.error,
            )
            for name, record in sorted(records.items())
        }
        return cls(sources=MappingProxyType(projected))

    @property
    def entry_count(self) -> int:
        return sum(len(s.content) for s in self.sources.values())

    def to_dict(self) -> Dict[str, Any]:
        return {name: source.to_dict() for name, source in self.sources.items()}
