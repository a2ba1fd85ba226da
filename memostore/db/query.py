"""Query planning for note listings.

``compose`` turns a ``MemoFilters`` into one parameterized statement; it
never touches the database and never rejects input. Bad filter values are
dropped by ``MemoFilters.from_params`` and oversized pages are clamped.
"""
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timezone
from typing import Any, Iterable, List, Optional, Tuple

from memostore.errors import QueryComposeError

logger = logging.getLogger("memostore.query")

DEFAULT_LIMIT = 50
MAX_LIMIT = 200
MAX_TAG_LEN = 64
# largest value sqlite3 can bind as INTEGER
SQLITE_MAX_INT = 2**63 - 1

NOTE_COLUMNS = (
    "n.id",
    "n.owner_id",
    "n.title",
    "n.body",
    "n.pinned",
    "n.kind",
    "n.location",
    "n.latitude",
    "n.longitude",
    "n.created_at",
    "n.updated_at",
)

_FTS_KEYWORDS = {"AND", "OR", "NOT", "NEAR"}
_TAG_SEPARATORS = re.compile(r"[,\s，;]+")


@dataclass(frozen=True)
class MemoFilters:
    text: Optional[str] = None
    tags: Tuple[str, ...] = ()
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    pinned: Optional[bool] = None
    kind: Optional[str] = None
    owner_id: Optional[int] = None
    limit: int = DEFAULT_LIMIT
    offset: int = 0

    @classmethod
    def from_params(
        cls,
        *,
        q: Optional[str] = None,
        tags: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        pinned: Optional[str] = None,
        kind: Optional[str] = None,
        owner_id: Optional[int] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> "MemoFilters":
        return cls(
            text=q,
            tags=parse_tags(tags),
            date_from=_recover(parse_time, "from", date_from),
            date_to=_recover(parse_time, "to", date_to),
            pinned=_recover(parse_bool, "pinned", pinned),
            kind=(kind or "").strip() or None,
            owner_id=owner_id,
            limit=DEFAULT_LIMIT if limit is None else limit,
            offset=0 if offset is None else offset,
        )


@dataclass(frozen=True)
class QueryPlan:
    sql: str
    args: Tuple[Any, ...] = field(default_factory=tuple)
    distinct: bool = False
    ranked: bool = False
    limit: int = DEFAULT_LIMIT
    offset: int = 0

    def __iter__(self):
        return iter((self.sql, self.args))


def _recover(parse, name: str, raw: Optional[str]):
    try:
        return parse(raw)
    except QueryComposeError as exc:
        logger.warning({"event": "filter_ignored", "filter": name, "error": str(exc)})
        return None


def parse_tags(raw: Optional[Any]) -> Tuple[str, ...]:
    if raw is None:
        return ()
    parts: Iterable[str]
    if isinstance(raw, str):
        parts = _TAG_SEPARATORS.split(raw)
    else:
        parts = raw
    out: List[str] = []
    for part in parts:
        name = (part or "").strip()[:MAX_TAG_LEN]
        if name and name not in out:
            out.append(name)
    return tuple(out)


def parse_bool(raw: Optional[str]) -> Optional[bool]:
    value = (raw or "").strip().lower()
    if not value:
        return None
    if value in ("1", "true", "yes", "y"):
        return True
    if value in ("0", "false", "no", "n"):
        return False
    raise QueryComposeError("pinned", raw, "not a boolean")


def parse_time(raw: Optional[str]) -> Optional[datetime]:
    value = (raw or "").strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(value), time.min)
        except ValueError:
            raise QueryComposeError("date", raw, "unrecognized timestamp") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    try:
        value = value.astimezone(timezone.utc)
    except OverflowError:
        # the shift to UTC left the datetime range; pin to the nearest end
        value = datetime.min if value.year == datetime.min.year else datetime.max
    # isoformat pads years below 1000, strftime does not on every platform
    return value.replace(tzinfo=None).isoformat(timespec="seconds") + "Z"


def clamp_page(limit: Optional[int], offset: Optional[int], max_limit: int = MAX_LIMIT) -> Tuple[int, int]:
    limit = DEFAULT_LIMIT if limit is None or limit <= 0 else limit
    limit = min(limit, max_limit)
    offset = 0 if offset is None or offset < 0 else offset
    offset = min(offset, SQLITE_MAX_INT)
    return limit, offset


def uses_fts_syntax(text: str) -> bool:
    words = text.upper().split()
    if any(word in _FTS_KEYWORDS for word in words):
        return True
    if text.count('"') >= 2:
        return True
    if re.search(r"\b\w+\*", text):
        return True
    return False


def escape_fts(text: str) -> str:
    """Render free text as a sequence of quoted fts5 terms (implicit AND)."""
    terms = [term.replace('"', '""') for term in text.split()]
    return " ".join(f'"{term}"' for term in terms if term)


def fts_expression(text: str) -> str:
    return text if uses_fts_syntax(text) else escape_fts(text)


def _where(filters: MemoFilters) -> Tuple[str, str, List[Any], bool, bool]:
    joins = "FROM notes n"
    conditions: List[str] = []
    args: List[Any] = []

    text = (filters.text or "").strip()
    ranked = bool(text)
    if ranked:
        joins = (
            "FROM (SELECT rowid AS note_id, bm25(notes_fts) AS score "
            "FROM notes_fts WHERE notes_fts MATCH ?) f "
            "JOIN notes n ON n.id = f.note_id"
        )
        args.append(fts_expression(text))

    tags = parse_tags(filters.tags)
    distinct = bool(tags)
    if distinct:
        joins += " JOIN note_tags nt ON nt.note_id = n.id JOIN tags t ON t.id = nt.tag_id"
        conditions.append(f"t.name IN ({','.join('?' for _ in tags)})")
        args.extend(tags)

    if filters.owner_id is not None:
        # unowned rows predate per-owner isolation and stay visible to all
        conditions.append("(n.owner_id = ? OR n.owner_id IS NULL)")
        args.append(filters.owner_id)

    if filters.pinned is not None:
        conditions.append("n.pinned = ?")
        args.append(1 if filters.pinned else 0)

    kind = (filters.kind or "").strip()
    if kind:
        conditions.append("n.kind = ?")
        args.append(kind)

    if filters.date_from is not None:
        conditions.append("n.created_at >= ?")
        args.append(format_timestamp(filters.date_from))
    if filters.date_to is not None:
        conditions.append("n.created_at <= ?")
        args.append(format_timestamp(filters.date_to))

    where = " WHERE " + " AND ".join(conditions) if conditions else ""
    return joins, where, args, distinct, ranked


def compose(filters: MemoFilters, max_limit: int = MAX_LIMIT) -> QueryPlan:
    joins, where, args, distinct, ranked = _where(filters)
    limit, offset = clamp_page(filters.limit, filters.offset, max_limit)

    columns = list(NOTE_COLUMNS)
    if ranked:
        columns.append("f.score")
    select = "SELECT DISTINCT " if distinct else "SELECT "
    if ranked:
        order = "ORDER BY n.pinned DESC, f.score ASC, n.created_at DESC, n.id DESC"
    else:
        order = "ORDER BY n.pinned DESC, n.created_at DESC, n.id DESC"

    sql = f"{select}{', '.join(columns)} {joins}{where} {order} LIMIT ? OFFSET ?"
    return QueryPlan(
        sql=sql,
        args=tuple(args) + (limit, offset),
        distinct=distinct,
        ranked=ranked,
        limit=limit,
        offset=offset,
    )


def compose_count(filters: MemoFilters) -> QueryPlan:
    joins, where, args, distinct, ranked = _where(filters)
    count = "COUNT(DISTINCT n.id)" if distinct else "COUNT(*)"
    return QueryPlan(
        sql=f"SELECT {count} {joins}{where}",
        args=tuple(args),
        distinct=distinct,
        ranked=ranked,
    )


def as_literal(filters: MemoFilters) -> MemoFilters:
    """Same filters with the text forced to a quoted literal."""
    text = (filters.text or "").strip()
    if not text:
        return filters
    return replace(filters, text=escape_fts(text))


def query_shape(filters: MemoFilters) -> str:
    parts = []
    if (filters.text or "").strip():
        parts.append("text")
    if parse_tags(filters.tags):
        parts.append("tags")
    return "+".join(parts) or "plain"
