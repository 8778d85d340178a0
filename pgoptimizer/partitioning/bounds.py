"""
Partition range arithmetic, partition names and bound expression parsing.

All bounds are UTC midnights. Naive datetimes are taken as UTC.

    daily    [d, d+1)                  <table>_YYYY_MM_DD
    weekly   [monday, monday+7) (ISO)  <table>_YYYY_wWW
    monthly  [1st, 1st of next month)  <table>_YYYY_MM
    yearly   [Jan 1, Jan 1 next year)  <table>_YYYY
"""
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

import sqlglot
from sqlglot.errors import TokenError
from sqlglot.tokens import TokenType

from pgoptimizer.partitioning.type import PartitionSize


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _midnight(d: date) -> datetime:
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def _add_months(start: datetime, months: int) -> datetime:
    index = start.year * 12 + (start.month - 1) + months
    return datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)


def unit_start(size: PartitionSize, at: datetime) -> datetime:
    """First instant of the partition unit containing ``at``."""
    at = ensure_utc(at)
    size = PartitionSize(size)
    if size == PartitionSize.DAILY:
        return _midnight(at.date())
    if size == PartitionSize.WEEKLY:
        return _midnight(at.date() - timedelta(days=at.weekday()))
    if size == PartitionSize.MONTHLY:
        return datetime(at.year, at.month, 1, tzinfo=timezone.utc)
    return datetime(at.year, 1, 1, tzinfo=timezone.utc)


def add_units(size: PartitionSize, start: datetime, count: int) -> datetime:
    """Move a unit start ``count`` whole units forward (or back when negative)."""
    start = unit_start(size, start)
    size = PartitionSize(size)
    if size == PartitionSize.DAILY:
        return start + timedelta(days=count)
    if size == PartitionSize.WEEKLY:
        return start + timedelta(days=7 * count)
    if size == PartitionSize.MONTHLY:
        return _add_months(start, count)
    return datetime(start.year + count, 1, 1, tzinfo=timezone.utc)


def partition_range(size: PartitionSize, at: datetime) -> Tuple[datetime, datetime]:
    start = unit_start(size, at)
    return start, add_units(size, start, 1)


def partition_suffix(size: PartitionSize, start: datetime) -> str:
    start = unit_start(size, start)
    size = PartitionSize(size)
    if size == PartitionSize.DAILY:
        return start.strftime("%Y_%m_%d")
    if size == PartitionSize.WEEKLY:
        iso_year, iso_week, _ = start.isocalendar()
        return f"{iso_year:04d}_w{iso_week:02d}"
    if size == PartitionSize.MONTHLY:
        return start.strftime("%Y_%m")
    return start.strftime("%Y")


def partition_name(table_name: str, size: PartitionSize, at: datetime) -> str:
    return f"{table_name}_{partition_suffix(size, at)}"


def format_bound(value: datetime) -> str:
    """Bound literal text used in FOR VALUES clauses."""
    value = ensure_utc(value)
    if value.hour == value.minute == value.second == value.microsecond == 0:
        return value.strftime("%Y-%m-%d")
    return value.isoformat()


_TZ_HOURS_RE = re.compile(r"([+-]\d{2})$")


def parse_bound_literal(text: str) -> Optional[datetime]:
    """
    Parse a bound literal as printed by ``pg_get_expr``.

    Accepts ``2024-01-01``, ``2024-01-01 00:00:00`` and ``2024-01-01 00:00:00+00``.
    Returns None for anything else, e.g. ``infinity`` or non-date keys.
    """
    value = (text or "").strip()
    if not value:
        return None
    if " " in value or "T" in value:
        # "+00" offsets only follow a time part; a bare date ends in "-DD"
        value = _TZ_HOURS_RE.sub(r"\1:00", value)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    return ensure_utc(parsed)


def parse_partition_bound(expr: str) -> Tuple[Optional[datetime], Optional[datetime], bool]:
    """
    Extract ``(range_start, range_end, is_default)`` from a partition bound expression.

    ``FOR VALUES FROM ('2024-01-01') TO ('2024-02-01')`` gives both dates, ``DEFAULT``
    gives ``(None, None, True)``. MINVALUE, MAXVALUE and unparseable bounds are None.
    Only the first column of a multi-column range key is read.
    """
    text = (expr or "").strip()
    if not text:
        return None, None, False
    try:
        tokens = sqlglot.tokenize(text, read="postgres")
    except TokenError:
        return None, None, False

    words = [t.text.upper() for t in tokens if t.token_type != TokenType.STRING]
    if words == ["DEFAULT"]:
        return None, None, True

    section = None
    found = {}
    for token in tokens:
        if token.token_type == TokenType.STRING:
            if section and section not in found:
                found[section] = parse_bound_literal(token.text)
            continue
        word = token.text.upper()
        if word in ("FROM", "TO"):
            section = word
        elif word in ("MINVALUE", "MAXVALUE") and section and section not in found:
            found[section] = None
    return found.get("FROM"), found.get("TO"), False
