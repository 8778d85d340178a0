"""WHERE clause accumulation with ``?`` placeholders rendered as asyncpg ``$n``."""

from typing import Any, List, Tuple


def renumber_placeholders(clause: str, start: int) -> Tuple[str, int]:
    """
    Replace each ``?`` outside quoted text with ``$start``, ``$start+1``, ...

    Returns the rendered text and the next free placeholder number. JSONB ``?``
    operators are not supported inside clauses; use ``jsonb_exists`` instead.
    """
    out: List[str] = []
    index = start
    quote = None
    for ch in clause:
        if quote:
            out.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append(f"${index}")
            index += 1
        else:
            out.append(ch)
    return "".join(out), index


class WhereClause:
    """AND-combined conditions and their bind arguments."""

    def __init__(self) -> None:
        self._conditions: List[Tuple[str, Tuple[Any, ...]]] = []

    def add(self, condition: str, *args: Any) -> "WhereClause":
        condition = (condition or "").strip()
        if not condition:
            return self
        expected = renumber_placeholders(condition, 1)[1] - 1
        if expected != len(args):
            raise ValueError(
                f"condition {condition!r} has {expected} placeholders but {len(args)} arguments"
            )
        self._conditions.append((condition, args))
        return self

    def __bool__(self) -> bool:
        return bool(self._conditions)

    def render(self, start: int = 1) -> Tuple[str, List[Any], int]:
        """Return (" WHERE ...", args, next_placeholder); empty text when there are no conditions."""
        if not self._conditions:
            return "", [], start
        parts: List[str] = []
        args: List[Any] = []
        index = start
        for condition, cond_args in self._conditions:
            text, index = renumber_placeholders(condition, index)
            parts.append(f"({text})")
            args.extend(cond_args)
        return " WHERE " + " AND ".join(parts), args, index

    def copy(self) -> "WhereClause":
        clone = WhereClause()
        clone._conditions = list(self._conditions)
        return clone
