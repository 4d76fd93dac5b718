"""
Fuzzy filtering and sorting for the dashboard collections.

Each collection (tools, registry, ...) is described by a ``CollectionSpec``:
the primary text whose matched characters get highlighted, the extra fields
that also take part in matching, and the sortable columns.

``filter_collection`` turns (items, query) into a filtered index list plus a
parallel list of highlight positions. The positions are computed here, once
per query change, and the UI only ever reads them back.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .model import Domain

SCORE_MATCH = 16
BONUS_HEAD = 8
BONUS_BREAK = 6
BONUS_CAMEL = 5
BONUS_CONSECUTIVE = 6
FIRST_CHAR_MULTIPLIER = 2
GAP_PENALTY = 1

SEPARATORS = frozenset(" -_./:@")


def _bonus(text: str, j: int) -> int:
    if j == 0:
        return BONUS_HEAD
    prev, cur = text[j - 1], text[j]
    if prev in SEPARATORS:
        return BONUS_BREAK
    if prev.islower() and cur.isupper():
        return BONUS_CAMEL
    if cur.isdigit() and not prev.isdigit():
        return BONUS_CAMEL
    return 0


def _fold(c: str) -> str:
    # Lowercasing may expand a character ("İ" -> "i̇"); keep one per offset.
    return c.lower()[:1] or c


def fuzzy_match(text: str, query: str) -> Optional[Tuple[int, List[int]]]:
    """
    Score ``query`` as a subsequence of ``text``.

    Matching is smart-case: case-insensitive unless the query contains an
    uppercase letter. Returns ``(score, positions)`` for the best alignment,
    where positions are character offsets into ``text``, or None when the
    query is not a subsequence of the text.
    """
    if not query:
        return 0, []
    case_sensitive = any(c.isupper() for c in query)
    t = text if case_sensitive else "".join(_fold(c) for c in text)
    q = query if case_sensitive else "".join(_fold(c) for c in query)
    n, m = len(t), len(q)
    if m > n:
        return None

    pos = 0
    for c in q:
        pos = t.find(c, pos)
        if pos < 0:
            return None
        pos += 1

    bonus = [_bonus(text, j) for j in range(n)]
    prev_row: List[Optional[int]] = []
    backs: List[List[int]] = []

    for i in range(m):
        row: List[Optional[int]] = [None] * n
        back = [-1] * n
        # Best predecessor at distance >= 2, already charged for its gap.
        pool: Optional[int] = None
        pool_k = -1
        for j in range(n):
            if i > 0 and j >= 2:
                if pool is not None:
                    pool -= GAP_PENALTY
                cand = prev_row[j - 2]
                if cand is not None and (pool is None or cand - GAP_PENALTY > pool):
                    pool, pool_k = cand - GAP_PENALTY, j - 2
            if t[j] != q[i]:
                continue
            gain = SCORE_MATCH + bonus[j]
            if i == 0:
                row[j] = SCORE_MATCH + bonus[j] * FIRST_CHAR_MULTIPLIER
                continue
            best: Optional[int] = None
            best_k = -1
            if j >= 1 and prev_row[j - 1] is not None:
                best, best_k = prev_row[j - 1] + gain + BONUS_CONSECUTIVE, j - 1
            if pool is not None and (best is None or pool + gain > best):
                best, best_k = pool + gain, pool_k
            if best is not None:
                row[j] = best
                back[j] = best_k
        prev_row = row
        backs.append(back)

    end, score = -1, None
    for j, value in enumerate(prev_row):
        if value is not None and (score is None or value > score):
            end, score = j, value
    if score is None:
        return None

    positions = [0] * m
    j = end
    for i in range(m - 1, -1, -1):
        positions[i] = j
        j = backs[i][j]
    return score, positions


def fuzzy_score(text: str, query: str) -> Optional[int]:
    result = fuzzy_match(text, query)
    return result[0] if result else None


@dataclass(frozen=True)
class CollectionSpec:
    """How one collection is searched and sorted."""
    primary: Callable[[Any], str]
    extra_fields: Callable[[Any], Sequence[str]] = lambda item: ()
    columns: Tuple[Callable[[Any], Any], ...] = ()
    highlights: bool = True


COLLECTION_SPECS: Dict[Domain, CollectionSpec] = {
    Domain.TOOLS: CollectionSpec(
        primary=lambda t: t.name,
        extra_fields=lambda t: (t.version,),
        columns=(
            lambda t: t.name,
            lambda t: t.version,
            lambda t: t.active,
            lambda t: t.source,
        ),
    ),
    Domain.REGISTRY: CollectionSpec(
        primary=lambda r: r.short,
        extra_fields=lambda r: (r.description or "", *r.aliases),
        columns=(
            lambda r: r.short,
            lambda r: r.description or "",
        ),
    ),
    Domain.CONFIGS: CollectionSpec(
        primary=lambda c: c.path,
        extra_fields=lambda c: tuple(c.tools),
        highlights=False,
    ),
    Domain.DOCTOR: CollectionSpec(
        primary=lambda line: line,
        highlights=False,
    ),
    Domain.OUTDATED: CollectionSpec(
        primary=lambda o: o.name,
        extra_fields=lambda o: (o.current, o.latest),
        columns=(
            lambda o: o.name,
            lambda o: o.current,
            lambda o: o.latest,
            lambda o: o.requested,
        ),
    ),
    Domain.TASKS: CollectionSpec(
        primary=lambda t: t.name,
        extra_fields=lambda t: (t.description,),
        columns=(
            lambda t: t.name,
            lambda t: t.description,
            lambda t: t.source,
        ),
    ),
    Domain.ENV: CollectionSpec(
        primary=lambda e: e.name,
        extra_fields=lambda e: (e.value, e.source),
        columns=(
            lambda e: e.name,
            lambda e: e.value,
            lambda e: e.source,
            lambda e: e.tool,
        ),
    ),
    Domain.SETTINGS: CollectionSpec(
        primary=lambda s: s.key,
        extra_fields=lambda s: (s.value,),
        columns=(
            lambda s: s.key,
            lambda s: s.value,
            lambda s: s.value_type,
        ),
    ),
    Domain.PROJECTS: CollectionSpec(
        primary=lambda p: p.name,
        extra_fields=lambda p: (p.path,),
        columns=(
            lambda p: p.name,
            lambda p: p.health.severity,
            lambda p: p.path,
        ),
    ),
}


def column_count(domain: Optional[Domain]) -> int:
    if domain is None:
        return 0
    return len(COLLECTION_SPECS[domain].columns)


def filter_collection(
    items: Sequence[Any], query: str, spec: CollectionSpec
) -> Tuple[List[int], Optional[List[List[int]]]]:
    """
    Filter and rank ``items`` against ``query``.

    Returns the filtered indices (best score first, ties in collection order)
    and, when the collection is highlighted, the matched positions of the primary text
    for each filtered row. An empty query keeps every row in order.
    """
    if not query:
        indices = list(range(len(items)))
        return indices, ([[] for _ in indices] if spec.highlights else None)

    scored: List[Tuple[int, int, List[int]]] = []
    for i, item in enumerate(items):
        best: Optional[int] = None
        spans: List[int] = []
        result = fuzzy_match(spec.primary(item), query)
        if result is not None:
            best, spans = result
        for text in spec.extra_fields(item):
            score = fuzzy_score(text, query)
            if score is not None and (best is None or score > best):
                best = score
        if best is not None:
            scored.append((best, i, spans))

    scored.sort(key=lambda s: (-s[0], s[1]))
    indices = [i for _, i, _ in scored]
    if not spec.highlights:
        return indices, None
    return indices, [spans for _, _, spans in scored]


def _sort_key(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def sort_filtered(
    items: Sequence[Any],
    filtered: List[int],
    highlights: Optional[List[List[int]]],
    spec: CollectionSpec,
    column: int,
    ascending: bool,
) -> Tuple[List[int], Optional[List[List[int]]]]:
    """Sort the filtered view by one column, carrying the highlights along."""
    if not spec.columns:
        return filtered, highlights
    key_fn = spec.columns[column % len(spec.columns)]
    order = sorted(
        range(len(filtered)),
        key=lambda pos: _sort_key(key_fn(items[filtered[pos]])),
        reverse=not ascending,
    )
    new_filtered = [filtered[pos] for pos in order]
    new_highlights = [highlights[pos] for pos in order] if highlights is not None else None
    return new_filtered, new_highlights


def filter_versions(versions: Sequence[str], query: str) -> List[int]:
    indices, _ = filter_collection(versions, query, _VERSION_SPEC)
    return indices


_VERSION_SPEC = CollectionSpec(primary=lambda v: v, highlights=False)
