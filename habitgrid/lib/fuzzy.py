import re
from collections.abc import Sequence
from difflib import get_close_matches

from habitgrid.core.errors import AmbiguousError
from habitgrid.core.models import Habit

__all__ = ["find_in_pool", "find_in_pool_exact"]

FUZZY_MATCH_CUTOFF = 0.8
_ID_REF_RE = re.compile(r"^[0-9a-f-]{4,}$")


def _match_id_prefix(ref: str, pool: Sequence[Habit]) -> Habit | None:
    ref_lower = ref.lower()
    if not _ID_REF_RE.match(ref_lower):
        return None
    matches = [h for h in pool if h.id.lower().startswith(ref_lower)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        exact = next((h for h in matches if h.id == ref), None)
        if exact:
            return exact
        raise AmbiguousError(ref, count=len(matches), sample=[h.id[:8] for h in matches[:3]])
    return None


def _match_substring(ref: str, pool: Sequence[Habit]) -> Habit | None:
    ref_lower = ref.lower()
    exact = next((h for h in pool if h.name.lower() == ref_lower), None)
    if exact:
        return exact
    matches = [h for h in pool if ref_lower in h.name.lower()]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise AmbiguousError(ref, count=len(matches), sample=[h.name for h in matches[:3]])
    return None


def _match_fuzzy(ref: str, pool: Sequence[Habit]) -> Habit | None:
    names = [h.name.lower() for h in pool]
    matches = get_close_matches(ref.lower(), names, n=1, cutoff=FUZZY_MATCH_CUTOFF)
    if matches:
        return next(h for h in pool if h.name.lower() == matches[0])
    return None


def find_in_pool(ref: str, pool: Sequence[Habit]) -> Habit | None:
    if not pool or not ref.strip():
        return None
    return _match_id_prefix(ref, pool) or _match_substring(ref, pool) or _match_fuzzy(ref, pool)


def find_in_pool_exact(ref: str, pool: Sequence[Habit]) -> Habit | None:
    if not pool or not ref.strip():
        return None
    return _match_id_prefix(ref, pool) or _match_substring(ref, pool)
