"""Which status changes are structurally legal, independent of any loan's gates.

Edges are the forward adjacent pairs of the canonical order plus two declared
back-edges around the conditions loop. No stage may be skipped.
"""

from __future__ import annotations

from app.schemas.loan import LoanStatus, StatusOption

CANONICAL_ORDER: tuple[LoanStatus, ...] = tuple(LoanStatus)

BACK_EDGES: frozenset[tuple[LoanStatus, LoanStatus]] = frozenset(
    {
        (LoanStatus.CONDITIONAL_ITEMS_NEEDED, LoanStatus.CONDITIONALLY_APPROVED),
        (LoanStatus.CLEAR_TO_CLOSE, LoanStatus.CONDITIONAL_ITEMS_NEEDED),
    }
)


def _build_adjacency() -> dict[LoanStatus, tuple[LoanStatus, ...]]:
    adjacency: dict[LoanStatus, list[LoanStatus]] = {status: [] for status in CANONICAL_ORDER}
    for current, following in zip(CANONICAL_ORDER, CANONICAL_ORDER[1:]):
        adjacency[current].append(following)
    for source, target in sorted(BACK_EDGES, key=lambda edge: progress_index(edge[0])):
        adjacency[source].append(target)
    return {status: tuple(targets) for status, targets in adjacency.items()}


def _coerce(value: LoanStatus | str | None) -> LoanStatus | None:
    if isinstance(value, LoanStatus):
        return value
    try:
        return LoanStatus(value)
    except ValueError:
        return None


def progress_index(status: LoanStatus | str) -> int:
    """Zero-based position in the canonical order; -1 for unknown values."""
    coerced = _coerce(status)
    if coerced is None:
        return -1
    return CANONICAL_ORDER.index(coerced)


def progress_percent(status: LoanStatus | str) -> int:
    index = progress_index(status)
    if index < 0:
        return 0
    return round(index / (len(CANONICAL_ORDER) - 1) * 100)


ADJACENCY: dict[LoanStatus, tuple[LoanStatus, ...]] = _build_adjacency()


def is_legal_edge(from_status: LoanStatus | str | None, to_status: LoanStatus | str | None) -> bool:
    source = _coerce(from_status)
    target = _coerce(to_status)
    if source is None or target is None:
        return False
    return target in ADJACENCY[source]


def next_statuses(from_status: LoanStatus | str) -> list[LoanStatus]:
    source = _coerce(from_status)
    if source is None:
        return []
    return list(ADJACENCY[source])


def is_terminal(status: LoanStatus | str) -> bool:
    source = _coerce(status)
    return source is not None and not ADJACENCY[source]


def to_option(status: LoanStatus) -> StatusOption:
    return StatusOption(value=status.value, label=status.label, step=progress_index(status) + 1)


def status_options() -> list[StatusOption]:
    return [to_option(status) for status in CANONICAL_ORDER]
