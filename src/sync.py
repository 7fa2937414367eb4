"""
BACKLOG SYNC - Reconciliation Engine
====================================
Classifies the difference between parsed markdown items and persisted
backlog items, then folds user conflict resolutions into the final
set of mutations.

Everything here is a pure function of its arguments: no I/O, no
logging, inputs are never mutated.
"""

from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from .schema import (
    BacklogItem, ParsedItem, StatusClass,
    SyncAdd, SyncUpdate, SyncRemove, SyncConflict, SyncPreview,
    ConflictReason, ConflictResolution, ResolutionAction, ResolvedActions
)
from .similarity import find_best_match


class ClaimPool:
    """
    Persisted items not yet matched during one reconciliation pass.

    Iteration follows the original input order. A claimed item is
    gone for every later document item, so the earliest heading wins
    when several persisted items are near-duplicates.
    """

    def __init__(self, items: Iterable[BacklogItem]):
        self._unclaimed: Dict[str, BacklogItem] = {}
        for item in items:
            self._unclaimed.setdefault(item.id, item)

    def __iter__(self) -> Iterator[BacklogItem]:
        return iter(list(self._unclaimed.values()))

    def __len__(self) -> int:
        return len(self._unclaimed)

    def __contains__(self, item: BacklogItem) -> bool:
        return item.id in self._unclaimed

    def claim(self, item: BacklogItem) -> None:
        del self._unclaimed[item.id]

    def remaining(self) -> List[BacklogItem]:
        return list(self._unclaimed.values())


def compute_sync_preview(
    parsed_items: Sequence[ParsedItem],
    existing_items: Sequence[BacklogItem]
) -> SyncPreview:
    """
    Compute what a sync would do without doing it.

    Checked document items are ignored. Unchecked ones are matched in
    document order against the unclaimed pool:

    - match on an active item     -> conflict (active_match)
    - match on a completed item   -> conflict (completed_match)
    - match on a queued item      -> unchanged if identical, else update
    - no match                    -> add

    Unclaimed queued items are removed; unclaimed active and completed
    items are left alone.
    """
    adds: List[SyncAdd] = []
    updates: List[SyncUpdate] = []
    conflicts: List[SyncConflict] = []
    unchanged: List[BacklogItem] = []

    pending = sorted(
        (item for item in parsed_items if not item.checked),
        key=lambda item: item.line_number
    )
    pool = ClaimPool(existing_items)

    for index, md_item in enumerate(pending):
        match = find_best_match(md_item.content, pool)

        if match is None:
            adds.append(SyncAdd(
                content=md_item.content,
                description=md_item.description,
                line_number=md_item.line_number,
                position=index + 1,
            ))
            continue

        existing = match.item
        pool.claim(existing)
        status_class = existing.status.status_class

        if status_class is StatusClass.MODIFIABLE:
            same_description = md_item.description == (existing.description or "")
            if match.similarity == 1 and same_description:
                unchanged.append(existing)
            else:
                updates.append(SyncUpdate(
                    existing_item=existing,
                    new_content=md_item.content,
                    new_description=md_item.description,
                    line_number=md_item.line_number,
                    similarity=match.similarity,
                ))
        else:
            reason = (
                ConflictReason.ACTIVE_MATCH
                if status_class is StatusClass.ACTIVE
                else ConflictReason.COMPLETED_MATCH
            )
            conflicts.append(SyncConflict(
                existing_item=existing,
                markdown_content=md_item.content,
                markdown_description=md_item.description,
                line_number=md_item.line_number,
                similarity=match.similarity,
                reason=reason,
            ))

    leftovers = pool.remaining()
    removes = [SyncRemove(existing_item=item) for item in leftovers if item.status.is_modifiable]
    unchanged.extend(item for item in leftovers if not item.status.is_modifiable)

    return SyncPreview(
        adds=adds,
        updates=updates,
        removes=removes,
        conflicts=conflicts,
        unchanged=unchanged,
    )


def calculate_positions(adds: Iterable[SyncAdd], start_after: int) -> List[SyncAdd]:
    """Order adds by document line and number them from start_after + 1"""
    ordered = sorted(adds, key=lambda add: add.line_number)
    return [
        add.model_copy(update={"position": start_after + offset})
        for offset, add in enumerate(ordered, start=1)
    ]


def _requeued_conflicts(
    preview: SyncPreview,
    resolutions: Iterable[ConflictResolution]
) -> List[SyncConflict]:
    requeued = []
    for resolution in resolutions:
        index = resolution.conflict_index
        # TODO: confirm with product whether an out-of-range index should be rejected
        if not 0 <= index < len(preview.conflicts):
            continue

        # TODO: confirm with product whether repeated requeues of one conflict should add once
        conflict = preview.conflicts[index]
        if (
            resolution.action is ResolutionAction.REQUEUE
            and conflict.reason is ConflictReason.COMPLETED_MATCH
        ):
            requeued.append(conflict)
    return requeued


def count_requeued(preview: SyncPreview, resolutions: Iterable[ConflictResolution]) -> int:
    """Number of distinct conflicts the resolutions turn into adds"""
    return len({id(conflict) for conflict in _requeued_conflicts(preview, resolutions)})


def apply_conflict_resolutions(
    preview: SyncPreview,
    resolutions: Iterable[ConflictResolution],
    start_after: Optional[int] = None
) -> ResolvedActions:
    """
    Fold conflict resolutions into the preview's adds/updates/removes.

    Only completed_match conflicts can be requeued; active_match
    conflicts and skips produce nothing. Adds are renumbered in
    document order after start_after, which defaults to the highest
    position among the preview's persisted items.
    """
    requeued = [
        SyncAdd(
            content=conflict.markdown_content,
            description=conflict.markdown_description,
            line_number=conflict.line_number,
            position=0,
        )
        for conflict in _requeued_conflicts(preview, resolutions)
    ]

    if start_after is None:
        start_after = max((item.position for item in preview.persisted_items()), default=0)

    return ResolvedActions(
        adds=calculate_positions([*preview.adds, *requeued], start_after),
        updates=list(preview.updates),
        removes=list(preview.removes),
    )
