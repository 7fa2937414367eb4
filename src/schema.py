"""
BACKLOG SYNC - Schema Definition
================================
Markdown backlog items, persisted backlog items and the sync actions
that reconcile the two.
"""

from enum import Enum
from typing import Optional, List, Dict, Iterator
from datetime import datetime, timezone
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusClass(str, Enum):
    """Mutation rights a sync pass has over an item"""
    MODIFIABLE = "modifiable"     # Sync may update or remove
    ACTIVE = "active"             # Work in flight, never touched
    COMPLETED = "completed"       # Finished, may be requeued on request


class ItemStatus(str, Enum):
    """Backlog item lifecycle states"""
    QUEUED = "QUEUED"             # Waiting to be picked up
    IN_PROGRESS = "IN_PROGRESS"   # Agent working on it
    WAITING = "WAITING"           # Agent waiting on a human
    PR_OPEN = "PR_OPEN"           # Pull request under review
    DONE = "DONE"                 # Merged
    FAILED = "FAILED"             # Gave up

    @property
    def status_class(self) -> StatusClass:
        return _STATUS_CLASSES[self]

    @property
    def is_modifiable(self) -> bool:
        return self.status_class is StatusClass.MODIFIABLE

    @property
    def is_active(self) -> bool:
        return self.status_class is StatusClass.ACTIVE

    @property
    def is_completed(self) -> bool:
        return self.status_class is StatusClass.COMPLETED


_STATUS_CLASSES: Dict[ItemStatus, StatusClass] = {
    ItemStatus.QUEUED: StatusClass.MODIFIABLE,
    ItemStatus.IN_PROGRESS: StatusClass.ACTIVE,
    ItemStatus.WAITING: StatusClass.ACTIVE,
    ItemStatus.PR_OPEN: StatusClass.ACTIVE,
    ItemStatus.DONE: StatusClass.COMPLETED,
    ItemStatus.FAILED: StatusClass.COMPLETED,
}


class ConflictReason(str, Enum):
    COMPLETED_MATCH = "completed_match"
    ACTIVE_MATCH = "active_match"


class ResolutionAction(str, Enum):
    REQUEUE = "requeue"
    SKIP = "skip"


# ============================================================
# MARKDOWN SIDE
# ============================================================

class ParsedItem(BaseModel):
    """One `### [ ] title` heading from the backlog document"""
    model_config = ConfigDict(frozen=True)

    content: str                    # Heading text after the checkbox
    description: str = ""           # Body between this heading and the next
    checked: bool = False           # [x] means already done in the document
    line_number: int                # 1-based line of the heading


class ParseResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: List[ParsedItem] = Field(default_factory=list)
    hash: str                       # SHA-256 hex of the raw document


# ============================================================
# PERSISTED SIDE
# ============================================================

class BacklogItem(BaseModel):
    """Persisted backlog item"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    content: str
    description: Optional[str] = None
    status: ItemStatus = ItemStatus.QUEUED
    position: int = 0

    # Owned by the workflow that executes items; sync never writes these
    assignee: Optional[str] = None
    branch: Optional[str] = None
    pr_url: Optional[str] = None
    pr_number: Optional[int] = None
    retry_count: int = 0

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Backlog(BaseModel):
    """One sync scope: a repository's backlog.md and its persisted items"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:12])
    name: str
    repository_path: str
    backlog_file: str = "backlog.md"

    items: List[BacklogItem] = Field(default_factory=list)

    # Sync markers, written only after a successful apply
    last_synced_hash: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def backlog_path(self) -> Path:
        return Path(self.repository_path) / self.backlog_file

    @property
    def max_position(self) -> int:
        return max((item.position for item in self.items), default=0)

    @property
    def status_summary(self) -> Dict[str, int]:
        summary = {status.value: 0 for status in ItemStatus}
        for item in self.items:
            summary[item.status.value] += 1
        return summary

    def ordered_items(self) -> List[BacklogItem]:
        return sorted(self.items, key=lambda item: item.position)


# ============================================================
# SYNC ACTIONS
# ============================================================

class SyncAdd(BaseModel):
    """New QUEUED item to create"""
    model_config = ConfigDict(frozen=True)

    content: str
    description: str = ""
    line_number: int
    position: int


class SyncUpdate(BaseModel):
    """QUEUED item whose content or description changed"""
    model_config = ConfigDict(frozen=True)

    existing_item: BacklogItem
    new_content: str
    new_description: str = ""
    line_number: int
    similarity: float


class SyncRemove(BaseModel):
    """QUEUED item no longer in the document"""
    model_config = ConfigDict(frozen=True)

    existing_item: BacklogItem


class SyncConflict(BaseModel):
    """Document item matching an item sync is not allowed to touch"""
    model_config = ConfigDict(frozen=True)

    existing_item: BacklogItem
    markdown_content: str
    markdown_description: str = ""
    line_number: int
    similarity: float
    reason: ConflictReason


class SyncPreview(BaseModel):
    """Classified differences between a document and persisted items"""
    model_config = ConfigDict(frozen=True)

    adds: List[SyncAdd] = Field(default_factory=list)
    updates: List[SyncUpdate] = Field(default_factory=list)
    removes: List[SyncRemove] = Field(default_factory=list)
    conflicts: List[SyncConflict] = Field(default_factory=list)
    unchanged: List[BacklogItem] = Field(default_factory=list)

    @property
    def has_actions(self) -> bool:
        return bool(self.adds or self.updates or self.removes or self.conflicts)

    def persisted_items(self) -> Iterator[BacklogItem]:
        """Every persisted item the pass saw, each exactly once"""
        for update in self.updates:
            yield update.existing_item
        for remove in self.removes:
            yield remove.existing_item
        for conflict in self.conflicts:
            yield conflict.existing_item
        yield from self.unchanged


class ConflictResolution(BaseModel):
    """User decision for preview.conflicts[conflict_index]"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    conflict_index: int
    action: ResolutionAction


class ResolvedActions(BaseModel):
    """Final mutation set to apply in one transaction"""
    model_config = ConfigDict(frozen=True)

    adds: List[SyncAdd] = Field(default_factory=list)
    updates: List[SyncUpdate] = Field(default_factory=list)
    removes: List[SyncRemove] = Field(default_factory=list)


class SyncResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    added: int = 0
    updated: int = 0
    removed: int = 0
    skipped_conflicts: int = 0
    requeued_conflicts: int = 0
    current_hash: Optional[str] = None


# ============================================================
# PREVIEW REPORT (camelCase on the wire)
# ============================================================

class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AddSummary(_WireModel):
    content: str
    line_number: int
    position: int


class UpdateSummary(_WireModel):
    existing_item_id: str
    existing_content: str
    new_content: str
    similarity: float


class RemoveSummary(_WireModel):
    existing_item_id: str
    content: str


class ConflictSummary(_WireModel):
    existing_item_id: str
    existing_content: str
    existing_status: ItemStatus
    markdown_content: str
    similarity: float
    reason: ConflictReason


class PreviewSummary(_WireModel):
    adds: List[AddSummary] = Field(default_factory=list)
    updates: List[UpdateSummary] = Field(default_factory=list)
    removes: List[RemoveSummary] = Field(default_factory=list)
    conflicts: List[ConflictSummary] = Field(default_factory=list)
    unchanged_count: int = 0

    @classmethod
    def from_preview(cls, preview: SyncPreview) -> "PreviewSummary":
        return cls(
            adds=[
                AddSummary(content=a.content, line_number=a.line_number, position=a.position)
                for a in preview.adds
            ],
            updates=[
                UpdateSummary(
                    existing_item_id=u.existing_item.id,
                    existing_content=u.existing_item.content,
                    new_content=u.new_content,
                    similarity=u.similarity,
                )
                for u in preview.updates
            ],
            removes=[
                RemoveSummary(existing_item_id=r.existing_item.id, content=r.existing_item.content)
                for r in preview.removes
            ],
            conflicts=[
                ConflictSummary(
                    existing_item_id=c.existing_item.id,
                    existing_content=c.existing_item.content,
                    existing_status=c.existing_item.status,
                    markdown_content=c.markdown_content,
                    similarity=c.similarity,
                    reason=c.reason,
                )
                for c in preview.conflicts
            ],
            unchanged_count=len(preview.unchanged),
        )


class SyncPreviewReport(_WireModel):
    preview: PreviewSummary
    current_hash: str
    last_synced_hash: Optional[str] = None
    has_changes: bool

    @classmethod
    def build(
        cls,
        preview: SyncPreview,
        current_hash: str,
        last_synced_hash: Optional[str]
    ) -> "SyncPreviewReport":
        return cls(
            preview=PreviewSummary.from_preview(preview),
            current_hash=current_hash,
            last_synced_hash=last_synced_hash,
            has_changes=current_hash != last_synced_hash or preview.has_actions,
        )
