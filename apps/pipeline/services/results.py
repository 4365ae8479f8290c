"""Per-project results and the aggregate run summary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

SUCCESS = "success"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ItemResult:
    project_id: str
    status: str
    reason: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None
    dry_run: bool = False
    detail: Optional[str] = None

    @classmethod
    def success(cls, project_id: str, *, url: Optional[str] = None, detail: Optional[str] = None, dry_run: bool = False) -> "ItemResult":
        return cls(project_id=project_id, status=SUCCESS, url=url, detail=detail, dry_run=dry_run)

    @classmethod
    def skipped(cls, project_id: str, reason: str, *, url: Optional[str] = None) -> "ItemResult":
        return cls(project_id=project_id, status=SKIPPED, reason=reason, url=url)

    @classmethod
    def failed(cls, project_id: str, error: str) -> "ItemResult":
        return cls(project_id=project_id, status=FAILED, error=error)

    def describe(self) -> str:
        """One-line human readable status."""
        if self.status == SKIPPED:
            return f"⏭️  {self.project_id}: skipped ({self.reason})"
        if self.status == FAILED:
            return f"❌ {self.project_id}: failed: {self.error}"
        if self.dry_run:
            return f"🧪 {self.project_id}: [DRY RUN] {self.detail or 'would upload and update database'}"
        message = self.detail or self.url or "done"
        if self.detail and self.url:
            message = f"{self.detail} -> {self.url}"
        return f"✅ {self.project_id}: {message}"


@dataclass
class RunSummary:
    items: List[ItemResult] = field(default_factory=list)

    def record(self, result: ItemResult) -> ItemResult:
        self.items.append(result)
        return result

    def _count(self, status: str) -> int:
        return sum(1 for item in self.items if item.status == status)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def success(self) -> int:
        return self._count(SUCCESS)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(FAILED)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def describe(self) -> List[str]:
        return [
            f"Total projects: {self.total}",
            f"Success: {self.success}",
            f"Skipped: {self.skipped}",
            f"Failed: {self.failed}",
        ]
