"""Pydantic models for the block import workflow.

Persisted records and inbound payloads use camelCase keys on the wire
(``sessionId``, ``previewData`` ...); Python code uses the snake_case
attribute names.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from models.errors import ConfigurationMissing


class WireModel(BaseModel):
    """Base model serialising with camelCase aliases."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WorkflowStatus(str, Enum):
    """Lifecycle of the current workflow."""

    IDLE = "idle"
    SELECTING = "selecting"
    GENERATING = "generating"
    PREVIEW = "preview"
    ERROR = "error"


class StageStatus(str, Enum):
    """Progress of a single workflow stage."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"


STAGES = ("screenshot", "html", "generate", "preview")

_STAGE_RANK = {
    StageStatus.PENDING: 0,
    StageStatus.ACTIVE: 1,
    StageStatus.COMPLETE: 2,
}


def pending_progress() -> Dict[str, StageStatus]:
    return {stage: StageStatus.PENDING for stage in STAGES}


# ── Config ────────────────────────────────────────────────────────────────────


class Config(WireModel):
    """User-provided endpoint and target settings, overwritten wholesale."""

    repository_ref: Optional[str] = Field(default=None, description="GitHub 'owner/repo'")
    content_org: Optional[str] = Field(default=None, description="Content (DA) organisation")
    content_site: Optional[str] = Field(default=None, description="Content (DA) site")
    service_endpoint_override: Optional[str] = Field(
        default=None,
        description="Worker base URL replacing the default service URL",
    )
    updated_at: Optional[int] = None

    @property
    def owner(self) -> str:
        return (self.repository_ref or "").split("/")[0]

    @property
    def repo(self) -> str:
        parts = (self.repository_ref or "").split("/")
        return parts[1] if len(parts) > 1 else ""

    def require_complete(self) -> "Config":
        """Raise ConfigurationMissing unless repository and content site are set."""
        if not self.repository_ref or not self.owner or not self.repo:
            raise ConfigurationMissing()
        if not self.content_org or not self.content_site:
            raise ConfigurationMissing()
        return self


# ── Workflow state ────────────────────────────────────────────────────────────


class PreviewData(WireModel):
    artifact_name: str
    markup: str = ""
    style: str = ""
    behavior: str = ""
    preview_url: str
    branch_ref: Optional[str] = None


class WorkflowState(WireModel):
    """
    Progress of the most recent foreground workflow.

    ``preview_data`` is present iff ``status == preview`` and ``error`` iff
    ``status == error``; both are enforced on validation. Transition helpers
    return new instances and never regress a stage within one session.
    """

    status: WorkflowStatus = WorkflowStatus.IDLE
    session_id: Optional[str] = None
    progress: Dict[str, StageStatus] = Field(default_factory=pending_progress)
    preview_data: Optional[PreviewData] = None
    error: Optional[str] = None
    updated_at: Optional[int] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "WorkflowState":
        if (self.preview_data is not None) != (self.status == WorkflowStatus.PREVIEW):
            raise ValueError("previewData must be present exactly when status is 'preview'")
        if (self.error is not None) != (self.status == WorkflowStatus.ERROR):
            raise ValueError("error must be present exactly when status is 'error'")
        return self

    @classmethod
    def fresh(cls, session_id: Optional[str], status: WorkflowStatus = WorkflowStatus.SELECTING) -> "WorkflowState":
        """A replacement record for a newly started workflow."""
        return cls(status=status, session_id=session_id, progress=pending_progress())

    def _evolve(self, **changes: Any) -> "WorkflowState":
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)

    def advance(self, **stages: StageStatus) -> "WorkflowState":
        progress = dict(self.progress)
        for stage, value in stages.items():
            value = StageStatus(value)
            current = progress.get(stage, StageStatus.PENDING)
            if _STAGE_RANK[value] < _STAGE_RANK[current]:
                raise ValueError(f"Stage '{stage}' cannot regress from {current.value} to {value.value}")
            progress[stage] = value
        return self._evolve(progress=progress)

    def generating(self) -> "WorkflowState":
        return self._evolve(status=WorkflowStatus.GENERATING).advance(screenshot=StageStatus.ACTIVE)

    def completed(self, preview: PreviewData) -> "WorkflowState":
        done = self.advance(**{stage: StageStatus.COMPLETE for stage in STAGES})
        return done._evolve(status=WorkflowStatus.PREVIEW, preview_data=preview, error=None)

    def failed(self, message: str) -> "WorkflowState":
        return self._evolve(status=WorkflowStatus.ERROR, preview_data=None, error=message or "Unknown error")


# ── Transient selection data ──────────────────────────────────────────────────


class PixelBounds(WireModel):
    """Element rectangle in CSS (logical) pixels relative to the viewport."""

    x: float = 0
    y: float = 0
    width: float
    height: float


class ElementSelection(WireModel):
    """What the page agent reports for a picked element; consumed once."""

    xpath: Optional[str] = None
    serialized_markup: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("serializedMarkup", "serialized_markup", "html"),
        serialization_alias="serializedMarkup",
    )
    pixel_bounds: Optional[PixelBounds] = Field(
        default=None,
        validation_alias=AliasChoices("pixelBounds", "pixel_bounds", "bounds"),
        serialization_alias="pixelBounds",
    )
    background_image_refs: List[Any] = Field(
        default_factory=list,
        validation_alias=AliasChoices("backgroundImageRefs", "background_image_refs", "backgroundImages"),
        serialization_alias="backgroundImageRefs",
    )


class VerticalRange(WireModel):
    start: float = 0
    end: float = 0


class SectionDescriptor(WireModel):
    """A page section proposed by page analysis or picked in section mode."""

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "allow",
    }

    name: str = ""
    description: str = ""
    type: str = ""
    markup_snippet: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("markupSnippet", "markup_snippet", "html"),
        serialization_alias="markupSnippet",
    )
    vertical_range: Optional[VerticalRange] = Field(
        default=None,
        validation_alias=AliasChoices("verticalRange", "vertical_range"),
        serialization_alias="verticalRange",
    )

    @model_validator(mode="before")
    @classmethod
    def _fold_y_range(cls, data: Any) -> Any:
        if isinstance(data, dict) and "verticalRange" not in data and ("yStart" in data or "yEnd" in data):
            data = dict(data)
            data["verticalRange"] = {"start": data.pop("yStart", 0) or 0, "end": data.pop("yEnd", 0) or 0}
        return data

    def to_wire(self) -> Dict[str, Any]:
        """Shape sent to the worker: html / yStart / yEnd plus any extra keys."""
        payload: Dict[str, Any] = dict(self.model_extra or {})
        payload.update(
            {
                "name": self.name,
                "type": self.type,
                "description": self.description,
                "html": self.markup_snippet,
                "yStart": self.vertical_range.start if self.vertical_range else None,
                "yEnd": self.vertical_range.end if self.vertical_range else None,
            }
        )
        return payload


# ── Remote results ────────────────────────────────────────────────────────────


class GeneratedArtifact(WireModel):
    """Markup / style / behavior triple produced by the generation service."""

    artifact_name: str
    markup: str = ""
    style: str = ""
    behavior: str = ""


class PreviewVariant(WireModel):
    preview_url: Optional[str] = None
    branch_ref: Optional[str] = None
    content_path: Optional[str] = None


class CleanupOutcome(WireModel):
    """Result of a best-effort cleanup; logged, never surfaced as a failure."""

    performed: bool
    detail: str = ""
