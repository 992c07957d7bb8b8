from .errors import (
    CaptureFailed,
    ConfigurationMissing,
    CoordinatorError,
    InjectionFailed,
    NoTargetPage,
    RemoteCallFailed,
)
from .workflow import (
    CleanupOutcome,
    Config,
    ElementSelection,
    GeneratedArtifact,
    PixelBounds,
    PreviewData,
    PreviewVariant,
    SectionDescriptor,
    StageStatus,
    WorkflowState,
    WorkflowStatus,
)

__all__ = [
    "CaptureFailed",
    "ConfigurationMissing",
    "CoordinatorError",
    "InjectionFailed",
    "NoTargetPage",
    "RemoteCallFailed",
    "CleanupOutcome",
    "Config",
    "ElementSelection",
    "GeneratedArtifact",
    "PixelBounds",
    "PreviewData",
    "PreviewVariant",
    "SectionDescriptor",
    "StageStatus",
    "WorkflowState",
    "WorkflowStatus",
]
