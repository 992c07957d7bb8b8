"""Inbound request protocol.

Every request is a JSON object with a ``type`` tag. The set of request types
is closed: ``Request`` is a discriminated union and ``REQUEST_TYPES`` maps
each tag to its model.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union, get_args

from pydantic import AliasChoices, Field, TypeAdapter
from pydantic.alias_generators import to_camel

from models.workflow import Config, ElementSelection, SectionDescriptor, WireModel


class Message(WireModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "ignore",
    }


# ── Selection control ─────────────────────────────────────────────────────────


class StartSelection(Message):
    type: Literal["START_SELECTION"]


class CancelSelection(Message):
    type: Literal["CANCEL_SELECTION"]


class StartSectionSelection(Message):
    type: Literal["START_SECTION_SELECTION"]


class CancelSectionSelection(Message):
    type: Literal["CANCEL_SECTION_SELECTION"]


class SectionSelected(Message):
    type: Literal["SECTION_SELECTED"]
    data: Dict[str, Any] = Field(default_factory=dict)


class OpenSidebar(Message):
    type: Literal["OPEN_SIDEBAR"]


# ── Single-element generation ─────────────────────────────────────────────────


class ElementSelected(Message):
    type: Literal["ELEMENT_SELECTED"]
    data: ElementSelection
    url: Optional[str] = None


class GenerateBlock(Message):
    type: Literal["GENERATE_BLOCK"]
    url: str
    element_data: ElementSelection
    session_id: Optional[str] = None


class AcceptBlock(Message):
    type: Literal["ACCEPT_BLOCK"]
    session_id: str
    artifact_name: str = Field(validation_alias=AliasChoices("artifactName", "artifact_name", "blockName"))
    branch_ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("branchRef", "branch_ref", "branch"))


class RejectBlock(Message):
    type: Literal["REJECT_BLOCK"]
    session_id: Optional[str] = None
    branch_ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("branchRef", "branch_ref", "branch"))


# ── Design system ─────────────────────────────────────────────────────────────


class ImportDesignSystem(Message):
    type: Literal["IMPORT_DESIGN_SYSTEM"]
    url: str


class FinalizeDesignSystem(Message):
    type: Literal["FINALIZE_DESIGN_SYSTEM"]
    branch_ref: str = Field(validation_alias=AliasChoices("branchRef", "branch_ref", "branch"))


class RejectDesignSystem(Message):
    type: Literal["REJECT_DESIGN_SYSTEM"]
    branch_ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("branchRef", "branch_ref", "branch"))


# ── Page import ───────────────────────────────────────────────────────────────


class AnalyzePage(Message):
    type: Literal["ANALYZE_PAGE"]
    url: str


class GenerateBlockForSection(Message):
    type: Literal["GENERATE_BLOCK_FOR_SECTION"]
    url: str
    section: SectionDescriptor
    section_index: int


class ComposePage(Message):
    type: Literal["COMPOSE_PAGE"]
    url: str
    sections: List[SectionDescriptor] = Field(default_factory=list)
    title: Optional[str] = Field(default=None, validation_alias=AliasChoices("title", "pageTitle"))
    accepted_artifacts: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("acceptedArtifacts", "accepted_artifacts", "acceptedBlocks"),
    )


class FinalizePage(Message):
    type: Literal["FINALIZE_PAGE"]
    branch_ref: str = Field(validation_alias=AliasChoices("branchRef", "branch_ref", "branch"))


class RejectPage(Message):
    type: Literal["REJECT_PAGE"]
    branch_ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("branchRef", "branch_ref", "branch"))


# ── Library & state access ────────────────────────────────────────────────────


class GetBlocks(Message):
    type: Literal["GET_BLOCKS"]


class GetState(Message):
    type: Literal["GET_STATE"]


class ClearState(Message):
    type: Literal["CLEAR_STATE"]


class GetConfig(Message):
    type: Literal["GET_CONFIG"]


class SaveConfig(Message):
    type: Literal["SAVE_CONFIG"]
    config: Config


REQUEST_MODELS = (
    StartSelection,
    CancelSelection,
    StartSectionSelection,
    CancelSectionSelection,
    SectionSelected,
    ElementSelected,
    GenerateBlock,
    AcceptBlock,
    RejectBlock,
    ImportDesignSystem,
    FinalizeDesignSystem,
    RejectDesignSystem,
    AnalyzePage,
    GenerateBlockForSection,
    ComposePage,
    FinalizePage,
    RejectPage,
    OpenSidebar,
    GetBlocks,
    GetState,
    ClearState,
    GetConfig,
    SaveConfig,
)

Request = Annotated[
    Union[
        StartSelection,
        CancelSelection,
        StartSectionSelection,
        CancelSectionSelection,
        SectionSelected,
        ElementSelected,
        GenerateBlock,
        AcceptBlock,
        RejectBlock,
        ImportDesignSystem,
        FinalizeDesignSystem,
        RejectDesignSystem,
        AnalyzePage,
        GenerateBlockForSection,
        ComposePage,
        FinalizePage,
        RejectPage,
        OpenSidebar,
        GetBlocks,
        GetState,
        ClearState,
        GetConfig,
        SaveConfig,
    ],
    Field(discriminator="type"),
]

REQUEST_TYPES: Dict[str, type] = {
    get_args(model.model_fields["type"].annotation)[0]: model for model in REQUEST_MODELS
}

_request_adapter: TypeAdapter = TypeAdapter(Request)


def parse_request(raw: Dict[str, Any]) -> Message:
    """Validate a raw message into its request model (raises pydantic.ValidationError)."""
    return _request_adapter.validate_python(raw)
