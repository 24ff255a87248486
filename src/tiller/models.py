"""Pydantic models for the backend's streamed event payloads."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _Event(BaseModel):
    sequence_number: int


class _Passthrough(BaseModel):
    model_config = ConfigDict(extra="allow")


class ResponseRef(_Passthrough):
    id: str
    status: str


class ItemRef(_Passthrough):
    id: str
    type: str


class SummaryPart(BaseModel):
    type: str
    text: str


class ContentPartRef(_Passthrough):
    type: str


class ResponseCreated(_Event):
    type: Literal["response.created"]
    response: ResponseRef


class ResponseInProgress(_Event):
    type: Literal["response.in_progress"]


class OutputItemAdded(_Event):
    type: Literal["response.output_item.added"]
    output_index: int
    item: ItemRef


class OutputItemDone(_Event):
    type: Literal["response.output_item.done"]
    output_index: int
    item: Any = None


class ReasoningSummaryPartAdded(_Event):
    type: Literal["response.reasoning_summary_part.added"]
    item_id: str
    output_index: int
    summary_index: int
    part: SummaryPart


class ReasoningSummaryTextDelta(_Event):
    type: Literal["response.reasoning_summary_text.delta"]
    item_id: str
    output_index: int
    summary_index: int
    delta: str
    obfuscation: str | None = None


class ReasoningSummaryTextDone(_Event):
    type: Literal["response.reasoning_summary_text.done"]
    item_id: str
    output_index: int
    summary_index: int
    text: str


class ReasoningSummaryPartDone(_Event):
    type: Literal["response.reasoning_summary_part.done"]
    item_id: str
    output_index: int
    summary_index: int
    part: SummaryPart


class OutputTextDelta(_Event):
    type: Literal["response.output_text.delta"]
    item_id: str
    output_index: int
    content_index: int
    delta: str
    logprobs: list[Any]
    obfuscation: str | None = None


class OutputTextDone(_Event):
    type: Literal["response.output_text.done"]
    item_id: str
    output_index: int
    content_index: int
    text: str
    logprobs: list[Any]


class ContentPartAdded(_Event):
    type: Literal["response.content_part.added"]
    item_id: str
    output_index: int
    content_index: int
    part: ContentPartRef


class ContentPartDone(_Event):
    type: Literal["response.content_part.done"]
    item_id: str
    output_index: int
    content_index: int
    part: Any = None


class ResponseCompleted(_Event):
    type: Literal["response.completed"]
    response: Any = None


class WebSearchCall(_Event):
    type: Literal[
        "response.web_search_call.in_progress",
        "response.web_search_call.searching",
        "response.web_search_call.completed",
    ]
    output_index: int
    item_id: str


class AnnotationAdded(_Event):
    type: Literal["response.output_text.annotation.added"]
    item_id: str
    output_index: int
    content_index: int
    annotation_index: int
    annotation: Any = None


class FunctionCallArgumentsDelta(_Event):
    type: Literal["response.function_call_arguments.delta"]
    item_id: str
    output_index: int
    delta: str
    obfuscation: str | None = None


class FunctionCallArgumentsDone(_Event):
    type: Literal["response.function_call_arguments.done"]
    item_id: str
    output_index: int
    arguments: str


class GenericEvent(_Passthrough):
    """Fallback shape for event types without a dedicated model."""

    type: str
    sequence_number: int | None = None


KnownEvent = Annotated[
    Union[
        ResponseCreated,
        ResponseInProgress,
        OutputItemAdded,
        OutputItemDone,
        ReasoningSummaryPartAdded,
        ReasoningSummaryTextDelta,
        ReasoningSummaryTextDone,
        ReasoningSummaryPartDone,
        OutputTextDelta,
        OutputTextDone,
        ContentPartAdded,
        ContentPartDone,
        ResponseCompleted,
        WebSearchCall,
        AnnotationAdded,
        FunctionCallArgumentsDelta,
        FunctionCallArgumentsDone,
    ],
    Field(discriminator="type"),
]

EventData = Union[KnownEvent, GenericEvent]

KNOWN_EVENT_TYPES: frozenset[str] = frozenset(
    {
        "response.created",
        "response.in_progress",
        "response.output_item.added",
        "response.output_item.done",
        "response.reasoning_summary_part.added",
        "response.reasoning_summary_text.delta",
        "response.reasoning_summary_text.done",
        "response.reasoning_summary_part.done",
        "response.output_text.delta",
        "response.output_text.done",
        "response.content_part.added",
        "response.content_part.done",
        "response.completed",
        "response.web_search_call.in_progress",
        "response.web_search_call.searching",
        "response.web_search_call.completed",
        "response.output_text.annotation.added",
        "response.function_call_arguments.delta",
        "response.function_call_arguments.done",
    }
)

_KNOWN_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(KnownEvent)


def validate_event(payload: Any) -> EventData:
    """Validate a decoded payload against its named shape.

    Unrecognized types fall back to ``GenericEvent``. Raises
    ``pydantic.ValidationError`` for malformed payloads, including known
    types whose fields do not match.
    """
    if isinstance(payload, dict) and isinstance(payload.get("type"), str):
        if payload["type"] not in KNOWN_EVENT_TYPES:
            return GenericEvent.model_validate(payload)
    return _KNOWN_EVENT_ADAPTER.validate_python(payload)
