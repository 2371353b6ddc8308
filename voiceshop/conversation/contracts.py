"""Conversation contracts shared by the turn pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(tz=timezone.utc)


class ProductCategory(str, Enum):
    """Closed set of product families the assistant understands."""

    LAPTOP = "laptop"
    PHONE = "phone"
    TABLET = "tablet"
    DESKTOP = "desktop"
    MONITOR = "monitor"
    HEADPHONES = "headphones"
    CAMERA = "camera"
    OTHER = "other"


class ConversationState(str, Enum):
    """Phases of a shopping conversation."""

    INITIAL = "initial"
    GATHERING_SPECS = "gathering_specs"
    SEARCHING = "searching"
    PRESENTING_RESULTS = "presenting_results"
    FOLLOW_UP = "follow_up"
    ENDED = "ended"


class SessionStatus(str, Enum):
    """Lifecycle status of a session record."""

    ACTIVE = "active"
    WAITING = "waiting"
    COMPLETED = "completed"


Availability = Literal["in_stock", "out_of_stock", "unknown"]
SpecValue = Union[str, float, int]


def _coerce_category(value: Any) -> ProductCategory | None:
    """Map free-form category labels onto the closed enumeration."""

    if value is None or isinstance(value, ProductCategory):
        return value
    lowered = str(value).strip().lower()
    if not lowered:
        return None
    try:
        return ProductCategory(lowered)
    except ValueError:
        return ProductCategory.OTHER


class Message(BaseModel):
    """Single utterance in the conversation history."""

    model_config = {"frozen": True}

    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class PriceRange(BaseModel):
    """Optional inclusive price bounds for a product query."""

    min: float | None = Field(None, ge=0)
    max: float | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "PriceRange":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("price range minimum must not exceed the maximum")
        return self


class ProductQuery(BaseModel):
    """Product the user wants prices for, with requested specifications."""

    product_name: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("product_name", "productName"),
    )
    category: ProductCategory | None = None
    brand: str | None = None
    specifications: dict[str, SpecValue] = Field(default_factory=dict)
    price_range: PriceRange | None = Field(
        None, validation_alias=AliasChoices("price_range", "priceRange")
    )

    @field_validator("product_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("product name must not be blank")
        return stripped

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        return _coerce_category(value)

    @field_validator("brand", mode="before")
    @classmethod
    def _blank_brand(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class SearchResult(BaseModel):
    """Single seller listing returned by a search provider."""

    platform: str
    product_name: str
    price: float = Field(..., ge=0)
    currency: str = "INR"
    url: str = ""
    availability: Availability = "unknown"
    specifications: dict[str, SpecValue] = Field(default_factory=dict)
    match_confidence: float = Field(0.5, ge=0.0, le=1.0)


class Session(BaseModel):
    """Full record of one conversation, owned by the session store."""

    session_id: str
    history: list[Message] = Field(default_factory=list)
    current_product: ProductQuery | None = None
    last_activity: datetime = Field(default_factory=utcnow)
    status: SessionStatus = SessionStatus.ACTIVE
    conversation_state: ConversationState = ConversationState.INITIAL


class SessionSnapshot(BaseModel):
    """Read-only view of a session returned to API callers."""

    session_id: str
    status: SessionStatus
    conversation_state: ConversationState
    current_product: ProductQuery | None = None
    message_count: int = Field(..., ge=0)
    history: list[Message] = Field(default_factory=list)
    last_activity: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionSnapshot":
        return cls(
            session_id=session.session_id,
            status=session.status,
            conversation_state=session.conversation_state,
            current_product=session.current_product,
            message_count=len(session.history),
            history=list(session.history),
            last_activity=session.last_activity,
        )


class Transcription(BaseModel):
    """Transcriber output for one audio payload."""

    text: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    language: str | None = None
    duration_ms: float = Field(0.0, ge=0)


class ProductInfo(BaseModel):
    """Product details extracted from free text; every field may be missing."""

    product_name: str | None = None
    category: ProductCategory | None = None
    brand: str | None = None
    specifications: dict[str, SpecValue] = Field(default_factory=dict)

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value: Any) -> Any:
        return _coerce_category(value)


class SpecValidation(BaseModel):
    """Completeness check of a product query against its category."""

    is_complete: bool
    missing_specs: list[str] = Field(default_factory=list)
    clarifying_question: str | None = None


class SearchAction(BaseModel):
    """Look up prices for a fully specified product."""

    type: Literal["search"] = "search"
    query: ProductQuery


class ClarifyAction(BaseModel):
    """Ask the user for missing information."""

    type: Literal["clarify"] = "clarify"
    question: str
    missing_specs: list[str] = Field(default_factory=list)


class CompareAction(BaseModel):
    """Compare already presented results."""

    type: Literal["compare"] = "compare"


class EndAction(BaseModel):
    """Close the conversation."""

    type: Literal["end"] = "end"


AgentAction = Annotated[
    Union[SearchAction, ClarifyAction, CompareAction, EndAction],
    Field(discriminator="type"),
]

GENERIC_CLARIFICATION = "I need a little more information to help you. Could you tell me more about the product?"


class Interpretation(BaseModel):
    """Language agent verdict for a single user utterance."""

    reply_text: str = ""
    action: AgentAction | None = None
    requires_user_input: bool = True
    new_state: ConversationState | None = None


def parse_action(
    action_type: str | None, parameters: Mapping[str, Any] | None = None
) -> SearchAction | ClarifyAction | CompareAction | EndAction | None:
    """Validate a loosely typed action into its tagged variant.

    Unknown action names and malformed payloads degrade to a generic
    clarification rather than failing the turn.
    """

    if not action_type:
        return None

    params = dict(parameters or {})
    kind = action_type.strip().lower()

    if kind == "search":
        payload = params.get("query", params)
        try:
            return SearchAction(query=ProductQuery.model_validate(payload))
        except ValueError:
            return ClarifyAction(question=GENERIC_CLARIFICATION)
    if kind == "clarify":
        question = str(params.get("question") or "").strip() or GENERIC_CLARIFICATION
        missing = params.get("missing_specs") or params.get("missingSpecs") or []
        return ClarifyAction(question=question, missing_specs=[str(item) for item in missing])
    if kind == "compare":
        return CompareAction()
    if kind == "end":
        return EndAction()

    return ClarifyAction(question=GENERIC_CLARIFICATION)


__all__ = [
    "AgentAction",
    "Availability",
    "ClarifyAction",
    "CompareAction",
    "ConversationState",
    "EndAction",
    "GENERIC_CLARIFICATION",
    "Interpretation",
    "Message",
    "PriceRange",
    "ProductCategory",
    "ProductInfo",
    "ProductQuery",
    "SearchAction",
    "SearchResult",
    "Session",
    "SessionSnapshot",
    "SessionStatus",
    "SpecValidation",
    "SpecValue",
    "Transcription",
    "parse_action",
    "utcnow",
]
