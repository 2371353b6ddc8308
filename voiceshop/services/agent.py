"""Language agent built on Pydantic-AI."""

from __future__ import annotations

from typing import Any, Sequence

import logfire
from pydantic import BaseModel, Field
from pydantic_ai import Agent, InstrumentationSettings
from pydantic_ai.models import Model
from pydantic_ai.models.openai import OpenAIChatModel, OpenAIChatModelSettings
from pydantic_ai.providers.openai import OpenAIProvider

from ..config import Settings
from ..conversation.contracts import (
    ClarifyAction,
    CompareAction,
    ConversationState,
    EndAction,
    Interpretation,
    Message,
    ProductInfo,
    ProductQuery,
    SearchAction,
    SearchResult,
    SpecValidation,
    parse_action,
)
from ..conversation.ranking import top_offers
from ..conversation.state import missing_specifications
from ..logging import _ensure_logfire
from .prompts import (
    CLARIFY_PROMPT,
    EXTRACTION_PROMPT,
    INTERPRET_PROMPT,
    SUMMARY_PROMPT,
    build_clarify_prompt,
    build_interpret_prompt,
    build_summary_prompt,
)


SIMILAR_PRICE_RATIO = 0.05


class AgentDecision(BaseModel):
    """Raw structured output of the interpretation model."""

    reply: str = ""
    action: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    requires_user_input: bool = True
    conversation_state: str | None = None


def build_chat_model(settings: Settings) -> OpenAIChatModel:
    """Return the OpenAI chat model configured from settings."""

    return OpenAIChatModel(
        settings.llm_model,
        provider=OpenAIProvider(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
        ),
        settings=OpenAIChatModelSettings(temperature=settings.llm_temperature),
    )


def _coerce_state(value: str | None) -> ConversationState | None:
    if not value:
        return None
    try:
        return ConversationState(value.strip().lower())
    except ValueError:
        return None


def decision_to_interpretation(decision: AgentDecision) -> Interpretation:
    """Validate the loose decision into a typed interpretation.

    The action kind decides whether input is still required and which phase
    is reported; any phase named by the model is only used without an action.
    Comparing never moves the conversation, so it reports no phase.
    """

    action = parse_action(decision.action, decision.parameters)
    requires_input = decision.requires_user_input
    new_state = _coerce_state(decision.conversation_state)

    if isinstance(action, SearchAction):
        requires_input, new_state = False, ConversationState.SEARCHING
    elif isinstance(action, ClarifyAction):
        requires_input, new_state = True, ConversationState.GATHERING_SPECS
    elif isinstance(action, CompareAction):
        requires_input, new_state = True, None
    elif isinstance(action, EndAction):
        requires_input, new_state = False, ConversationState.ENDED

    requested = (decision.action or "").strip().lower()
    if requested and requested != "clarify" and isinstance(action, ClarifyAction):
        logfire.warning("agent.action_degraded", action=decision.action)

    return Interpretation(
        reply_text=decision.reply.strip(),
        action=action,
        requires_user_input=requires_input,
        new_state=new_state,
    )


def prices_are_similar(results: Sequence[SearchResult]) -> bool:
    """Return ``True`` when the two cheapest prices differ by less than 5%."""

    if len(results) < 2 or results[0].price <= 0:
        return False
    return (results[1].price - results[0].price) / results[0].price < SIMILAR_PRICE_RATIO


class PydanticAILanguageAgent:
    """Interprets utterances, extracts products and summarizes prices."""

    def __init__(self, model: Model | str) -> None:
        _ensure_logfire()
        instrument = InstrumentationSettings()
        self._interpreter = Agent(
            model=model,
            output_type=AgentDecision,
            instructions=INTERPRET_PROMPT,
            instrument=instrument,
            name="voiceshop-interpreter",
        )
        self._extractor = Agent(
            model=model,
            output_type=ProductInfo,
            instructions=EXTRACTION_PROMPT,
            instrument=instrument,
            name="voiceshop-extractor",
        )
        self._clarifier = Agent(
            model=model,
            output_type=str,
            instructions=CLARIFY_PROMPT,
            instrument=instrument,
            name="voiceshop-clarifier",
        )
        self._summarizer = Agent(
            model=model,
            output_type=str,
            instructions=SUMMARY_PROMPT,
            instrument=instrument,
            name="voiceshop-summarizer",
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PydanticAILanguageAgent":
        return cls(build_chat_model(settings))

    async def interpret(
        self,
        utterance: str,
        history: Sequence[Message],
        current_product: ProductQuery | None = None,
    ) -> Interpretation:
        prompt = build_interpret_prompt(utterance, history, current_product)
        result = await self._interpreter.run(prompt)
        interpretation = decision_to_interpretation(result.output)
        logfire.info(
            "agent.interpreted",
            action=interpretation.action.type if interpretation.action else None,
            requires_user_input=interpretation.requires_user_input,
        )
        return interpretation

    async def extract_product_info(self, text: str) -> ProductInfo:
        """Extract product details; extraction failures yield an empty result."""

        try:
            result = await self._extractor.run(f'User query: "{text}"')
        except Exception as exc:
            logfire.warning("agent.extraction_failed", error=str(exc))
            return ProductInfo()
        return result.output

    async def validate_specifications(self, query: ProductQuery) -> SpecValidation:
        if query.category is None:
            return SpecValidation(
                is_complete=False,
                missing_specs=["category"],
                clarifying_question=(
                    f"What type of product is the {query.product_name}? For example, "
                    "is it a laptop, phone, tablet, or something else?"
                ),
            )

        missing = missing_specifications(query.category, query.specifications)
        if not missing:
            return SpecValidation(is_complete=True)

        question = await self._clarifying_question(query, missing)
        return SpecValidation(
            is_complete=False,
            missing_specs=missing,
            clarifying_question=question,
        )

    async def _clarifying_question(self, query: ProductQuery, missing: Sequence[str]) -> str:
        fallback = (
            f"Could you tell me the {missing[0].replace('_', ' ')} for the {query.product_name}?"
        )
        try:
            result = await self._clarifier.run(build_clarify_prompt(query, missing))
        except Exception as exc:
            logfire.warning("agent.clarify_failed", error=str(exc))
            return fallback
        return result.output.strip() or fallback

    async def summarize(self, query: ProductQuery, results: Sequence[SearchResult]) -> str:
        if not results:
            return (
                f"I couldn't find any results for {query.product_name} with the specifications "
                "you mentioned. Would you like to try a different product or modify the "
                "specifications?"
            )

        top = top_offers(results, limit=3)
        if not top:
            return (
                f"I found some listings for {query.product_name}, but unfortunately none of "
                "them are currently in stock. Would you like me to search for a similar product?"
            )

        prompt = build_summary_prompt(query, top, prices_are_similar(top))
        result = await self._summarizer.run(prompt)
        return result.output.strip()


__all__ = [
    "AgentDecision",
    "PydanticAILanguageAgent",
    "build_chat_model",
    "decision_to_interpretation",
    "prices_are_similar",
]
