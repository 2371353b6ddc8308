"""Tests for the Pydantic-AI language agent and its decision mapping."""

from __future__ import annotations

import pytest
from pydantic_ai.messages import ModelMessage, ModelResponse
from pydantic_ai.models.function import AgentInfo, FunctionModel
from pydantic_ai.models.test import TestModel

from voiceshop.conversation.contracts import (
    GENERIC_CLARIFICATION,
    ClarifyAction,
    CompareAction,
    ConversationState,
    EndAction,
    ProductCategory,
    ProductQuery,
    SearchAction,
    SearchResult,
    parse_action,
)
from voiceshop.services.agent import (
    AgentDecision,
    PydanticAILanguageAgent,
    decision_to_interpretation,
    prices_are_similar,
)


@pytest.fixture
def anyio_backend() -> str:
    """Limit AnyIO tests to the asyncio backend."""

    return "asyncio"


def _offer(platform: str, price: float, availability: str = "in_stock") -> SearchResult:
    return SearchResult(
        platform=platform,
        product_name="iPhone 15",
        price=price,
        availability=availability,
    )


def _failing_model() -> FunctionModel:
    def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        raise RuntimeError("model offline")

    return FunctionModel(respond)


def test_parse_action_search_accepts_camel_case_query() -> None:
    action = parse_action(
        "search",
        {"query": {"productName": "iPhone 15", "category": "Phone", "specifications": {"storage": "128GB"}}},
    )

    assert isinstance(action, SearchAction)
    assert action.query.product_name == "iPhone 15"
    assert action.query.category is ProductCategory.PHONE


def test_parse_action_degrades_malformed_and_unknown_payloads() -> None:
    assert parse_action(None) is None
    assert parse_action("") is None

    malformed = parse_action("search", {"query": {"category": "laptop"}})
    unknown = parse_action("dance")

    assert isinstance(malformed, ClarifyAction)
    assert malformed.question == GENERIC_CLARIFICATION
    assert isinstance(unknown, ClarifyAction)


def test_parse_action_simple_variants() -> None:
    clarify = parse_action("Clarify", {"question": "Which color?", "missingSpecs": ["color"]})

    assert isinstance(clarify, ClarifyAction)
    assert clarify.missing_specs == ["color"]
    assert isinstance(parse_action("compare"), CompareAction)
    assert isinstance(parse_action("end"), EndAction)


def test_unknown_categories_fall_back_to_other() -> None:
    assert ProductQuery(product_name="Kettle", category="kitchen").category is ProductCategory.OTHER


def test_decision_action_overrides_model_flags() -> None:
    interpretation = decision_to_interpretation(
        AgentDecision(
            reply=" Let me search for that. ",
            action="search",
            parameters={"product_name": "Pixel 9"},
            requires_user_input=True,
            conversation_state="initial",
        )
    )

    assert isinstance(interpretation.action, SearchAction)
    assert interpretation.reply_text == "Let me search for that."
    assert interpretation.requires_user_input is False
    assert interpretation.new_state is ConversationState.SEARCHING


@pytest.mark.parametrize(
    ("action", "requires_input", "state"),
    [
        ("clarify", True, ConversationState.GATHERING_SPECS),
        ("compare", True, None),
        ("end", False, ConversationState.ENDED),
    ],
)
def test_decision_state_follows_action(
    action: str, requires_input: bool, state: ConversationState | None
) -> None:
    interpretation = decision_to_interpretation(
        AgentDecision(action=action, parameters={"question": "Which one?"})
    )

    assert interpretation.requires_user_input is requires_input
    assert interpretation.new_state is state


def test_decision_without_action_keeps_model_state() -> None:
    interpretation = decision_to_interpretation(
        AgentDecision(reply="Hi!", conversation_state="FOLLOW_UP", requires_user_input=True)
    )
    bogus = decision_to_interpretation(AgentDecision(reply="Hi!", conversation_state="dancing"))

    assert interpretation.action is None
    assert interpretation.new_state is ConversationState.FOLLOW_UP
    assert bogus.new_state is None


def test_prices_are_similar() -> None:
    assert prices_are_similar([_offer("Amazon", 100000), _offer("Flipkart", 104000)])
    assert not prices_are_similar([_offer("Amazon", 100000), _offer("Flipkart", 106000)])
    assert not prices_are_similar([_offer("Amazon", 100000)])


@pytest.mark.anyio("asyncio")
async def test_interpret_returns_typed_interpretation() -> None:
    model = TestModel(
        custom_output_args={
            "reply": "Which storage size would you like?",
            "action": "clarify",
            "parameters": {"question": "Which storage size would you like?", "missing_specs": ["storage"]},
            "requires_user_input": True,
            "conversation_state": "gathering_specs",
        }
    )
    agent = PydanticAILanguageAgent(model)

    interpretation = await agent.interpret("I want an iPhone 15", [], None)

    assert isinstance(interpretation.action, ClarifyAction)
    assert interpretation.action.missing_specs == ["storage"]
    assert interpretation.new_state is ConversationState.GATHERING_SPECS


@pytest.mark.anyio("asyncio")
async def test_extract_product_info_failure_returns_empty() -> None:
    agent = PydanticAILanguageAgent(_failing_model())

    info = await agent.extract_product_info("I need a laptop")

    assert info.product_name is None
    assert info.specifications == {}


@pytest.mark.anyio("asyncio")
async def test_validate_asks_for_category_first() -> None:
    agent = PydanticAILanguageAgent(TestModel(custom_output_text="unused"))

    validation = await agent.validate_specifications(ProductQuery(product_name="Galaxy Tab"))

    assert validation.is_complete is False
    assert validation.missing_specs == ["category"]
    assert "Galaxy Tab" in (validation.clarifying_question or "")


@pytest.mark.anyio("asyncio")
async def test_validate_complete_query() -> None:
    agent = PydanticAILanguageAgent(TestModel(custom_output_text="unused"))
    query = ProductQuery(
        product_name="Sony WH-1000XM5",
        category="headphones",
        specifications={"model": "WH-1000XM5", "type": "over-ear"},
    )

    validation = await agent.validate_specifications(query)

    assert validation.is_complete is True
    assert validation.missing_specs == []


@pytest.mark.anyio("asyncio")
async def test_validate_uses_model_question() -> None:
    agent = PydanticAILanguageAgent(TestModel(custom_output_text="How much RAM do you need?"))
    query = ProductQuery(product_name="iPhone 15", category="phone", specifications={"model": "15"})

    validation = await agent.validate_specifications(query)

    assert validation.missing_specs == ["storage", "ram", "color"]
    assert validation.clarifying_question == "How much RAM do you need?"


@pytest.mark.anyio("asyncio")
async def test_validate_falls_back_to_template_question() -> None:
    agent = PydanticAILanguageAgent(_failing_model())
    query = ProductQuery(product_name="Dell XPS", category="laptop")

    validation = await agent.validate_specifications(query)

    assert validation.clarifying_question == "Could you tell me the processor for the Dell XPS?"


@pytest.mark.anyio("asyncio")
async def test_summarize_fixed_texts_skip_the_model() -> None:
    agent = PydanticAILanguageAgent(_failing_model())
    query = ProductQuery(product_name="iPhone 15")

    empty = await agent.summarize(query, [])
    sold_out = await agent.summarize(query, [_offer("Amazon", 79900, "out_of_stock")])

    assert empty.startswith("I couldn't find any results for iPhone 15")
    assert "none of them are currently in stock" in sold_out


@pytest.mark.anyio("asyncio")
async def test_summarize_uses_model_output() -> None:
    agent = PydanticAILanguageAgent(
        TestModel(custom_output_text="  The best price is ₹79,900 on Amazon.  ")
    )

    summary = await agent.summarize(
        ProductQuery(product_name="iPhone 15"), [_offer("Amazon", 79900), _offer("Croma", 82900)]
    )

    assert summary == "The best price is ₹79,900 on Amazon."
