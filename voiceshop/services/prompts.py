"""Instructions and prompt builders for the language agent."""

from __future__ import annotations

import json
from typing import Sequence

from ..conversation.contracts import Message, ProductQuery, SearchResult
from ..conversation.utils import format_inr
from .platforms import PLATFORM_NAMES


INTERPRET_PROMPT = f"""
You are a helpful voice-based shopping assistant that helps users find the best prices for
products across e-commerce platforms in India.

Your responsibilities:
1. Extract product information from the user's words (product name, brand, specifications).
2. Ask clarifying questions to gather every necessary specification before searching.
3. Request a price search once the product is fully specified.
4. Keep replies conversational, clear and short; they are spoken aloud, not read.

Respond with a decision object:
- reply: what you would say to the user right now.
- action: one of "search", "clarify", "compare", "end", or null when you only reply.
  - "search" parameters: productName, category, brand, specifications (key/value pairs such as
    {{"ram": "16GB", "storage": "512GB"}}), optional priceRange {{"min", "max"}}.
    Only search when every important specification has been confirmed.
  - "clarify" parameters: question (one voice-friendly question) and missingSpecs.
  - "compare" when the user wants the already presented results compared again.
  - "end" when the user wants to stop.
- requires_user_input: whether you are waiting for the user to answer.
- conversation_state: optional phase name when no action applies.

Guidelines:
- Ask one question at a time when gathering specifications.
- Present prices in Indian Rupees (₹).
- Product categories: laptop, phone, tablet, desktop, monitor, headphones, camera, other.

Supported platforms: {", ".join(PLATFORM_NAMES)}.
""".strip()

EXTRACTION_PROMPT = """
Extract product information from the user's query. Identify the product name (full name if
mentioned), the brand, the product category (laptop, phone, tablet, desktop, monitor, headphones,
camera or other) and any specifications mentioned (RAM, storage, processor, color, size, model, ...).
Only include fields that are explicitly mentioned or clearly implied; leave the rest empty.
""".strip()

CLARIFY_PROMPT = """
You are a voice shopping assistant. Write ONE natural, conversational question about the most
important missing product specification. Offer examples or options when helpful and keep it short
enough to be easy to understand when spoken. Respond with the question only.
""".strip()

SUMMARY_PROMPT = """
Write a concise, natural voice response summarizing price comparison results.
- Start with the lowest price and its platform.
- Mention the top two or three options clearly.
- If the note says the prices are similar, mention it.
- Use Indian Rupees (₹).
- End by asking whether the user wants to search for another product.
Respond with the spoken text only.
""".strip()


def _format_history(history: Sequence[Message]) -> str:
    if not history:
        return "(no previous messages)"
    return "\n".join(f"{message.role}: {message.content}" for message in history)


def build_interpret_prompt(
    utterance: str,
    history: Sequence[Message],
    current_product: ProductQuery | None,
) -> str:
    sections = [f"Conversation so far:\n{_format_history(history)}"]
    if current_product is not None:
        sections.append(
            "Current product being discussed: "
            + current_product.model_dump_json(exclude_none=True)
        )
    sections.append(f"User says: {utterance}")
    return "\n\n".join(sections)


def build_clarify_prompt(query: ProductQuery, missing: Sequence[str]) -> str:
    return "\n".join(
        [
            f"Product: {query.product_name}",
            f"Category: {query.category.value if query.category else 'not specified'}",
            f"Brand: {query.brand or 'not specified'}",
            f"Current specifications: {json.dumps(query.specifications, ensure_ascii=False)}",
            f"Missing specifications: {', '.join(missing)}",
        ]
    )


def build_summary_prompt(
    query: ProductQuery, top: Sequence[SearchResult], similar_prices: bool
) -> str:
    lines = [
        f"Product: {query.product_name}",
        f"Specifications: {json.dumps(query.specifications, ensure_ascii=False)}",
        "",
        "Results (sorted by price):",
    ]
    lines.extend(
        f"{index}. {result.platform}: {format_inr(result.price)}"
        for index, result in enumerate(top, start=1)
    )
    if similar_prices:
        lines.extend(["", "Note: The top prices are very similar (less than 5% difference)."])
    return "\n".join(lines)


__all__ = [
    "CLARIFY_PROMPT",
    "EXTRACTION_PROMPT",
    "INTERPRET_PROMPT",
    "SUMMARY_PROMPT",
    "build_clarify_prompt",
    "build_interpret_prompt",
    "build_summary_prompt",
]
