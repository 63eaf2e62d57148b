"""Prompt templates for LLM calls."""

import json
from typing import List

NULL_MATCH = "null"

PRODUCT_MATCH_PROMPT = """I have a shopping list item: "{requested}"

Here is a list of products recently seen on the store (most recent first):
{candidates}

Pick the single product that is the best everyday substitute for the item.
- "Tomato" matches "Hybrid Tomato" or "Tamatar".
- "Milk" matches "Amul Taaza Milk".
- Do NOT pick specialty, premium, organic, imported or flavoured variants
  unless the shopping list item itself asks for one ("Organic Honey" may
  match "Organic Wild Honey"; "Honey" may not).
- Do NOT pick a product that is only loosely related ("Milk" is not
  "Milk Chocolate").

Return ONLY the exact product string from the list, without quotes.
If nothing is a good match, return {null}."""


def build_match_prompt(requested: str, candidates: List[str]) -> str:
    """
    Build the prompt asking for the best candidate product for an item.

    Args:
        requested: Shopping list item as written
        candidates: Display names of captured products

    Returns:
        Prompt text
    """
    return PRODUCT_MATCH_PROMPT.format(
        requested=requested,
        candidates=json.dumps(candidates, ensure_ascii=False),
        null=NULL_MATCH,
    )
