# ecoreco/domain/services/prompts.py
from typing import List, Optional

from ecoreco.domain.models.product import Order, Product
from ecoreco.domain.services.constants import DESC_SNIPPET_CHARS

ID_SECTION_LABEL = "Recommended product IDs:"

WARMUP_PROMPT = "Hello, this is a warmup request to load the model into memory."


def _snippet(text: Optional[str], fallback: str = "") -> str:
    text = (text or "").strip().replace("\n", " ")
    return text[:DESC_SNIPPET_CHARS] if text else fallback


def _candidate_lines(candidates: List[Product]) -> str:
    return "\n".join(f"[{p.id}] {p.name} - {_snippet(p.description, 'No description')}" for p in candidates)


def _answer_format(limit: int) -> str:
    return (
        f"In your response, include a final line that says \"{ID_SECTION_LABEL} \" followed by "
        f"the {limit} IDs of your recommended products, exactly as written between the brackets, "
        "separated by commas, best match first."
    )


def product_prompt(seed: Product, candidates: List[Product], limit: int) -> str:
    desc = _snippet(seed.description)
    viewed = f"\"{seed.name}\"" + (f" ({desc})" if desc else "")
    return (
        "You are a helpful shopping assistant for an eco-friendly online store.\n\n"
        f"A customer is viewing this product: {viewed}\n\n"
        "Which of these products would you recommend they might also like?\n\n"
        "Available products:\n"
        f"{_candidate_lines(candidates)}\n\n"
        f"Think about which products complement or match well with {seed.name}, "
        f"then select the {limit} best options.\n\n"
        + _answer_format(limit)
    )


def order_prompt(order: Order, categories: List[str], candidates: List[Product], limit: int) -> str:
    purchased = "\n- ".join(
        it.name + (f": {_snippet(it.description)}" if it.description else "") for it in order.items
    )
    return (
        "You are an e-commerce recommendation system for an eco-friendly online store.\n"
        "A customer purchased these items:\n"
        f"- {purchased}\n\n"
        f"Categories in this order: {', '.join(categories)}\n\n"
        f"Recommend {limit} products from this list that would complement their purchase:\n"
        f"{_candidate_lines(candidates)}\n\n"
        + _answer_format(limit)
    )
