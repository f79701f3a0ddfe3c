"""Prompt construction for follow-up questions."""

from pathlib import Path
from typing import Optional

from car_advisor.logger import logger

DEFAULT_SPEC_SHEET_FILE = Path(__file__).parent / "data" / "car_specs.txt"

SYSTEM_PROMPT_TEMPLATE = """
You are an expert on Volvo cars. Your answers should be very short. Use the
following information to answer questions about specific Volvo models. Only
respond to questions related to the cars' specifications or features. If the
question is unrelated, say "{refusal}" NEVER answer an unrelated question.
In your answers, if the model is not specified, assume it's the selected model.

Car Specifications:
{spec_sheet}

Selected car model: {product}

User Question: {question}
"""

REFUSAL_MESSAGE = "I can only answer questions about Volvo car specifications."


class SpecSheetError(RuntimeError):
    """Specification text missing or empty."""


def load_spec_sheet(path: Optional[Path] = None) -> str:
    """Read the plain-text specification sheet, loaded once at startup."""
    path = Path(path) if path else DEFAULT_SPEC_SHEET_FILE
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SpecSheetError(f"cannot read spec sheet {path}: {exc}") from exc
    if not text.strip():
        raise SpecSheetError(f"spec sheet {path} is empty")
    logger.info("Spec sheet loaded", path=str(path), chars=len(text))
    return text


def build_prompt(product: str, spec_sheet: str, question: str) -> str:
    """
    Build the single-message prompt for a follow-up question.

    The answer is restricted to spec_sheet, pinned to product unless the
    question names another model, and asked to be terse.
    """
    return SYSTEM_PROMPT_TEMPLATE.format(
        refusal=REFUSAL_MESSAGE,
        spec_sheet=spec_sheet.strip(),
        product=product,
        question=question.strip(),
    ).strip()
