# pdf_rag/prompts/prompt_builder.py

from typing import List, Dict, Optional

from pdf_rag.prompts.system_prompts import (
    ANSWER_SYSTEM_PROMPT,
    FEW_SHOT_BLOCK,
    FEW_SHOT_GENERATION_SYSTEM_PROMPT,
    PARTIAL_VIEW_NOTE,
)


def build_answer_system_prompt(few_shot_examples: Optional[str] = None) -> str:
    """Answering guidelines, preceded by the document's examples when present."""

    few_shot_block = (
        FEW_SHOT_BLOCK.format(examples=few_shot_examples)
        if few_shot_examples
        else ""
    )

    return ANSWER_SYSTEM_PROMPT.format(few_shot_block=few_shot_block).strip()


def build_user_message(query: str, context_chunks: List[Dict]) -> str:

    context_text = "\n\n".join(chunk["content"] for chunk in context_chunks)

    return (
        f"Answer the question based on the following context:\n\n"
        f"{context_text}\n\n"
        f"Question: {query}"
    )


def build_few_shot_system_prompt(chunk_number: Optional[int] = None) -> str:
    """
    chunk_number marks a partial view of a larger document
    (1-based ordinal of the token-budget block).
    """

    chunk_note = (
        PARTIAL_VIEW_NOTE.format(chunk_number=chunk_number)
        if chunk_number is not None
        else ""
    )

    return FEW_SHOT_GENERATION_SYSTEM_PROMPT.format(chunk_note=chunk_note).strip()
