"""
Context Assembler for ASTER
===========================

Turns a user prompt plus a selection of standardized documents into the
system/user message pair sent to the model.

The per-file budget shrinks as more files are selected, so the assembled
context grows sub-linearly with the file count:

    files   budget per file
    0-1     100000
    2-3      50000
    4-5      33333
    6+       25000

A prompt longer than 5000 characters scales the budget by 0.8.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

from .documents import DocumentFormat, StandardizedDocument, usable_documents
from .optimizer import optimize

logger = logging.getLogger(__name__)

BASE_BUDGET = 100000
LONG_PROMPT_THRESHOLD = 5000
LONG_PROMPT_FACTOR = 0.8

SYSTEM_PERSONA = "You are ASTER, an AI assistant for data analysis and document understanding."
FILES_PREAMBLE = "I have the following files as context:\n\n"

FORMAT_PRIORITY: Dict[str, int] = {
    DocumentFormat.SPREADSHEET.value: 1,
    DocumentFormat.JSON.value: 2,
    DocumentFormat.CSV.value: 3,
    DocumentFormat.MARKDOWN.value: 4,
}
DEFAULT_PRIORITY = 99


@dataclass(frozen=True)
class ContextBudget:
    """Derived per-call size budget. Never persisted."""
    max_per_file_bytes: int
    total_files: int
    prompt_length: int


@dataclass(frozen=True)
class AssembledContext:
    """Message pair ready for the inference client."""
    system_message: str
    user_message: str

    @property
    def total_length(self) -> int:
        return len(self.system_message) + len(self.user_message)


def compute_budget(file_count: int, prompt_length: int) -> ContextBudget:
    """
    Compute the per-file character budget.

    Args:
        file_count: Number of files going into the context
        prompt_length: Length of the user prompt in characters

    Returns:
        ContextBudget
    """
    if file_count >= 6:
        per_file = BASE_BUDGET // 4
    elif file_count >= 4:
        per_file = BASE_BUDGET // 3
    elif file_count >= 2:
        per_file = BASE_BUDGET // 2
    else:
        per_file = BASE_BUDGET

    if prompt_length > LONG_PROMPT_THRESHOLD:
        per_file = int(per_file * LONG_PROMPT_FACTOR)

    return ContextBudget(
        max_per_file_bytes=per_file,
        total_files=file_count,
        prompt_length=prompt_length,
    )


def format_priority(document: StandardizedDocument) -> int:
    return FORMAT_PRIORITY.get(document.format.value, DEFAULT_PRIORITY)


def sort_by_priority(documents: Sequence[StandardizedDocument]) -> List[StandardizedDocument]:
    """Order documents spreadsheet < json < csv < markdown < other (stable)."""
    return sorted(documents, key=format_priority)


def system_message(default_context: str = "") -> str:
    if default_context and default_context.strip():
        return f"{SYSTEM_PERSONA}\n\nAdditional context: {default_context}"
    return SYSTEM_PERSONA


def wrap_excerpt(filename: str, excerpt: str) -> str:
    return f"--- FILE: {filename} ---\n{excerpt}\n"


def assemble(
    prompt: str,
    files: Sequence[StandardizedDocument] = (),
    default_context: str = "",
) -> AssembledContext:
    """
    Build the system/user message pair.

    Error documents are dropped before budgeting. With no usable file the
    user message is the prompt unchanged.

    Args:
        prompt: The user's question or instruction
        files: Selected standardized documents
        default_context: Optional standing context appended to the system message

    Returns:
        AssembledContext
    """
    documents = usable_documents(list(files))
    if len(documents) < len(files):
        logger.info(f"Skipping {len(files) - len(documents)} file(s) that failed standardization")

    system = system_message(default_context)
    if not documents:
        return AssembledContext(system_message=system, user_message=prompt)

    budget = compute_budget(len(documents), len(prompt))
    logger.debug(
        f"Assembling context: {budget.total_files} files, "
        f"{budget.max_per_file_bytes} chars per file"
    )

    excerpts = [
        wrap_excerpt(doc.filename, optimize(doc, budget.max_per_file_bytes))
        for doc in sort_by_priority(documents)
    ]
    user = FILES_PREAMBLE + "\n".join(excerpts) + "\n\nQuestion: " + prompt

    return AssembledContext(system_message=system, user_message=user)
