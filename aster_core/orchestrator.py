"""
Report Block Orchestrator for ASTER
===================================

Drives report generation on top of the inference client:

1. decompose()    ask the model to split the corpus into report sections
2. generate_all() fill the sections one at a time (single worker loop)
3. regenerate()   produce three style variants of one section concurrently
4. verify()       ask the model for a 0-100 credibility score of the report

Plus pure structural operations (add, edit, delete, move) on the ordered
block list.

At most one primary request (decompose, generate_one, generate_all, verify)
is in flight: starting a new one cancels the previous and waits until it has
settled before sending anything. A cancelled block returns to the state it
had before generation; it is never marked failed.
"""

import asyncio
import json
import logging
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .documents import StandardizedDocument, select_documents, usable_documents
from .logging_utils import ReportEventLog
from .ollama_client import CancellationToken, InferenceCancelled
from .report import BlockStatus, ReportBlock, export_report_markdown, move_item

logger = logging.getLogger(__name__)

DECOMPOSITION_PROMPT = """You have been provided with a set of files. These files are flexible and may change each time.

Your task:

- Read each file carefully.
- Identify the critical categories needed for a thorough analytical report on the subject of these files.
- Create a JSON array, where each element is one category.
- Each category object must have exactly four keys:
  "title" (short heading),
  "prompt" (instructions for how to fill "content"),
  "content" (leave this empty),
  "relevant_files" (list the filenames that support the category).

Guidelines:

- Base each category strictly on data explicitly found in the provided files. Do not speculate or assume.
- Only include categories for which you have supporting information in the files.
- Do not overlap categories: each should be distinct and actionable.
- Within "prompt", instruct the model that will fill "content" to be deterministic, avoid hallucination,
  rely solely on the listed files and verify that every reference is found in the source files.

You may also include a concluding category synthesizing the overall findings.

Please return your output as a clean JSON array with no additional formatting or commentary."""

VERIFICATION_PROMPT = """Below is a report generated from the provided files.

Check every statement of the report against the files. Rate how well the report is supported
by the files on a scale from 0 (unsupported or contradicted) to 100 (fully supported).

Answer with the number first, then at most three sentences of justification.

REPORT:

{report}"""

VARIANT_STYLES: Tuple[Tuple[str, str], ...] = (
    ("key findings", "Focus on the key findings. Be concise and lead with the most important points."),
    ("detailed analysis", "Provide a detailed analysis, citing the supporting figures from the files."),
    ("balanced view", "Give a balanced view that weighs strengths against weaknesses and risks."),
)

EDITABLE_FIELDS = ("title", "content", "prompt", "relevant_files")

SCORE_RE = re.compile(r"-?\d+")
TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


# =============================================================================
# Errors and results
# =============================================================================

class ReportParseError(Exception):
    """The decomposition answer is not a JSON array of blocks."""

    def __init__(self, message: str, raw_response: str):
        self.raw_response = raw_response
        super().__init__(f"{message}\n--- raw response ---\n{raw_response}")


class ReportVerificationError(Exception):
    """No credibility score could be obtained."""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        self.raw_response = raw_response
        super().__init__(message)


class GenerationOutcome(str, Enum):
    GENERATED = "generated"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class GenerationResult:
    """What happened to one block during a generation run."""
    block_id: str
    outcome: GenerationOutcome
    content: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# Parsing
# =============================================================================

def strip_code_fences(text: str) -> str:
    """Remove a surrounding ``` or ```json fence, if any."""
    cleaned = text.strip()
    cleaned = re.sub(r"^```[A-Za-z]*\s*", "", cleaned)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    return cleaned.strip()


def _load_array(candidate: str) -> Optional[List[Any]]:
    # Second attempt fixes trailing commas (common LLM error)
    for attempt in (candidate, TRAILING_COMMA_RE.sub(r"\1", candidate)):
        try:
            data = json.loads(attempt)
        except (json.JSONDecodeError, RecursionError):
            continue
        if isinstance(data, list):
            return data
    return None


def parse_block_array(text: str) -> List[ReportBlock]:
    """
    Parse the model's decomposition answer into fresh blocks.

    Accepts a bare JSON array, a fenced one, or an array surrounded by
    prose. Every block gets a new id and the PENDING status.

    Args:
        text: Raw model response

    Returns:
        List of ReportBlock

    Raises:
        ReportParseError: If no JSON array of objects can be recovered. The
            raw response is attached.
    """
    cleaned = strip_code_fences(text)
    data = _load_array(cleaned)

    if data is None:
        start, end = cleaned.find("["), cleaned.rfind("]")
        if start != -1 and end > start:
            data = _load_array(cleaned[start:end + 1])

    if data is None:
        raise ReportParseError("Could not parse report sections from the model response", text)

    blocks = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ReportParseError(f"Section {index} is not a JSON object", text)
        relevant = item.get("relevant_files") or []
        if isinstance(relevant, str):
            relevant = [relevant]
        blocks.append(ReportBlock(
            title=str(item.get("title") or "").strip() or f"Section {index + 1}",
            prompt=str(item.get("prompt") or ""),
            content=str(item.get("content") or ""),
            relevant_files=[str(name) for name in relevant],
        ))
    return blocks


def parse_credibility_score(text: str) -> int:
    """
    First integer in ``text``, clamped to [0, 100]. Best effort only.

    Raises:
        ReportVerificationError: If the text contains no number
    """
    match = SCORE_RE.search(text or "")
    if match is None:
        raise ReportVerificationError("No credibility score found in the model response", text)
    return max(0, min(100, int(match.group(0))))


# =============================================================================
# Orchestrator
# =============================================================================

class ReportOrchestrator:
    """
    Owns the ordered block list and the available files of one session.

    ``client`` must provide ``query(prompt, files, default_context, cancel=,
    on_progress=)`` as InferenceClient does.

    Example:
        orchestrator = ReportOrchestrator(InferenceClient(config), files=docs)
        await orchestrator.decompose()
        await orchestrator.generate_all()
        print(export_report_markdown(orchestrator.blocks))
    """

    def __init__(
        self,
        client: Any,
        files: Optional[Sequence[StandardizedDocument]] = None,
        blocks: Optional[List[ReportBlock]] = None,
        default_context: str = "",
        event_log: Optional[ReportEventLog] = None,
        on_progress: Optional[Callable[[str], None]] = None,
        decomposition_prompt: Optional[str] = None,
    ):
        self.client = client
        self.files: List[StandardizedDocument] = list(files or [])
        self.blocks: List[ReportBlock] = list(blocks or [])
        self.default_context = default_context
        self.event_log = event_log
        self.on_progress = on_progress
        self.decomposition_prompt = decomposition_prompt or DECOMPOSITION_PROMPT

        self._primary: Optional[CancellationToken] = None
        # primary token -> event set once that request has fully settled
        self._running: Dict[CancellationToken, asyncio.Event] = {}
        self._regenerations: Dict[str, CancellationToken] = {}
        # block id -> token of the run allowed to write the block
        self._owners: Dict[str, CancellationToken] = {}
        # block id -> (status, error) to restore on cancellation
        self._restore: Dict[str, Tuple[BlockStatus, Optional[str]]] = {}

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _progress(self, message: str) -> None:
        if self.on_progress is not None:
            self.on_progress(message)

    def _event(self, event_type: str, **data: Any) -> None:
        if self.event_log is not None:
            self.event_log.record(event_type, **data)

    async def _begin_primary(self) -> CancellationToken:
        """
        Take over the primary slot, waiting until the previous holder is done.

        Raises:
            InferenceCancelled: If a newer request superseded this one while
                it was waiting
        """
        previous = self._primary
        token = CancellationToken()
        self._primary = token
        self._running[token] = asyncio.Event()

        try:
            previous_done = self._running.get(previous) if previous is not None else None
            if previous_done is not None:
                logger.info("Cancelling in-flight request before starting a new one")
                previous.cancel()
                await previous_done.wait()
        except BaseException:
            self._end_primary(token)
            raise

        if token.cancelled:
            self._end_primary(token)
            raise InferenceCancelled()
        return token

    def _end_primary(self, token: CancellationToken) -> None:
        done = self._running.pop(token, None)
        if done is not None:
            done.set()
        if self._primary is token:
            self._primary = None

    def _claim(self, block: ReportBlock, token: CancellationToken) -> None:
        if block.id not in self._owners:
            self._restore[block.id] = (block.status, block.error)
        self._owners[block.id] = token

    def _release(self, block_id: str, token: CancellationToken) -> bool:
        """Give up ownership. False if another run (or a delete) took the block."""
        if self._owners.get(block_id) is token:
            del self._owners[block_id]
            return True
        return False

    def _revert(self, block: ReportBlock) -> None:
        block.status, block.error = self._restore.pop(block.id, (BlockStatus.PENDING, None))

    def find_block(self, block_id: str) -> Optional[ReportBlock]:
        for block in self.blocks:
            if block.id == block_id:
                return block
        return None

    def get_block(self, block_id: str) -> ReportBlock:
        """
        Raises:
            KeyError: If no block has this id
        """
        block = self.find_block(block_id)
        if block is None:
            raise KeyError(block_id)
        return block

    def files_for_block(self, block: ReportBlock) -> List[StandardizedDocument]:
        """The block's relevant files, or every usable file when none match."""
        available = usable_documents(self.files)
        matched = select_documents(available, block.relevant_files)
        if block.relevant_files and not matched:
            logger.info(f"No relevant file of '{block.title}' is available, using all files")
        return matched or available

    # -------------------------------------------------------------------------
    # Decomposition
    # -------------------------------------------------------------------------

    async def decompose(
        self,
        corpus_prompt: Optional[str] = None,
        files: Optional[Sequence[StandardizedDocument]] = None,
    ) -> List[ReportBlock]:
        """
        Ask the model for the report's sections and replace the block list.

        Args:
            corpus_prompt: Decomposition instructions (built-in prompt if None)
            files: Files to decompose (the orchestrator's files if None)

        Returns:
            The new blocks

        Raises:
            InferenceCancelled: If superseded or cancelled
            InferenceError: On backend failure
            ReportParseError: If the answer holds no JSON array
        """
        if files is not None:
            self.files = list(files)
        token = await self._begin_primary()
        documents = usable_documents(self.files)
        logger.info(f"Decomposing {len(documents)} files into report sections")

        try:
            raw = await self.client.query(
                corpus_prompt or self.decomposition_prompt,
                documents,
                self.default_context,
                cancel=token,
                on_progress=self._progress,
            )
        finally:
            self._end_primary(token)

        blocks = parse_block_array(raw)
        for block in self.blocks:
            self._owners.pop(block.id, None)
            self._restore.pop(block.id, None)
        self.blocks = blocks

        logger.info(f"Decomposition produced {len(blocks)} sections")
        self._event("decompose", sections=len(blocks), titles=[b.title for b in blocks])
        return blocks

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def _generate_block(self, block: ReportBlock, token: CancellationToken) -> GenerationResult:
        block.status = BlockStatus.GENERATING
        block.error = None
        logger.info(f"Generating block '{block.title}' ({block.id})")

        try:
            content = await self.client.query(
                block.prompt,
                self.files_for_block(block),
                self.default_context,
                cancel=token,
                on_progress=self._progress,
            )
        except InferenceCancelled:
            if self._release(block.id, token):
                self._revert(block)
            logger.info(f"Generation of {block.id} cancelled")
            self._event("block_cancelled", block_id=block.id, title=block.title)
            return GenerationResult(block.id, GenerationOutcome.CANCELLED)
        except Exception as e:
            if self._release(block.id, token):
                self._restore.pop(block.id, None)
                block.status = BlockStatus.FAILED
                block.error = str(e)
            logger.warning(f"Generation of {block.id} failed: {e}")
            self._event("block_failed", block_id=block.id, title=block.title, error=str(e))
            return GenerationResult(block.id, GenerationOutcome.FAILED, error=str(e))

        if self._release(block.id, token):
            self._restore.pop(block.id, None)
            block.content = content
            block.status = BlockStatus.GENERATED
            block.error = None
        self._event("block_generated", block_id=block.id, title=block.title, chars=len(content))
        return GenerationResult(block.id, GenerationOutcome.GENERATED, content=content)

    async def generate_one(self, block_id: str) -> GenerationResult:
        """
        Generate a single block, cancelling any other primary request.

        The result is CANCELLED if a newer request supersedes this one before
        it starts.

        Raises:
            KeyError: If no block has this id
        """
        block = self.get_block(block_id)
        try:
            token = await self._begin_primary()
        except InferenceCancelled:
            return GenerationResult(block.id, GenerationOutcome.CANCELLED)
        if self.find_block(block_id) is None:
            self._end_primary(token)
            return GenerationResult(block.id, GenerationOutcome.CANCELLED)
        self._claim(block, token)
        try:
            return await self._generate_block(block, token)
        finally:
            self._end_primary(token)

    async def generate_all(self, block_ids: Optional[Sequence[str]] = None) -> List[GenerationResult]:
        """
        Generate blocks strictly one after another, in list order.

        A failed block does not stop the queue. Cancellation (explicit or by
        a newer primary request) stops it; blocks still queued return to
        their previous state.

        Args:
            block_ids: Blocks to generate (all blocks if None)

        Returns:
            One GenerationResult per processed block
        """
        try:
            token = await self._begin_primary()
        except InferenceCancelled:
            return []
        wanted = set(block_ids) if block_ids is not None else None
        targets = [b for b in self.blocks if wanted is None or b.id in wanted]

        queue = deque()
        for block in targets:
            self._claim(block, token)
            block.status = BlockStatus.QUEUED
            queue.append(block.id)
        logger.info(f"Queued {len(queue)} blocks for generation")

        results: List[GenerationResult] = []
        try:
            while queue and not token.cancelled:
                block = self.find_block(queue.popleft())
                if block is None or self._owners.get(block.id) is not token:
                    continue
                self._progress(f"Generating section {len(results) + 1} of {len(targets)}: {block.title}")
                results.append(await self._generate_block(block, token))
        finally:
            for block_id in queue:
                block = self.find_block(block_id)
                if block is not None and self._release(block_id, token):
                    self._revert(block)
            self._end_primary(token)

        return results

    # -------------------------------------------------------------------------
    # Regeneration
    # -------------------------------------------------------------------------

    async def regenerate(self, block_id: str, custom_prompt: Optional[str] = None) -> List[str]:
        """
        Produce three style variants of a block concurrently.

        The block's content is not changed; pass the chosen variant to
        apply_variant().

        Args:
            block_id: Block to regenerate
            custom_prompt: Replacement base prompt (the block's prompt if empty)

        Returns:
            [key findings, detailed analysis, balanced view] variants

        Raises:
            KeyError: If no block has this id
            InferenceCancelled: If cancelled
            InferenceError: If a variant request fails
        """
        block = self.get_block(block_id)
        previous = self._regenerations.get(block_id)
        if previous is not None:
            previous.cancel()
        token = CancellationToken()
        self._regenerations[block_id] = token

        base_prompt = (custom_prompt or "").strip() or block.prompt
        files = self.files_for_block(block)
        prior_status = block.status
        block.status = BlockStatus.REGENERATING
        logger.info(f"Regenerating block '{block.title}' with {len(VARIANT_STYLES)} variants")

        try:
            outcomes = await asyncio.gather(
                *(
                    self.client.query(
                        f"{base_prompt}\n\n{instruction}",
                        files,
                        self.default_context,
                        cancel=token,
                        on_progress=self._progress,
                    )
                    for _, instruction in VARIANT_STYLES
                ),
                return_exceptions=True,
            )
        finally:
            if self._regenerations.get(block_id) is token:
                del self._regenerations[block_id]
                if block.status == BlockStatus.REGENERATING:
                    block.status = prior_status

        for outcome in outcomes:
            if isinstance(outcome, InferenceCancelled):
                raise outcome
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        self._event("variants_generated", block_id=block.id, title=block.title, variants=len(outcomes))
        return list(outcomes)

    def apply_variant(self, block_id: str, content: str) -> ReportBlock:
        """Replace a block's content with a chosen variant."""
        block = self.get_block(block_id)
        block.content = content
        block.status = BlockStatus.GENERATED
        block.error = None
        return block

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    async def verify(self, files: Optional[Sequence[StandardizedDocument]] = None) -> int:
        """
        Ask the model to grade the report against the source files.

        The score is a best-effort heuristic extracted from free text.

        Returns:
            Credibility score in [0, 100]

        Raises:
            ReportVerificationError: If there is nothing to verify or no score
                can be read from the answer
        """
        generated = [b for b in self.blocks if b.content.strip()]
        if not generated:
            raise ReportVerificationError("The report has no content to verify")

        documents = usable_documents(list(files) if files is not None else self.files)
        token = await self._begin_primary()
        try:
            raw = await self.client.query(
                VERIFICATION_PROMPT.format(report=export_report_markdown(generated)),
                documents,
                self.default_context,
                cancel=token,
                on_progress=self._progress,
            )
        finally:
            self._end_primary(token)

        score = parse_credibility_score(raw)
        logger.info(f"Report credibility score: {score}")
        self._event("verification", score=score, sections=len(generated))
        return score

    # -------------------------------------------------------------------------
    # Structural operations (no I/O)
    # -------------------------------------------------------------------------

    def add_block(
        self,
        prompt: str,
        title: Optional[str] = None,
        relevant_files: Optional[List[str]] = None,
    ) -> ReportBlock:
        """Append a custom block. The title defaults to the prompt."""
        block = ReportBlock(
            title=(title or "").strip() or prompt,
            prompt=prompt,
            relevant_files=list(relevant_files or []),
        )
        self.blocks.append(block)
        return block

    def edit_block(self, block_id: str, **changes: Any) -> ReportBlock:
        """
        Update title, content, prompt or relevant_files of a block.

        Raises:
            KeyError: If no block has this id
            ValueError: If a field is not editable
        """
        block = self.get_block(block_id)
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")
        for name, value in changes.items():
            if name == "relevant_files":
                value = [value] if isinstance(value, str) else list(value)
            setattr(block, name, value)
        return block

    def delete_block(self, block_id: str) -> ReportBlock:
        """
        Remove a block. A generation still running for it is discarded.

        Raises:
            KeyError: If no block has this id
        """
        block = self.get_block(block_id)
        self.blocks.remove(block)
        self._owners.pop(block_id, None)
        self._restore.pop(block_id, None)
        return block

    def move_block(self, block_id: str, new_index: int) -> List[ReportBlock]:
        """
        Move a block to a new position.

        Raises:
            KeyError: If no block has this id
            IndexError: If new_index is out of range
        """
        block = self.get_block(block_id)
        self.blocks = move_item(self.blocks, self.blocks.index(block), new_index)
        return self.blocks

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def cancel(self) -> None:
        """Cancel the primary request and every regeneration in flight."""
        if self._primary is not None:
            self._primary.cancel()
        for token in self._regenerations.values():
            token.cancel()

    async def build_report(self, corpus_prompt: Optional[str] = None) -> List[ReportBlock]:
        """Decompose, then generate every section."""
        await self.decompose(corpus_prompt)
        await self.generate_all()
        return self.blocks
