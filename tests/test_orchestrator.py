"""
Tests for the report block orchestrator (fake inference client)
"""

import asyncio
import json

import pytest

from aster_core.logging_utils import ReportEventLog
from aster_core.metadata import UploadedFile
from aster_core.ollama_client import BackendHTTPError, InferenceCancelled
from aster_core.orchestrator import (
    GenerationOutcome,
    ReportOrchestrator,
    ReportParseError,
    ReportVerificationError,
    VARIANT_STYLES,
    parse_block_array,
    parse_credibility_score,
    strip_code_fences,
)
from aster_core.report import BlockStatus, ReportBlock
from aster_core.standardizers import standardize

SECTIONS = [
    {"title": "Revenue", "prompt": "Describe revenue", "content": "", "relevant_files": ["sales.csv"]},
    {"title": "Context", "prompt": "Describe context", "content": "", "relevant_files": ["notes.md"]},
]


class FakeClient:
    """Honors the InferenceClient.query() contract without any I/O."""

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls = []

    async def query(self, prompt, files=(), default_context="", cancel=None, model_override=None, on_progress=None):
        self.calls.append({"prompt": prompt, "files": [f.filename for f in files], "context": default_context})
        if self.handler is not None:
            return await self.handler(prompt, cancel)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


async def wait_for_cancel(prompt, cancel):
    await cancel.wait()
    raise InferenceCancelled()


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def files():
    return [
        standardize(UploadedFile.from_bytes("sales.csv", "region,amount\nNorth,10\nSouth,20\n")),
        standardize(UploadedFile.from_bytes("notes.md", "# Notes\n\nFlat quarter.")),
        standardize(UploadedFile.from_bytes("broken.json", "{oops")),
    ]


class TestParsing:
    """Tests for decomposition parsing."""

    def test_fenced_equals_unfenced(self):
        raw = json.dumps(SECTIONS)
        plain = parse_block_array(raw)
        fenced = parse_block_array(f"```json\n{raw}\n```")
        assert [b.to_export_dict() for b in fenced] == [b.to_export_dict() for b in plain]
        assert [b.title for b in plain] == ["Revenue", "Context"]

    def test_fresh_ids_and_status(self):
        blocks = parse_block_array(json.dumps(SECTIONS))
        assert len({b.id for b in blocks}) == 2
        assert all(b.status == BlockStatus.PENDING for b in blocks)
        assert not any(b.is_generating or b.is_generated for b in blocks)

    def test_prose_and_trailing_commas(self):
        raw = 'Here you go:\n[{"title": "A", "prompt": "p", "relevant_files": "a.csv",},]\nThanks!'
        blocks = parse_block_array(raw)
        assert blocks[0].title == "A"
        assert blocks[0].relevant_files == ["a.csv"]

    def test_unparseable_keeps_raw_response(self):
        with pytest.raises(ReportParseError) as exc_info:
            parse_block_array("I cannot do that.")
        assert exc_info.value.raw_response == "I cannot do that."
        assert "I cannot do that." in str(exc_info.value)

    def test_non_object_element(self):
        with pytest.raises(ReportParseError):
            parse_block_array('["just a string"]')

    def test_strip_code_fences(self):
        assert strip_code_fences("```\n[1]\n```") == "[1]"
        assert strip_code_fences("[1]") == "[1]"

    @pytest.mark.parametrize("text,expected", [
        ("87", 87),
        ("Score: 92/100. Well supported.", 92),
        ("150", 100),
        ("-5", 0),
    ])
    def test_credibility_score(self, text, expected):
        assert parse_credibility_score(text) == expected

    def test_credibility_score_missing(self):
        with pytest.raises(ReportVerificationError):
            parse_credibility_score("cannot tell")


class TestDecompose:
    """Tests for decomposition."""

    @pytest.mark.asyncio
    async def test_decompose_replaces_blocks(self, files, temp_dir):
        client = FakeClient([f"```json\n{json.dumps(SECTIONS)}\n```"])
        log = ReportEventLog(temp_dir)
        orchestrator = ReportOrchestrator(client, files=files, default_context="EUR", event_log=log)

        blocks = await orchestrator.decompose()

        assert [b.title for b in blocks] == ["Revenue", "Context"]
        assert orchestrator.blocks == blocks
        assert client.calls[0]["files"] == ["sales.csv", "notes.md"]
        assert client.calls[0]["context"] == "EUR"
        assert "JSON array" in client.calls[0]["prompt"]
        assert log.read_events()[0]["type"] == "decompose"

    @pytest.mark.asyncio
    async def test_parse_failure_is_fatal(self, files):
        orchestrator = ReportOrchestrator(FakeClient(["no json here"]), files=files)
        with pytest.raises(ReportParseError):
            await orchestrator.decompose()


class TestGeneration:
    """Tests for block generation."""

    @pytest.mark.asyncio
    async def test_generate_all_is_sequential(self, files):
        in_flight = 0
        peak = 0

        async def handler(prompt, cancel):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return f"content for {prompt}"

        client = FakeClient(handler=handler)
        orchestrator = ReportOrchestrator(client, files=files, blocks=parse_block_array(json.dumps(SECTIONS)))

        results = await orchestrator.generate_all()

        assert peak == 1
        assert [c["prompt"] for c in client.calls] == ["Describe revenue", "Describe context"]
        assert [r.outcome for r in results] == [GenerationOutcome.GENERATED] * 2
        assert [b.content for b in orchestrator.blocks] == ["content for Describe revenue", "content for Describe context"]
        assert all(b.status == BlockStatus.GENERATED for b in orchestrator.blocks)

    @pytest.mark.asyncio
    async def test_relevant_files_resolution(self, files):
        blocks = [
            ReportBlock(title="a", prompt="a", relevant_files=["notes.md"]),
            ReportBlock(title="b", prompt="b", relevant_files=["missing.txt"]),
            ReportBlock(title="c", prompt="c", relevant_files=["broken.json"]),
        ]
        client = FakeClient(["1", "2", "3"])
        orchestrator = ReportOrchestrator(client, files=files, blocks=blocks)

        await orchestrator.generate_all()

        assert client.calls[0]["files"] == ["notes.md"]
        assert client.calls[1]["files"] == ["sales.csv", "notes.md"]
        assert client.calls[2]["files"] == ["sales.csv", "notes.md"]

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_queue(self, files, temp_dir):
        client = FakeClient([BackendHTTPError(500, "boom"), "second"])
        log = ReportEventLog(temp_dir)
        orchestrator = ReportOrchestrator(
            client, files=files, blocks=parse_block_array(json.dumps(SECTIONS)), event_log=log,
        )

        results = await orchestrator.generate_all()

        first, second = orchestrator.blocks
        assert [r.outcome for r in results] == [GenerationOutcome.FAILED, GenerationOutcome.GENERATED]
        assert first.status == BlockStatus.FAILED
        assert "HTTP 500" in first.error
        assert second.content == "second"
        assert [e["type"] for e in log.read_events()] == ["block_failed", "block_generated"]

    @pytest.mark.asyncio
    async def test_second_request_cancels_first(self, files):
        async def handler(prompt, cancel):
            if prompt == "slow":
                return await wait_for_cancel(prompt, cancel)
            return "fresh"

        slow = ReportBlock(title="Slow", prompt="slow", content="old text", status=BlockStatus.GENERATED)
        fast = ReportBlock(title="Fast", prompt="fast")
        orchestrator = ReportOrchestrator(FakeClient(handler=handler), files=files, blocks=[slow, fast])

        first = asyncio.create_task(orchestrator.generate_one(slow.id))
        await settle()
        assert slow.status == BlockStatus.GENERATING

        second = await orchestrator.generate_one(fast.id)
        first_result = await asyncio.wait_for(first, timeout=2)

        assert first_result.outcome == GenerationOutcome.CANCELLED
        assert slow.content == "old text"
        assert slow.status == BlockStatus.GENERATED
        assert slow.error is None
        assert second.outcome == GenerationOutcome.GENERATED
        assert fast.content == "fresh"

    @pytest.mark.asyncio
    async def test_cancel_stops_queue_and_reverts(self, files):
        orchestrator = ReportOrchestrator(
            FakeClient(handler=wait_for_cancel), files=files, blocks=parse_block_array(json.dumps(SECTIONS)),
        )

        task = asyncio.create_task(orchestrator.generate_all())
        await settle()
        assert [b.status for b in orchestrator.blocks] == [BlockStatus.GENERATING, BlockStatus.QUEUED]

        orchestrator.cancel()
        results = await asyncio.wait_for(task, timeout=2)

        assert [r.outcome for r in results] == [GenerationOutcome.CANCELLED]
        assert all(b.status == BlockStatus.PENDING for b in orchestrator.blocks)
        assert all(b.error is None for b in orchestrator.blocks)

    @pytest.mark.asyncio
    async def test_deleted_block_result_is_discarded(self, files):
        release = asyncio.Event()

        async def handler(prompt, cancel):
            await release.wait()
            return "late"

        block = ReportBlock(title="t", prompt="p")
        orchestrator = ReportOrchestrator(FakeClient(handler=handler), files=files, blocks=[block])
        task = asyncio.create_task(orchestrator.generate_one(block.id))
        await settle()

        orchestrator.delete_block(block.id)
        release.set()
        await task

        assert orchestrator.blocks == []
        assert block.content == ""

    @pytest.mark.asyncio
    async def test_superseded_request_settles_before_next_query(self, files):
        in_flight = 0
        peak = 0

        async def handler(prompt, cancel):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                if prompt == "slow":
                    await cancel.wait()
                    await asyncio.sleep(0.01)
                    raise InferenceCancelled()
                return "fresh"
            finally:
                in_flight -= 1

        slow = ReportBlock(title="Slow", prompt="slow")
        fast = ReportBlock(title="Fast", prompt="fast")
        orchestrator = ReportOrchestrator(FakeClient(handler=handler), files=files, blocks=[slow, fast])

        first = asyncio.create_task(orchestrator.generate_one(slow.id))
        await settle()
        second = await orchestrator.generate_one(fast.id)

        assert peak == 1
        assert first.done()
        assert (await first).outcome == GenerationOutcome.CANCELLED
        assert second.outcome == GenerationOutcome.GENERATED

    @pytest.mark.asyncio
    async def test_request_superseded_while_waiting_never_sends(self, files):
        async def handler(prompt, cancel):
            if prompt == "slow":
                await cancel.wait()
                await asyncio.sleep(0.01)
                raise InferenceCancelled()
            return "fresh"

        slow, skipped, last = (ReportBlock(title=p, prompt=p) for p in ("slow", "skipped", "last"))
        client = FakeClient(handler=handler)
        orchestrator = ReportOrchestrator(client, files=files, blocks=[slow, skipped, last])

        first = asyncio.create_task(orchestrator.generate_one(slow.id))
        await settle()
        second = asyncio.create_task(orchestrator.generate_one(skipped.id))
        await settle()
        third = await orchestrator.generate_one(last.id)

        assert (await first).outcome == GenerationOutcome.CANCELLED
        assert (await second).outcome == GenerationOutcome.CANCELLED
        assert third.outcome == GenerationOutcome.GENERATED
        assert [c["prompt"] for c in client.calls] == ["slow", "last"]
        assert skipped.status == BlockStatus.PENDING
        assert last.content == "fresh"

    @pytest.mark.asyncio
    async def test_unknown_block(self, files):
        orchestrator = ReportOrchestrator(FakeClient(), files=files)
        with pytest.raises(KeyError):
            await orchestrator.generate_one("block-missing")


class TestRegenerate:
    """Tests for variant regeneration."""

    @pytest.mark.asyncio
    async def test_three_concurrent_variants(self, files, temp_dir):
        in_flight = 0
        peak = 0

        async def handler(prompt, cancel):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return prompt

        block = ReportBlock(title="t", prompt="base", content="current", status=BlockStatus.GENERATED)
        log = ReportEventLog(temp_dir)
        orchestrator = ReportOrchestrator(FakeClient(handler=handler), files=files, blocks=[block], event_log=log)

        variants = await orchestrator.regenerate(block.id, "  custom focus ")

        assert peak == 3
        assert len(variants) == 3
        for variant, (_, instruction) in zip(variants, VARIANT_STYLES):
            assert variant == f"custom focus\n\n{instruction}"
        assert block.content == "current"
        assert block.status == BlockStatus.GENERATED
        assert log.read_events()[-1]["type"] == "variants_generated"

        orchestrator.apply_variant(block.id, variants[1])
        assert block.content == variants[1]

    @pytest.mark.asyncio
    async def test_cancelled_regeneration(self, files):
        block = ReportBlock(title="t", prompt="base", content="current", status=BlockStatus.GENERATED)
        orchestrator = ReportOrchestrator(FakeClient(handler=wait_for_cancel), files=files, blocks=[block])

        task = asyncio.create_task(orchestrator.regenerate(block.id))
        await settle()
        assert block.status == BlockStatus.REGENERATING
        orchestrator.cancel()

        with pytest.raises(InferenceCancelled):
            await asyncio.wait_for(task, timeout=2)
        assert block.status == BlockStatus.GENERATED
        assert block.content == "current"


class TestVerify:
    """Tests for the credibility score."""

    @pytest.mark.asyncio
    async def test_verify(self, files):
        block = ReportBlock(title="Revenue", prompt="p", content="Revenue grew.", status=BlockStatus.GENERATED)
        client = FakeClient(["85 - mostly supported"])
        orchestrator = ReportOrchestrator(client, files=files, blocks=[block])

        assert await orchestrator.verify() == 85
        assert "## 1. Revenue\n\nRevenue grew." in client.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_nothing_to_verify(self, files):
        orchestrator = ReportOrchestrator(FakeClient(), files=files, blocks=[ReportBlock(title="t", prompt="p")])
        with pytest.raises(ReportVerificationError):
            await orchestrator.verify()


class TestStructuralOperations:
    """Tests for add/edit/delete/move."""

    def test_add_block(self):
        orchestrator = ReportOrchestrator(FakeClient())
        block = orchestrator.add_block("Compare regions")
        assert block.title == "Compare regions"
        assert orchestrator.add_block("p", title="Custom").title == "Custom"
        assert len(orchestrator.blocks) == 2

    def test_edit_block(self):
        orchestrator = ReportOrchestrator(FakeClient())
        block = orchestrator.add_block("p")
        orchestrator.edit_block(block.id, title="New", content="Body", relevant_files=("a.csv",))
        assert (block.title, block.content, block.relevant_files) == ("New", "Body", ["a.csv"])
        with pytest.raises(ValueError):
            orchestrator.edit_block(block.id, status="generated")

    def test_edit_single_relevant_file(self):
        orchestrator = ReportOrchestrator(FakeClient())
        block = orchestrator.add_block("p")
        orchestrator.edit_block(block.id, relevant_files="a.csv")
        assert block.relevant_files == ["a.csv"]

    def test_delete_and_move(self):
        orchestrator = ReportOrchestrator(FakeClient())
        a, b, c = (orchestrator.add_block(p) for p in ("a", "b", "c"))
        orchestrator.move_block(c.id, 0)
        assert [x.prompt for x in orchestrator.blocks] == ["c", "a", "b"]
        orchestrator.delete_block(a.id)
        assert [x.prompt for x in orchestrator.blocks] == ["c", "b"]
        with pytest.raises(KeyError):
            orchestrator.delete_block(a.id)
