"""
Tests for the import pipeline orchestration (text, vision and rejected modes).

Run with: pytest tests/test_extraction.py -v
"""
import asyncio

from app.models.progress import ImportMode
from app.services.errors import OracleError
from app.services.extraction import DEFAULT_EXTRACTION_PROMPT, ExtractionService
from app.services.progress import ProgressLog
from app.services.segmenter import split_text_into_chunks
from conftest import FakeOracle, InMemoryImportRecordStore, InMemoryQuestionStore, questions_reply

SMALL_CHUNKS = dict(max_chunk_chars=300, overlap_chars=30, min_chunk_chars=100, lookahead_chars=60)

# Three chunks under SMALL_CHUNKS; the first ends on a dangling option label
THREE_CHUNK_TEXT = "\n".join([
    "1. " + "alpha " * 20 + "end?",
    "2. Which is true?",
    "A.",
    "3. " + "beta " * 25 + "?",
    "4. " + "gamma " * 20 + "?",
    "5. " + "delta " * 20 + "?",
])


async def fake_pages(document: bytes, filename: str = ""):
    return [b"page-1", b"page-2"]


async def fake_text(document: bytes, filename: str = ""):
    return document.decode("utf-8")


def make_service(oracle, store=None, records=None, log=None, **overrides):
    options = dict(page_renderer=fake_pages, text_extractor=fake_text, vision_retry_delay=0, prompt_template="")
    options.update(overrides)
    return ExtractionService(
        oracle=oracle,
        question_store=store if store is not None else InMemoryQuestionStore(),
        progress=log if log is not None else ProgressLog("import"),
        import_records=records,
        **options,
    )


def stages(log, job_id):
    return [e.stage for e in log.read_since(job_id)]


def terminal_events(log, job_id):
    return [e for e in log.read_since(job_id) if e.is_terminal]


class TestModeResolution:
    def test_image_filename_forces_vision(self):
        service = make_service(FakeOracle())
        assert service.resolve_mode("text", "scan.PNG") == ImportMode.VISION

    def test_explicit_and_default_modes(self):
        service = make_service(FakeOracle(), default_mode="text")
        assert service.resolve_mode("vision", "exam.pdf") == ImportMode.VISION
        assert service.resolve_mode("file", "exam.pdf") == ImportMode.REJECTED
        assert service.resolve_mode(None, "exam.pdf") == ImportMode.TEXT

    def test_prompt_priority(self):
        service = make_service(FakeOracle(), prompt_template="configured prompt")
        assert service.system_prompt("custom prompt") == "custom prompt"
        assert service.system_prompt("  ") == "configured prompt"
        assert make_service(FakeOracle()).system_prompt(None) == DEFAULT_EXTRACTION_PROMPT


class TestTextMode:
    def test_incomplete_chunk_gets_lookahead(self):
        chunks = split_text_into_chunks(THREE_CHUNK_TEXT, max_chunk_chars=300, overlap_chars=30, min_chunk_chars=100)
        assert len(chunks) == 3
        assert chunks[0].looks_incomplete
        assert not chunks[1].looks_incomplete

        oracle = FakeOracle(replies=[
            questions_reply("Q1", "Q2"),
            questions_reply("Q2", "Q3", "Q4"),
            questions_reply("Q5"),
        ])
        log = ProgressLog("import")
        service = make_service(oracle, log=log, **SMALL_CHUNKS)
        summary = asyncio.run(service.run_text_import("job1", THREE_CHUNK_TEXT))

        assert oracle.calls[0][1].endswith(chunks[0].content + "\n" + chunks[1].body[:60])
        assert oracle.calls[1][1].endswith(chunks[1].content)

        calls = [e for e in log.read_since("job1") if e.stage == "calling_ai"]
        assert calls[0].meta["merged_next_head_chars"] == 60
        assert calls[0].meta["input_length"] == len(chunks[0].content) + 1 + 60
        assert calls[1].meta["merged_next_head_chars"] == 0

        # Q2 came back twice through the overlap and is stored once
        assert summary.success == 5
        assert summary.failed == 0

    def test_stage_order_and_single_terminal_event(self):
        log = ProgressLog("import")
        service = make_service(FakeOracle(replies=[questions_reply("Q1")]), log=log)
        asyncio.run(service.run_import("job1", b"1. What is 1+1?", filename="exam.pdf", mode="text"))

        seen = stages(log, "job1")
        for earlier, later in [("received", "extracting_text"), ("extracting_text", "chunked_text"),
                               ("chunked_text", "calling_ai"), ("calling_ai", "ai_response_received"),
                               ("ai_response_received", "merging_questions"),
                               ("merging_questions", "saving_questions")]:
            assert seen.index(earlier) < seen.index(later)
        assert seen[-1] == "done"
        assert len(terminal_events(log, "job1")) == 1

    def test_done_event_carries_summary_and_ids(self):
        log = ProgressLog("import")
        store = InMemoryQuestionStore()
        service = make_service(FakeOracle(replies=[questions_reply("Q1", "Q2")]), store=store, log=log)
        asyncio.run(service.run_text_import("job1", "1. Q1\n2. Q2"))

        done = log.last_event("job1")
        assert done.stage == "done"
        assert done.result == {"success": 2, "failed": 0, "errors": [], "question_ids": ["q_1", "q_2"]}
        assert done.meta["question_ids"] == ["q_1", "q_2"]
        assert [q.import_order for q in store.questions.values()] == [1, 2]

    def test_failed_chunk_is_partial_failure(self):
        oracle = FakeOracle(replies=[questions_reply("Q1"), OracleError("timeout"), questions_reply("Q5")])
        log = ProgressLog("import")
        summary = asyncio.run(make_service(oracle, log=log, **SMALL_CHUNKS).run_text_import("job1", THREE_CHUNK_TEXT))

        assert summary.success == 2
        assert summary.failed == 1
        assert summary.errors[0].row == 2
        assert "timeout" in summary.errors[0].message
        assert log.last_event("job1").stage == "done"

    def test_unparseable_reply_counts_as_failed_unit(self):
        oracle = FakeOracle(replies=[questions_reply("Q1"), "Sorry, I can't help with that.", questions_reply("Q5")])
        summary = asyncio.run(make_service(oracle, **SMALL_CHUNKS).run_text_import("job1", THREE_CHUNK_TEXT))
        assert summary.success == 2
        assert summary.failed == 1

    def test_every_chunk_failing_is_an_error(self):
        oracle = FakeOracle(replies=[OracleError("down")])
        log = ProgressLog("import")
        summary = asyncio.run(make_service(oracle, log=log).run_text_import("job1", "1. Q1"))

        assert summary is None
        last = log.last_event("job1")
        assert last.stage == "error"
        assert last.result["failed"] == 1

    def test_empty_text_fails_fast(self):
        oracle = FakeOracle()
        log = ProgressLog("import")
        records = InMemoryImportRecordStore()
        asyncio.run(make_service(oracle, log=log, records=records).run_text_import("job1", "  \n "))

        assert log.last_event("job1").stage == "error"
        assert oracle.calls == []
        assert records.records["job1"]["status"] == "failed"


class TestVisionMode:
    def test_failed_page_after_retries(self):
        oracle = FakeOracle(vision_replies=[
            questions_reply("A", "B", "C"),
            OracleError("503"),
            OracleError("503"),
        ])
        log = ProgressLog("import")
        summary = asyncio.run(make_service(oracle, log=log).run_import("job1", b"%PDF-", "exam.pdf", mode="vision"))

        assert len(oracle.vision_calls) == 3
        assert summary.success == 3
        assert summary.failed == 1
        assert summary.errors[0].row == 2
        assert log.last_event("job1").result["success"] == 3

    def test_retry_recovers(self):
        oracle = FakeOracle(vision_replies=[OracleError("503"), questions_reply("A"), questions_reply("B")])
        summary = asyncio.run(make_service(oracle).run_import("job1", b"%PDF-", "exam.pdf", mode="vision"))
        assert summary.success == 2
        assert summary.failed == 0

    def test_blank_page_is_not_an_error(self):
        oracle = FakeOracle(vision_replies=["This is a blank page.", questions_reply("A")])
        summary = asyncio.run(make_service(oracle).run_import("job1", b"%PDF-", "exam.pdf", mode="vision"))
        assert summary.success == 1
        assert summary.failed == 0

    def test_image_upload_is_a_single_page(self):
        async def single_page(document, filename=""):
            return [document]

        oracle = FakeOracle(vision_replies=[questions_reply("A")])
        service = make_service(oracle, page_renderer=single_page)
        summary = asyncio.run(service.run_import("job1", b"\x89PNG...", "photo.png", mode="text"))

        assert summary.success == 1
        assert oracle.vision_calls[0][1] == b"\x89PNG..."
        assert oracle.calls == []

    def test_sliced_image_reports_parts(self):
        async def three_slices(document, filename=""):
            return [b"top", b"middle", b"bottom"]

        oracle = FakeOracle(vision_replies=[questions_reply("A"), questions_reply("B"), questions_reply("C")])
        log = ProgressLog("import")
        service = make_service(oracle, log=log, page_renderer=three_slices)
        summary = asyncio.run(service.run_import("job1", b"\x89PNG...", "long-scan.png"))

        assert summary.success == 3
        messages = [e.message for e in log.read_since("job1") if e.stage == "converting_to_images"]
        assert messages == ["Processing image", "Split image into 3 part(s)"]
        assert [call[1] for call in oracle.vision_calls] == [b"top", b"middle", b"bottom"]


class TestRejectedMode:
    def test_file_mode_fails_fast(self):
        oracle = FakeOracle()
        log = ProgressLog("import")
        summary = asyncio.run(make_service(oracle, log=log).run_import("job1", b"%PDF-", "exam.pdf", mode="file"))

        assert summary is None
        assert stages(log, "job1") == ["received", "error"]
        assert "vision" in log.last_event("job1").message
        assert oracle.calls == [] and oracle.vision_calls == []


class TestFatalErrors:
    def test_persistence_failure_rolls_back(self):
        store = InMemoryQuestionStore(fail_on_insert=3)
        log = ProgressLog("import")
        oracle = FakeOracle(replies=[questions_reply("Q1", "Q2", "Q3", "Q4")])
        records = InMemoryImportRecordStore()
        summary = asyncio.run(make_service(oracle, store=store, log=log, records=records)
                              .run_text_import("job1", "1. Q1"))

        assert summary is None
        assert store.questions == {}
        assert "done" not in stages(log, "job1")
        assert log.last_event("job1").stage == "error"
        assert records.records["job1"]["status"] == "failed"

    def test_single_bad_insert_is_recorded(self):
        store = InMemoryQuestionStore(fail_on_insert=2, fatal=False)
        oracle = FakeOracle(replies=[questions_reply("Q1", "Q2", "Q3")])
        summary = asyncio.run(make_service(oracle, store=store).run_text_import("job1", "1. Q1"))

        assert summary.success == 2
        assert summary.failed == 1
        assert summary.errors[0].row == 2


class TestBackgroundJobs:
    def test_start_import_returns_immediately_and_finishes(self):
        log = ProgressLog("import")
        records = InMemoryImportRecordStore()
        service = make_service(FakeOracle(replies=[questions_reply("Q1")]), log=log, records=records)

        async def scenario():
            job_id = service.start_text_import("1. Q1")
            assert log.has_job(job_id)
            for _ in range(200):
                last = log.last_event(job_id)
                if last is not None and last.is_terminal:
                    return job_id
                await asyncio.sleep(0.01)
            raise AssertionError("import did not finish")

        job_id = asyncio.run(scenario())
        assert log.last_event(job_id).stage == "done"
        assert records.records[job_id]["status"] == "completed"
        assert records.records[job_id]["question_ids"] == ["q_1"]
