"""
Question extraction pipeline - turns uploaded exam material into question records.

A job is submitted with `start_import` / `start_text_import`, which return
the job id immediately and run the pipeline as a background task. The task
writes its stages to the import ProgressLog; clients poll or stream it.

Stages: received -> extracting_text | converting_to_images -> chunked_text
(text mode) -> calling_ai -> ai_response_received -> merging_questions ->
saving_questions -> done, with `error` terminal from any point.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
import asyncio
import uuid

from app.config import (
    logger,
    DEFAULT_IMPORT_MODE,
    MAX_CHUNK_CHARS,
    CHUNK_OVERLAP_CHARS,
    MIN_CHUNK_CHARS,
    INCOMPLETE_LOOKAHEAD_CHARS,
    VISION_MAX_ATTEMPTS,
    VISION_RETRY_DELAY_SECONDS,
    PROMPT_TEMPLATE,
)
from app.models.progress import ImportMode, ImportStage, ImportSummary
from app.services.ai_response import parse_questions_response
from app.services.errors import FatalImportError, ImportInputError, UnsupportedModeError
from app.services.file_processing import extract_text_async, is_image_filename, page_images_async
from app.services.llm import AIOracle
from app.services.merge import merge_and_dedupe_questions
from app.services.progress import ProgressLog
from app.services.segmenter import normalize_text, split_text_into_chunks
from app.services.stores import ImportRecordStore, QuestionStore

PageRenderer = Callable[[bytes, str], Awaitable[List[bytes]]]
TextExtractor = Callable[[bytes, str], Awaitable[str]]
RawQuestions = List[Dict[str, Any]]

DEFAULT_EXTRACTION_PROMPT = """You are an expert at turning exam papers into structured question records.

Return ONLY strict JSON of the form {"questions": [...]} with one object per question:
{
  "content": "full question stem",
  "type": "SINGLE_CHOICE | MULTIPLE_CHOICE | TRUE_FALSE | FILL_BLANK | MATCHING | ESSAY",
  "options": [{"label": "A", "content": "..."}],
  "answer": "option letter(s) like \\"A\\" or \\"AB\\", true/false, or the full answer text",
  "explanation": "optional",
  "difficulty": 1,
  "tags": [],
  "knowledgePoint": "optional"
}

Rules:
- Output every question; never merge two questions into one.
- Choice questions must include the options array.
- For fill-in-the-blank questions mark each blank with '___'.
- Matching questions put pairs in "matching": {"matches": {"left item": "right item"}}.
- If there are no questions, return {"questions": []}.
- No markdown, no code fences, no commentary."""

TEXT_CHUNK_INSTRUCTIONS = """Below is exam text extracted from a document{part}.
Extract every question that appears in it. If a question or its answer is broken
across lines, restore it. Return only {{"questions": [...]}}."""

VISION_INSTRUCTIONS = """

The input is a single page image. Ignore any question that is cut off at the top
or bottom edge of the page; only output complete questions."""


class ExtractionService:
    """Drives one import job per document through the AI extraction pipeline."""

    def __init__(
        self,
        oracle: AIOracle,
        question_store: QuestionStore,
        progress: ProgressLog,
        import_records: Optional[ImportRecordStore] = None,
        page_renderer: PageRenderer = page_images_async,
        text_extractor: TextExtractor = extract_text_async,
        default_mode: str = DEFAULT_IMPORT_MODE,
        prompt_template: str = PROMPT_TEMPLATE,
        max_chunk_chars: int = MAX_CHUNK_CHARS,
        overlap_chars: int = CHUNK_OVERLAP_CHARS,
        min_chunk_chars: int = MIN_CHUNK_CHARS,
        lookahead_chars: int = INCOMPLETE_LOOKAHEAD_CHARS,
        vision_max_attempts: int = VISION_MAX_ATTEMPTS,
        vision_retry_delay: float = VISION_RETRY_DELAY_SECONDS,
    ):
        self.oracle = oracle
        self.question_store = question_store
        self.progress = progress
        self.import_records = import_records
        self.page_renderer = page_renderer
        self.text_extractor = text_extractor
        self.default_mode = default_mode
        self.prompt_template = prompt_template
        self.max_chunk_chars = max_chunk_chars
        self.overlap_chars = overlap_chars
        self.min_chunk_chars = min_chunk_chars
        self.lookahead_chars = lookahead_chars
        self.vision_max_attempts = max(1, vision_max_attempts)
        self.vision_retry_delay = vision_retry_delay
        self._tasks: Set[asyncio.Task] = set()

    # ============== SUBMISSION ==============

    def resolve_mode(self, mode: Optional[str], filename: str = "") -> ImportMode:
        """Image uploads always go through vision; `file` (direct upload) is rejected."""
        if is_image_filename(filename):
            return ImportMode.VISION
        requested = (mode or "").strip().lower() or self.default_mode
        if requested in ("file", ImportMode.REJECTED.value):
            return ImportMode.REJECTED
        if requested == ImportMode.VISION.value:
            return ImportMode.VISION
        return ImportMode.TEXT

    def system_prompt(self, custom_prompt: Optional[str] = None) -> str:
        """Custom prompt > configured template > built-in default."""
        for candidate in (custom_prompt, self.prompt_template):
            if candidate and candidate.strip():
                return candidate.strip()
        return DEFAULT_EXTRACTION_PROMPT

    def start_import(
        self,
        document: bytes,
        filename: str = "",
        mode: Optional[str] = None,
        custom_prompt: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> str:
        """Register a job and run it in the background; returns the job id immediately."""
        job_id = self._new_job()
        self._spawn(self.run_import(job_id, document, filename, mode, custom_prompt, owner_id))
        return job_id

    def start_text_import(
        self,
        text: str,
        custom_prompt: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> str:
        job_id = self._new_job()
        self._spawn(self.run_text_import(job_id, text, custom_prompt, owner_id))
        return job_id

    def _new_job(self) -> str:
        job_id = f"import_{uuid.uuid4().hex[:12]}"
        self.progress.create_job(job_id)
        return job_id

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ============== JOB RUNNERS ==============

    async def run_import(
        self,
        job_id: str,
        document: bytes,
        filename: str = "",
        mode: Optional[str] = None,
        custom_prompt: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Optional[ImportSummary]:
        """
        Run a whole import job for an uploaded document.

        Always ends the job's log with exactly one `done` or `error` event.
        Returns the summary on success and None when the job failed.
        """
        self.progress.create_job(job_id)
        resolved = self.resolve_mode(mode, filename)
        is_image = is_image_filename(filename)
        summary = ImportSummary()
        prompt = self.system_prompt(custom_prompt)

        async def pipeline():
            await self._create_record(job_id, filename or f"{job_id}.pdf", len(document or b""), resolved, owner_id)
            self.progress.append(
                job_id, ImportStage.RECEIVED,
                "Image received, starting recognition" if is_image else "Document received, starting import",
                meta={"mode": resolved.value, "file_type": "image" if is_image else "pdf"},
            )

            if resolved == ImportMode.REJECTED:
                raise UnsupportedModeError(
                    "The current AI provider cannot read uploaded files directly. "
                    "Use vision mode (page images, recommended) or text mode instead."
                )
            if not document:
                raise ImportInputError("Uploaded document is empty")

            if resolved == ImportMode.VISION:
                collected = await self._extract_vision(job_id, document, filename, prompt, summary)
            else:
                self.progress.append(job_id, ImportStage.EXTRACTING_TEXT, "Extracting document text")
                text = await self.text_extractor(document, filename)
                collected = await self._extract_text(job_id, text, prompt, summary)

            await self._merge_and_save(job_id, collected, summary, owner_id)

        return await self._run(job_id, pipeline, summary)

    async def run_text_import(
        self,
        job_id: str,
        text: str,
        custom_prompt: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> Optional[ImportSummary]:
        """Import from already-extracted plain text (no document to render)."""
        self.progress.create_job(job_id)
        summary = ImportSummary()
        prompt = self.system_prompt(custom_prompt)

        async def pipeline():
            await self._create_record(job_id, f"{job_id}.txt", len(text or ""), ImportMode.TEXT, owner_id)
            self.progress.append(job_id, ImportStage.RECEIVED, "Text received, starting import",
                                 meta={"mode": ImportMode.TEXT.value, "file_type": "text"})
            collected = await self._extract_text(job_id, text, prompt, summary)
            await self._merge_and_save(job_id, collected, summary, owner_id)

        return await self._run(job_id, pipeline, summary)

    async def _run(self, job_id: str, pipeline, summary: ImportSummary) -> Optional[ImportSummary]:
        try:
            await pipeline()
        except ImportInputError as e:
            logger.warning(f"Import {job_id} rejected: {e}")
            await self._fail(job_id, str(e), summary)
            return None
        except Exception as e:
            # Fatal (persistence, rendering): nothing from this job may survive
            logger.error(f"❌ Import {job_id} failed: {e}", exc_info=not isinstance(e, FatalImportError))
            await self._rollback(job_id, summary)
            await self._fail(job_id, str(e) or "Import failed", summary)
            return None

        await self._update_record(job_id, {
            "status": "completed",
            "success_count": summary.success,
            "failed_count": summary.failed,
            "question_ids": summary.question_ids,
        })
        return summary

    # ============== TEXT MODE ==============

    async def _extract_text(self, job_id: str, text: str, prompt: str, summary: ImportSummary) -> RawQuestions:
        normalized = normalize_text(text)
        if not normalized:
            raise ImportInputError("Document text is empty; scanned documents need vision mode")

        chunks = split_text_into_chunks(
            normalized,
            max_chunk_chars=self.max_chunk_chars,
            overlap_chars=self.overlap_chars,
            min_chunk_chars=self.min_chunk_chars,
        )
        total = len(chunks)
        self.progress.append(
            job_id, ImportStage.CHUNKED_TEXT, f"Text split into {total} chunk(s)",
            meta={
                "total_chunks": total,
                "max_chunk_chars": self.max_chunk_chars,
                "overlap_chars": self.overlap_chars,
                "min_chunk_chars": self.min_chunk_chars,
                "total_text_length": len(normalized),
            },
        )

        collected: RawQuestions = []
        succeeded = 0
        for i, chunk in enumerate(chunks):
            lookahead = self.lookahead_chars if chunk.looks_incomplete and i + 1 < total else 0
            input_chunk = chunk.content
            if lookahead:
                # Chunk ends mid-question: let the AI see the start of the next one
                input_chunk = f"{input_chunk}\n{chunks[i + 1].body[:lookahead]}"

            self.progress.append(
                job_id, ImportStage.CALLING_AI, f"Calling AI for chunk {i + 1}/{total}",
                current=i + 1, total=total,
                meta={
                    "chunk_index": i + 1,
                    "chunk_length": len(chunk.content),
                    "chunk_preview": " ".join(chunk.content[:80].split()),
                    "looks_incomplete": chunk.looks_incomplete,
                    "merged_next_head_chars": lookahead,
                    "input_length": len(input_chunk),
                },
            )

            part = f" (part {i + 1} of {total})" if total > 1 else ""
            user_content = f"{TEXT_CHUNK_INSTRUCTIONS.format(part=part)}\n\n{input_chunk}"
            try:
                raw = await self.oracle.complete(prompt, user_content)
                self.progress.append(job_id, ImportStage.PARSING_AI_RESPONSE,
                                     f"Parsing AI response (chunk {i + 1}/{total})",
                                     current=i + 1, total=total)
                questions = parse_questions_response(raw)
            except Exception as e:
                logger.warning(f"Import {job_id}: chunk {i + 1}/{total} failed: {e}")
                summary.failed += 1
                summary.add_error(i + 1, f"Chunk {i + 1} AI processing failed: {e}")
                continue

            succeeded += 1
            self.progress.append(
                job_id, ImportStage.AI_RESPONSE_RECEIVED,
                f"AI returned {len(questions)} question(s) (chunk {i + 1}/{total})",
                current=i + 1, total=total,
                meta={"chunk_index": i + 1, "question_count": len(questions)},
            )
            collected.extend(questions)

        self._require_any_success(succeeded, total, "chunk")
        return collected

    # ============== VISION MODE ==============

    async def _extract_vision(
        self, job_id: str, document: bytes, filename: str, prompt: str, summary: ImportSummary
    ) -> RawQuestions:
        is_image = is_image_filename(filename)
        self.progress.append(job_id, ImportStage.CONVERTING_TO_IMAGES,
                             "Processing image" if is_image else "Converting pages to images")
        images = await self.page_renderer(document, filename)
        if not images:
            raise ImportInputError("Document has no pages to recognize")

        total = len(images)
        done_message = (f"Split image into {total} part(s)" if is_image
                        else f"Converted {total} page(s) to images")
        self.progress.append(job_id, ImportStage.CONVERTING_TO_IMAGES, done_message,
                             current=total, total=total, meta={"file_type": "image" if is_image else "pdf"})

        vision_prompt = prompt + VISION_INSTRUCTIONS
        collected: RawQuestions = []
        succeeded = 0
        for i, image in enumerate(images):
            page = i + 1
            self.progress.append(job_id, ImportStage.CALLING_AI, f"Recognizing page {page}/{total}",
                                 current=page, total=total, meta={"page": page})

            questions = None
            last_error: Optional[Exception] = None
            for attempt in range(1, self.vision_max_attempts + 1):
                try:
                    raw = await self.oracle.complete_vision(vision_prompt, image)
                    questions = parse_questions_response(raw)
                    break
                except Exception as e:
                    last_error = e
                    logger.warning(f"Import {job_id}: page {page} attempt {attempt}/{self.vision_max_attempts} failed: {e}")
                    if attempt < self.vision_max_attempts:
                        await asyncio.sleep(self.vision_retry_delay)

            if questions is None:
                summary.failed += 1
                summary.add_error(page, f"Page {page} AI recognition failed: {last_error}")
                continue

            succeeded += 1
            self.progress.append(
                job_id, ImportStage.AI_RESPONSE_RECEIVED,
                f"Page {page}/{total}: recognized {len(questions)} question(s)",
                current=page, total=total, meta={"page": page, "question_count": len(questions)},
            )
            collected.extend(questions)

        self._require_any_success(succeeded, total, "page")
        return collected

    @staticmethod
    def _require_any_success(succeeded: int, total: int, unit: str):
        if total and not succeeded:
            raise FatalImportError(f"AI processing failed for all {total} {unit}(s)")

    # ============== MERGE + SAVE ==============

    async def _merge_and_save(self, job_id: str, collected: RawQuestions, summary: ImportSummary,
                              owner_id: Optional[str]):
        self.progress.append(job_id, ImportStage.MERGING_QUESTIONS,
                             f"Merging {len(collected)} extracted question(s)")
        questions, rejected = merge_and_dedupe_questions(collected)
        for row in rejected:
            summary.failed += 1
            summary.add_error(row.row, row.message)

        total = len(questions)
        self.progress.append(job_id, ImportStage.SAVING_QUESTIONS, f"Saving {total} question(s)",
                             current=0, total=total)

        for i, question in enumerate(questions):
            ordered = question.model_copy(update={"import_order": i + 1})
            try:
                question_id = await self.question_store.insert(ordered, owner_id)
            except FatalImportError:
                raise
            except Exception as e:
                logger.warning(f"Import {job_id}: failed to save question {i + 1}: {e}")
                summary.failed += 1
                summary.add_error(i + 1, f"Failed to save question: {e}")
                continue

            summary.success += 1
            summary.question_ids.append(question_id)
            if (i + 1) % 10 == 0 or i + 1 == total:
                self.progress.append(job_id, ImportStage.SAVING_QUESTIONS,
                                     f"Saved {i + 1}/{total} question(s)", current=i + 1, total=total)

        logger.info(f"✅ Import {job_id} done: {summary.success} saved, {summary.failed} failed")
        self.progress.append(
            job_id, ImportStage.DONE,
            f"Import finished: {summary.success} saved, {summary.failed} failed",
            meta={"question_ids": list(summary.question_ids)},
            result=summary.model_dump(),
        )

    # ============== FAILURE HANDLING ==============

    async def _rollback(self, job_id: str, summary: ImportSummary):
        if not summary.question_ids:
            return
        try:
            removed = await self.question_store.delete_many(list(summary.question_ids))
            logger.info(f"Import {job_id}: rolled back {removed} saved question(s)")
        except Exception as e:
            logger.error(f"Import {job_id}: rollback failed: {e}")
        summary.success = 0
        summary.question_ids = []

    async def _fail(self, job_id: str, message: str, summary: ImportSummary):
        self.progress.append(
            job_id, ImportStage.ERROR, message,
            result=summary.model_dump() if (summary.errors or summary.failed) else None,
        )
        await self._update_record(job_id, {"status": "failed", "error_message": message})

    async def _create_record(self, job_id: str, file_name: str, file_size: int, mode: ImportMode,
                             owner_id: Optional[str]):
        if self.import_records is None:
            return
        await self.import_records.create({
            "job_id": job_id,
            "file_name": file_name,
            "file_size": file_size,
            "mode": mode.value,
            "owner_id": owner_id,
            "status": "processing",
        })

    async def _update_record(self, job_id: str, fields: Dict[str, Any]):
        if self.import_records is None:
            return
        await self.import_records.update(job_id, fields)
