"""
Text segmenter - splits normalized document text into AI-sized chunks.

Boundaries prefer question-numbering markers; without reliable numbering the
text is cut at paragraph / line / sentence separators. Adjacent chunks share
a short overlap so a question cut at a boundary is still seen whole once.

Everything here is a pure function over strings; chunks are built from spans
of the normalized text so that the chunk bodies concatenate back to it.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

from app.config import MAX_CHUNK_CHARS, CHUNK_OVERLAP_CHARS, MIN_CHUNK_CHARS

Span = Tuple[int, int]

QUESTION_MARKERS = [
    re.compile(r"^[ \t]*\d{1,3}[.．、)）](?!\d)", re.MULTILINE),   # 1. 1． 1、 1)
    re.compile(r"^[ \t]*[（(]\d{1,3}[）)]", re.MULTILINE),          # (1) （1）
    re.compile(r"^[ \t]*[①-⑳]", re.MULTILINE),                      # ① ... ⑳
    re.compile(r"^[ \t]*第\s*\d{1,3}\s*题", re.MULTILINE),          # 第1题
    re.compile(r"^[ \t]*Question\s+\d{1,3}\b", re.MULTILINE | re.IGNORECASE),
]

SEPARATORS = ["\n\n", "\n", "。", ".", ";"]

# A cut must land past this fraction of the budget, otherwise it is a hard cut
SEPARATOR_MIN_FRACTION = 0.6

INCOMPLETE_TAIL_CHARS = 200
_ENDS_WITH_OPTION_LABEL = re.compile(r"\b[A-D][.、:：]?\s*$", re.ASCII | re.IGNORECASE)
_ENDS_WITH_OPEN_PAREN = re.compile(r"[（(]$")
_ENDS_WITH_LIST_SEPARATOR = re.compile(r"[，,、:：]$")
_OPTION_LABEL = re.compile(r"\b[A-D][.、:：]", re.ASCII | re.IGNORECASE)


@dataclass(frozen=True)
class Chunk:
    """A slice of normalized text submitted to the AI as one unit of work."""
    content: str            # text sent to the AI (overlap + body)
    body: str               # the slice of the source text this chunk owns
    offset: int             # start of `body` in the normalized text
    overlap: int = 0        # number of leading chars of `content` borrowed from the previous chunk
    looks_incomplete: bool = False


def normalize_text(text: str) -> str:
    """Normalize raw extracted text: drop CRs, collapse blank lines and inline whitespace."""
    normalized = (text or "").replace("\r", "")
    normalized = re.sub(r"\n+", "\n", normalized)
    normalized = re.sub(r"[ \t]+", " ", normalized)
    return normalized.strip()


# ============== BOUNDARY DETECTION ==============

def find_question_starts(text: str) -> List[int]:
    """Offsets of every line that starts with a question-numbering marker."""
    starts = set()
    for pattern in QUESTION_MARKERS:
        for match in pattern.finditer(text):
            starts.add(match.start())
    return sorted(starts)


def split_by_question_number_spans(text: str) -> List[Span]:
    starts = find_question_starts(text)
    if len(starts) < 2:
        return [(0, len(text))]

    # Keep any preamble before the first marker (exam title, instructions)
    if starts[0] > 0:
        starts.insert(0, 0)

    spans = []
    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(text)
        if end > start:
            spans.append((start, end))
    return spans


def split_by_question_number(text: str) -> List[str]:
    """Split text into blocks at question-numbering markers; `[text]` when fewer than two are found."""
    return [text[s:e] for s, e in split_by_question_number_spans(text)]


def split_by_separator_spans(text: str, max_chars: int, start: int = 0, end: int = None) -> List[Span]:
    end = len(text) if end is None else end
    spans = []
    pos = start
    min_cut = int(max_chars * SEPARATOR_MIN_FRACTION)

    while end - pos > max_chars:
        window = text[pos:pos + max_chars]
        cut = -1
        for sep in SEPARATORS:
            idx = window.rfind(sep)
            if idx > min_cut:
                cut = idx + len(sep)
                break
        if cut == -1:
            cut = max_chars
        spans.append((pos, pos + cut))
        pos += cut

    if pos < end:
        spans.append((pos, end))
    return spans


def split_by_separators(text: str, max_chars: int) -> List[str]:
    """Cut text at the last separator before the budget, hard-cutting only when none is found."""
    return [text[s:e] for s, e in split_by_separator_spans(text, max_chars)]


# ============== CHUNKING ==============

def _candidate_spans(text: str, budget: int) -> List[Span]:
    spans = split_by_question_number_spans(text)
    if len(spans) < 2:
        return split_by_separator_spans(text, budget)

    # A single numbered block can still be larger than the budget
    bounded = []
    for s, e in spans:
        if e - s > budget:
            bounded.extend(split_by_separator_spans(text, budget, s, e))
        else:
            bounded.append((s, e))
    return bounded


def _merge_spans(spans: List[Span], budget: int) -> List[Span]:
    merged = []
    current = None
    for s, e in spans:
        if current is None:
            current = (s, e)
            continue
        if e - current[0] > budget:
            merged.append(current)
            current = (s, e)
        else:
            current = (current[0], e)
    if current is not None:
        merged.append(current)
    return merged


def split_text_into_chunks(
    text: str,
    max_chunk_chars: int = MAX_CHUNK_CHARS,
    overlap_chars: int = CHUNK_OVERLAP_CHARS,
    min_chunk_chars: int = MIN_CHUNK_CHARS,
) -> List[Chunk]:
    """
    Split normalized text into ordered chunks no larger than `max_chunk_chars`.

    Text that already fits is returned as a single chunk equal to the input.
    Otherwise candidate blocks (question markers, else separators) are merged
    greedily, and every chunk after the first is prefixed with the tail of
    the previous one.
    """
    if not text:
        return []
    if len(text) <= max_chunk_chars:
        return [Chunk(content=text, body=text, offset=0,
                      looks_incomplete=looks_like_incomplete_chunk(text))]

    overlap_chars = max(0, int(overlap_chars))
    min_chunk_chars = max(0, int(min_chunk_chars))

    # Leave room for the overlap so an overlapped chunk still fits the budget
    budget = max_chunk_chars - overlap_chars - 1 if max_chunk_chars > 2 * overlap_chars + 1 else max_chunk_chars
    spans = _merge_spans(_candidate_spans(text, budget), budget)

    chunks = []
    for i, (s, e) in enumerate(spans):
        body = text[s:e]
        content = body
        overlap = 0
        if i > 0 and overlap_chars > 0:
            prev_s, prev_e = spans[i - 1]
            head = text[max(prev_s, prev_e - overlap_chars):prev_e]
            combined = f"{head}\n{body}"
            # An adequately sized chunk is not grown past the budget just for overlap
            if not (len(body) >= min_chunk_chars and len(combined) > max_chunk_chars):
                content = combined
                overlap = len(head) + 1
        chunks.append(Chunk(
            content=content,
            body=body,
            offset=s,
            overlap=overlap,
            looks_incomplete=looks_like_incomplete_chunk(content),
        ))
    return chunks


# ============== TRUNCATION HEURISTIC ==============

def looks_like_incomplete_chunk(text: str) -> bool:
    """Heuristic: does this chunk end mid-question (open option list, dangling punctuation)?"""
    t = (text or "").strip()
    if not t:
        return False

    tail = t[-INCOMPLETE_TAIL_CHARS:]

    if _ENDS_WITH_OPTION_LABEL.search(tail):
        return True
    if _ENDS_WITH_OPEN_PAREN.search(tail):
        return True
    if _ENDS_WITH_LIST_SEPARATOR.search(tail):
        return True

    # One option label near the end and no later ones: the option list continues in the next chunk
    return len(_OPTION_LABEL.findall(tail)) == 1
