from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..errors import MalformedMarkSchemeError
from .normalizer import format_mark_scheme, normalize
from .schemas import MarkSchemeDraft, QuestionDraft
from .text import collapse_ws

logger = logging.getLogger(__name__)


MIN_QUESTION_CHARS = 10
MIN_MARK_SCHEME_CHARS = 20

_PAGE_MARKER_RE = re.compile(r"-{2,}\s*Page\s+\d+\s*-{2,}", re.I)
# "Question 3", "Question 10.1:", "Q4:", "Q2)"
_NAMED_MARKER_RE = re.compile(r"^[ \t]*(?:Question[ \t]+(\d+(?:\.\d+)*[a-z]?)[ \t]*[:.)\-–]?|Q(\d+(?:\.\d+)*[a-z]?)[ \t]*[:.)\-–])[ \t]*", re.I | re.M)
# "1." / "2)" / "10.1" at the start of a line
_NUMBER_MARKER_RE = re.compile(r"^[ \t]*(\d+(?:\.\d+)*)[.)]?[ \t]+(?=[A-Z(\"'])", re.M)
_MARKS_RE = re.compile(r"\(\s*(\d+)\s*marks?\s*\)|\[\s*(\d+)\s*(?:marks?)?\s*\]", re.I)
_TOTAL_RE = re.compile(r"Total\s*:?\s*(\d+)\s*marks?", re.I)

# (rule, cues) in priority order; the first rule with a matching cue wins
_TYPE_RULES: List[Tuple[str, Tuple[str, ...]]] = [
	("multiple-choice", ("choose", "select", "circle", "tick")),
	("essay", ("explain", "describe", "discuss", "analyze", "analyse", "evaluate")),
	("short-answer", ("what", "how", "why", "when", "where")),
]

_VISUAL_CUES = ("figure", "diagram", "chart", "graph", "image", "picture")
_MATHS_CUES = ("calculate", "solve", "equation", "formula", "work out")
_BLANK_CUES = ("fill in", "complete", "underline", "circle", "tick")
_DRAWING_CUES = ("draw", "sketch", "label", "mark on")

_SUBJECT_FILENAME_CUES: List[Tuple[str, Tuple[str, ...]]] = [
	("biology", ("biology", "bio")),
	("chemistry", ("chemistry", "chem")),
	("physics", ("physics",)),
	("computer-science", ("computer", "cs")),
	("mathematics", ("math", "maths")),
	("english", ("english", "lang")),
	("history", ("history",)),
	("geography", ("geography", "geo")),
]
_SUBJECT_CONTENT_CUES: List[Tuple[str, Tuple[str, ...]]] = [
	("biology", ("photosynthesis", "cell", "dna")),
	("chemistry", ("molecule", "reaction", "element")),
	("physics", ("force", "energy", "wave")),
	("computer-science", ("algorithm", "programming", "code")),
	("mathematics", ("equation", "calculate", "solve")),
	("english", ("essay", "literature", "poem")),
	("history", ("war", "revolution", "ancient")),
	("geography", ("climate", "population", "ecosystem")),
]


@dataclass
class _Segment:
	number: str
	header: str
	body: str


def preprocess_text(text: str) -> str:
	"""Drop page markers and blank-line noise left by the PDF-to-text step."""
	text = (text or "").replace("\r\n", "\n").replace("\r", "\n")
	text = _PAGE_MARKER_RE.sub("\n", text)
	lines = [line.rstrip() for line in text.split("\n")]
	return "\n".join(line for line in lines if line.strip())


def _has_word(text: str, word: str) -> bool:
	# Whole words plus plain inflections: "cells", "draws", "ticked" but not "ticket"
	return re.search(r"\b" + re.escape(word) + r"(?:s|es|d|ed|ing)?\b", text) is not None


def classify_question_type(text: str) -> str:
	lower = (text or "").lower()
	for kind, cues in _TYPE_RULES:
		if any(_has_word(lower, cue) for cue in cues):
			return kind
	return "text"


def is_written_only(text: str) -> bool:
	"""False for questions that need a figure, a calculation, a blank filled or a drawing."""
	lower = (text or "").lower()
	for cues in (_VISUAL_CUES, _MATHS_CUES, _BLANK_CUES, _DRAWING_CUES):
		if any(_has_word(lower, cue) for cue in cues):
			return False
	return True


def determine_subject(filename: str, content: str) -> str:
	name = (filename or "").lower()
	for subject, cues in _SUBJECT_FILENAME_CUES:
		if any(cue in name for cue in cues):
			return subject
	body = (content or "").lower()
	for subject, cues in _SUBJECT_CONTENT_CUES:
		if any(_has_word(body, cue) for cue in cues):
			return subject
	return "other"


def _segment(text: str, marker_re: re.Pattern) -> List[_Segment]:
	matches = list(marker_re.finditer(text))
	segments: List[_Segment] = []
	for i, m in enumerate(matches):
		end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
		number = next(g for g in m.groups() if g)
		chunk = text[m.end():end]
		header, _, body = chunk.partition("\n")
		segments.append(_Segment(number=number, header=header.strip(), body=body.strip()))
	return segments


def _read_marks(text: str) -> Tuple[str, Optional[int], Optional[str]]:
	"""Strip the last marks annotation from ``text``; return (text, marks, raw field)."""
	found = list(_MARKS_RE.finditer(text))
	if not found:
		return text, None, None
	last = found[-1]
	value = int(next(g for g in last.groups() if g))
	cleaned = text[: last.start()] + text[last.end():]
	return cleaned, value, last.group(0)


def extract_questions(document_text: str, *, written_only: bool = False) -> List[QuestionDraft]:
	"""Split exam-paper text into question drafts."""
	text = preprocess_text(document_text)
	segments = _segment(text, _NAMED_MARKER_RE) or _segment(text, _NUMBER_MARKER_RE)
	drafts: List[QuestionDraft] = []
	for seg in segments:
		content = collapse_ws(f"{seg.header} {seg.body}").lstrip("-–: ")
		content, marks, raw = _read_marks(content)
		content = collapse_ws(content)
		if len(content) < MIN_QUESTION_CHARS:
			continue
		if written_only and not is_written_only(content):
			continue
		drafts.append(
			QuestionDraft(
				question_number=seg.number,
				question_text=content,
				max_marks=marks,
				marks_raw=raw,
				type=classify_question_type(content),
			)
		)
	if not drafts:
		logger.warning("No questions found in %d characters of paper text", len(text))
	return drafts


def extract_from_mark_scheme(mark_scheme_text: str) -> List[MarkSchemeDraft]:
	"""Split a mark-scheme document into questions with normalized mark schemes."""
	text = preprocess_text(mark_scheme_text)
	# Numbered mark points look like question numbers, so prefer explicit markers
	segments = _segment(text, _NAMED_MARKER_RE) or _segment(text, _NUMBER_MARKER_RE)
	drafts: List[MarkSchemeDraft] = []
	for seg in segments:
		header = seg.header.lstrip("-–: ").strip()
		body = seg.body
		if not header and body:
			header, _, body = body.partition("\n")
		header, marks, _ = _read_marks(header)
		question_text = collapse_ws(header).rstrip(" -–:")
		if marks is None:
			total = _TOTAL_RE.search(body)
			if total:
				marks = int(total.group(1))
		if len(question_text) < MIN_QUESTION_CHARS or len(body.strip()) < MIN_MARK_SCHEME_CHARS:
			continue
		try:
			if marks is None:
				# No declared total: let each point carry its own marks
				provisional = normalize(body, 1)
				marks = max(1, len(provisional.points) + len(provisional.additional_points))
			scheme = normalize(body, marks)
		except MalformedMarkSchemeError as exc:
			logger.warning("Skipping question %s: %s", seg.number, exc)
			continue
		drafts.append(
			MarkSchemeDraft(
				question_number=seg.number,
				question_text=question_text,
				max_marks=marks,
				mark_scheme=format_mark_scheme(scheme, marks),
				scheme=scheme,
				type=classify_question_type(question_text),
			)
		)
	if not drafts:
		logger.warning("No questions found in %d characters of mark-scheme text", len(text))
	return drafts
