from __future__ import annotations
import logging
import warnings
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..errors import SpanNotFoundWarning
from .schemas import Highlight, RawHighlight
from .text import collapse_ws, has_words, normalized_find, trim_span

logger = logging.getLogger(__name__)


# Which verdict keeps a range when two different verdicts claim exactly the same text
_PRIORITY = {"correct": 3, "incorrect": 2, "partial": 1}


def _locate(raw: RawHighlight, answer: str, cursors: Dict[str, int]) -> Optional[Tuple[int, int]]:
	needle = raw.text
	if not needle or not needle.strip():
		return None
	if raw.start is not None and answer[raw.start:raw.start + len(needle)] == needle:
		return raw.start, raw.start + len(needle)
	# Repeats of the same text map onto successive occurrences
	cursor = cursors.get(needle, 0)
	pos = answer.find(needle, cursor)
	if pos == -1 and cursor:
		pos = answer.find(needle)
	if pos != -1:
		cursors[needle] = pos + len(needle)
		return pos, pos + len(needle)
	key = "\0" + collapse_ws(needle).lower()
	cursor = cursors.get(key, 0)
	found = normalized_find(answer, needle, cursor)
	if found is None and cursor:
		found = normalized_find(answer, needle)
	if found is not None:
		cursors[key] = found[1]
	return found


def _make(answer: str, start: int, end: int, classification: str, rationale: str, ordinal: Optional[int]) -> Optional[Highlight]:
	start, end = trim_span(answer, start, end)
	if start >= end or not has_words(answer[start:end]):
		return None
	return Highlight(
		span=answer[start:end],
		classification=classification,
		rationale=rationale,
		start=start,
		end=end,
		ordinal=ordinal,
	)


def _join_rationales(a: str, b: str) -> str:
	if not a or a == b:
		return b
	if not b or b in a.split(" / "):
		return a
	return f"{a} / {b}"


def _resolve(a: Highlight, b: Highlight, answer: str) -> List[Highlight]:
	"""Replace two overlapping highlights by non-overlapping ones."""
	if a.classification == b.classification:
		start, end = min(a.start, b.start), max(a.end, b.end)
		merged = Highlight(
			span=answer[start:end],
			classification=a.classification,
			rationale=_join_rationales(a.rationale, b.rationale),
			start=start,
			end=end,
			ordinal=a.ordinal if a.ordinal is not None else b.ordinal,
		)
		return [merged]
	if (a.start, a.end) == (b.start, b.end):
		return [max(a, b, key=lambda h: _PRIORITY[h.classification])]
	len_a, len_b = a.end - a.start, b.end - b.start
	if len_a != len_b:
		narrow, broad = (a, b) if len_a < len_b else (b, a)
	else:
		narrow, broad = (a, b) if _PRIORITY[a.classification] >= _PRIORITY[b.classification] else (b, a)
	out = [narrow]
	# The broader span keeps whatever lies outside the narrower one
	for start, end in ((broad.start, narrow.start), (narrow.end, broad.end)):
		if end <= start:
			continue
		piece = _make(answer, start, end, broad.classification, broad.rationale, broad.ordinal)
		if piece is not None:
			out.append(piece)
	return out


def _first_overlap(items: List[Highlight]) -> Optional[Tuple[int, int]]:
	for i in range(len(items)):
		for j in range(i + 1, len(items)):
			if items[j].start >= items[i].end:
				break
			return i, j
	return None


def reconcile(raw_highlights: Iterable[Union[RawHighlight, Highlight, dict]], answer_text: str) -> List[Highlight]:
	"""Anchor proposed highlights in ``answer_text`` and make them disjoint.

	Every returned span is ``answer_text[start:end]`` exactly. Highlights that
	cannot be found are dropped with a :class:`SpanNotFoundWarning`.
	"""
	answer = answer_text or ""
	cursors: Dict[str, int] = {}
	items: List[Highlight] = []
	for raw in raw_highlights:
		if isinstance(raw, Highlight):
			raw = RawHighlight(text=raw.span, classification=raw.classification, rationale=raw.rationale, ordinal=raw.ordinal, start=raw.start)
		elif isinstance(raw, dict):
			hint = raw.get("start")
			if not isinstance(hint, int) or hint < 0:
				# An unusable offset hint falls back to a text search
				raw = {k: v for k, v in raw.items() if k != "start"}
			raw = RawHighlight.model_validate(raw)
		found = _locate(raw, answer, cursors)
		if found is None:
			message = f"Highlight text not found in answer: {raw.text[:80]!r}"
			warnings.warn(message, SpanNotFoundWarning, stacklevel=2)
			logger.warning(message)
			continue
		item = _make(answer, found[0], found[1], raw.classification, raw.rationale, raw.ordinal)
		if item is not None:
			items.append(item)

	while True:
		items.sort(key=lambda h: (h.start, h.end))
		pair = _first_overlap(items)
		if pair is None:
			break
		i, j = pair
		a, b = items[i], items[j]
		items = [h for k, h in enumerate(items) if k not in (i, j)] + _resolve(a, b, answer)
	return items
