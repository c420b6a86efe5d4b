"""Judges decide, point by point, what an answer earns.

:class:`RuleJudge` does it deterministically by phrase matching against each
mark-scheme point. :class:`GeminiJudge` asks the model and validates what it
says against a strict schema. Neither computes the score; the engine derives
it from the verdicts.
"""
from __future__ import annotations
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import MarkingEngineError
from .prompts import MARKING_SYSTEM_PROMPT, build_marking_prompt
from .schemas import (
	Judgment,
	MarkSchemePoint,
	PointVerdict,
	Question,
	RawHighlight,
	canonical_classification,
)
from .text import (
	CONNECTORS,
	Token,
	canonical,
	content_tokens,
	is_negation,
	is_stopword,
	normalized_find,
	number_value,
	sentence_ranges,
	tokenize,
	trim_span,
)

logger = logging.getLogger(__name__)


class Judge:
	name = "base"

	async def judge(self, question: Question, answer: str) -> Judgment:
		raise NotImplementedError


# ---------------------------------------------------------------------------
# Rule-based judge
# ---------------------------------------------------------------------------

_ALT_SPLIT_RE = re.compile(r"\s+OR\s+|;")
_PHRASE_OR_RE = re.compile(r"\s+or\s+", re.I)
_OPTIONAL_RE = re.compile(r"\([^)]*\)")
_WORD_OR_SLASH_RE = re.compile(r"[A-Za-z0-9]+(?:['’][A-Za-z]+)?|/")
_CLAUSE_BREAK_CHARS = "(),;:[]"

# Share of a point's words that must be present before near-misses are flagged
PARTIAL_COVERAGE = 0.5


def _key(word: str) -> str:
	value = number_value(word)
	if value is not None:
		return f"#{value}"
	return canonical(word)


def _keys_match(a: str, b: str) -> bool:
	if a == b:
		return True
	if a.startswith("#") or b.startswith("#"):
		return False
	# "absorb" / "absorption", "photosynthes" / "photosynthetic"
	return min(len(a), len(b)) >= 6 and (a.startswith(b) or b.startswith(a))


@dataclass
class _Alternative:
	text: str
	slots: List[Set[str]]
	words: List[str]
	negated: bool = False
	numbers: Set[int] = field(default_factory=set)


def _alternative_texts(point_text: str) -> List[str]:
	"""Split a point at "OR" and ";", and at a lower-case "or" between whole phrases.

	An "or" next to a single word ("glucose or starch is made") is left in
	place and read as a word alternative, like a slash.
	"""
	parts: List[str] = []
	for part in _ALT_SPLIT_RE.split(point_text):
		pieces = _PHRASE_OR_RE.split(part)
		if len(pieces) > 1 and all(len(content_tokens(_OPTIONAL_RE.sub(" ", p))) >= 2 for p in pieces):
			parts.extend(pieces)
		else:
			parts.append(part)
	return parts


def _parse_alternatives(point_text: str) -> List[_Alternative]:
	alternatives: List[_Alternative] = []
	for part in _alternative_texts(point_text):
		part = part.strip()
		if not part:
			continue
		required = _OPTIONAL_RE.sub(" ", part)
		slots: List[Set[str]] = []
		words: List[str] = []
		negated = False
		numbers: Set[int] = set()
		join_next = False
		for word in _WORD_OR_SLASH_RE.findall(required):
			if word == "/" or word.lower() == "or":
				join_next = bool(slots)
				continue
			if is_negation(word):
				negated = True
				join_next = False
				continue
			value = number_value(word)
			if value is not None:
				numbers.add(value)
			elif is_stopword(word):
				join_next = False
				continue
			if join_next:
				slots[-1].add(_key(word))
				words[-1] = f"{words[-1]}/{word}"
			else:
				slots.append({_key(word)})
				words.append(word)
			join_next = False
		if slots:
			alternatives.append(_Alternative(text=part, slots=slots, words=words, negated=negated, numbers=numbers))
	return alternatives


def _occurrences(answer: str, phrase: str) -> List[Tuple[int, int]]:
	found: List[Tuple[int, int]] = []
	pos = 0
	while True:
		hit = normalized_find(answer, phrase, pos)
		if hit is None:
			return found
		found.append(hit)
		pos = hit[1]


def _masked(token: Token, ranges: Iterable[Tuple[int, int]]) -> bool:
	return any(s <= token.start < e for s, e in ranges)


def _clause_ranges(text: str, start: int, end: int) -> List[Tuple[int, int]]:
	"""Split ``text[start:end]`` at brackets, commas and connector words."""
	cuts: List[Tuple[int, int]] = []
	for i in range(start, end):
		if text[i] in _CLAUSE_BREAK_CHARS:
			cuts.append((i, i + 1))
	for tok in tokenize(text[start:end], start):
		if tok.lower in CONNECTORS:
			cuts.append((tok.start, tok.end))
	cuts.sort()
	out: List[Tuple[int, int]] = []
	pos = start
	for s, e in cuts:
		if s > pos:
			out.append((pos, s))
		pos = max(pos, e)
	if pos < end:
		out.append((pos, end))
	trimmed = [trim_span(text, s, e) for s, e in out]
	return [(s, e) for s, e in trimmed if s < e and tokenize(text[s:e])]


@dataclass
class _Window:
	start: int
	end: int
	matched: int


class RuleJudge(Judge):
	"""Deterministic phrase matcher.

	A point is credited when, inside one sentence, the answer has every
	required word of one of the point's alternatives (stems, synonyms and
	slash alternatives allowed) with no negation or number that contradicts
	it. Exclusion phrases and ignored phrases are masked out before matching.
	"""

	name = "rules"

	async def judge(self, question: Question, answer: str) -> Judgment:
		return self.evaluate(question, answer)

	def evaluate(self, question: Question, answer: str) -> Judgment:
		verdicts: List[PointVerdict] = []
		highlights: List[RawHighlight] = []
		for point in question.mark_scheme.points:
			verdict, point_highlights = self._judge_point(point, answer)
			verdicts.append(verdict)
			highlights.extend(point_highlights)
		return Judgment(verdicts=verdicts, highlights=highlights)

	# -- matching ---------------------------------------------------------

	def _best_window(self, alt: _Alternative, tokens: List[Token]) -> Optional[_Window]:
		"""Smallest run of tokens covering the most slots of ``alt``."""
		hits: List[Set[int]] = []
		for tok in tokens:
			key = _key(tok.text)
			hits.append({i for i, slot in enumerate(alt.slots) if any(_keys_match(key, k) for k in slot)})
		best: Optional[_Window] = None
		for i in range(len(tokens)):
			if not hits[i]:
				continue
			covered: Set[int] = set()
			for j in range(i, len(tokens)):
				covered |= hits[j]
				count = len(covered)
				if best is None or count > best.matched or (
					count == best.matched and tokens[j].end - tokens[i].start < best.end - best.start
				):
					best = _Window(tokens[i].start, tokens[j].end, count)
				if count == len(alt.slots):
					break
		return best

	def _hits(self, alt: _Alternative, token: Token) -> bool:
		key = _key(token.text)
		return any(_keys_match(key, k) for slot in alt.slots for k in slot)

	def _contradicts(
		self,
		alt: _Alternative,
		window_tokens: List[Token],
		clauses: Optional[List[Tuple[int, int]]] = None,
	) -> bool:
		negations = [t for t in window_tokens if is_negation(t.text)]
		if clauses is not None:
			# A negation only counts inside a clause that carries the point's words
			kept = []
			for neg in negations:
				clause = next(((cs, ce) for cs, ce in clauses if cs <= neg.start < ce), None)
				if clause is None or any(clause[0] <= t.start < clause[1] and self._hits(alt, t) for t in window_tokens):
					kept.append(neg)
			negations = kept
		negated = bool(negations)
		if negated != alt.negated:
			return True
		if alt.numbers:
			seen = {number_value(t.text) for t in window_tokens} - {None}
			if seen and not (seen & alt.numbers):
				return True
		return False

	def _sentence_tokens(self, answer: str, sentence: Tuple[int, int], mask: List[Tuple[int, int]]) -> List[Token]:
		s, e = sentence
		return [t for t in tokenize(answer[s:e], s) if not _masked(t, mask)]

	def _full_match(self, alt: _Alternative, answer: str, sentence: Tuple[int, int], mask: List[Tuple[int, int]]) -> Optional[_Window]:
		tokens = self._sentence_tokens(answer, sentence, mask)
		content = [t for t in tokens if not is_stopword(t.text) or number_value(t.text) is not None]
		window = self._best_window(alt, content)
		if window is None or window.matched < len(alt.slots):
			return None
		inside = [t for t in tokens if window.start <= t.start < window.end]
		previous = [t for t in tokens if t.end <= window.start][-1:]
		if previous and any(c in _CLAUSE_BREAK_CHARS for c in answer[previous[0].end:window.start]):
			previous = []
		if self._contradicts(alt, previous + inside, _clause_ranges(answer, *sentence)):
			return None
		return window

	def _extend_to_clauses(self, answer: str, sentence: Tuple[int, int], start: int, end: int) -> Tuple[int, int]:
		for cs, ce in _clause_ranges(answer, *sentence):
			if cs <= start < ce:
				start = min(start, cs)
			if cs < end <= ce:
				end = max(end, ce)
		return start, end

	def _clause_findings(
		self,
		alt: _Alternative,
		answer: str,
		sentence: Tuple[int, int],
		mask: List[Tuple[int, int]],
	) -> List[Tuple[str, int, int]]:
		"""Near-miss analysis of one sentence: (classification, start, end) per clause."""
		tokens = self._sentence_tokens(answer, sentence, mask)
		window = self._best_window(alt, [t for t in tokens if not is_stopword(t.text) or number_value(t.text) is not None])
		if window is None or len(alt.slots) < 2 or window.matched / len(alt.slots) < PARTIAL_COVERAGE:
			return []
		needed = max(1, (len(alt.slots) + 1) // 2)
		findings: List[Tuple[str, int, int]] = []
		for cs, ce in _clause_ranges(answer, *sentence):
			clause_tokens = [t for t in tokens if cs <= t.start < ce]
			clause_window = self._best_window(alt, [t for t in clause_tokens if not is_stopword(t.text) or number_value(t.text) is not None])
			if clause_window is None or clause_window.matched == 0:
				continue
			if clause_window.matched >= needed and self._contradicts(alt, clause_tokens):
				findings.append(("incorrect", cs, ce))
			elif not any(is_negation(t.text) for t in clause_tokens):
				findings.append(("partial", cs, ce))
		return findings

	def _judge_point(self, point: MarkSchemePoint, answer: str) -> Tuple[PointVerdict, List[RawHighlight]]:
		n = point.ordinal
		alternatives = _parse_alternatives(point.text)
		excluded = [(phrase, occ) for phrase in point.exclusions for occ in _occurrences(answer, phrase)]
		ignored = [(phrase, occ) for phrase in point.ignored_phrases for occ in _occurrences(answer, phrase)]
		ignore_mask = [occ for _, occ in ignored]
		full_mask = ignore_mask + [occ for _, occ in excluded]
		sentences = sentence_ranges(answer)

		highlights: List[RawHighlight] = []
		credited: Optional[Tuple[int, int]] = None
		for alt in alternatives:
			for sentence in sentences:
				window = self._full_match(alt, answer, sentence, full_mask)
				if window is not None:
					credited = self._extend_to_clauses(answer, sentence, window.start, window.end)
					break
			if credited:
				break

		status = "correct" if credited else "missing"
		evidence = ""
		if credited:
			s, e = credited
			evidence = answer[s:e]
			highlights.append(RawHighlight(text=evidence, classification="correct", rationale=f"Matches point {n}: {point.text}", ordinal=n, start=s))

		# Exact disqualified phrasings
		for phrase, (s, e) in excluded:
			if credited and credited[0] <= s < credited[1]:
				continue
			highlights.append(
				RawHighlight(text=answer[s:e], classification="incorrect", rationale=f'"{phrase}" is not accepted for point {n}', ordinal=n, start=s)
			)
			if status != "correct":
				status = "incorrect"
				evidence = evidence or answer[s:e]

		seen: Set[Tuple[int, int]] = set()
		for alt in alternatives:
			for sentence in sentences:
				for classification, s, e in self._clause_findings(alt, answer, sentence, full_mask):
					if (s, e) in seen or (credited and s < credited[1] and credited[0] < e):
						continue
					if classification == "partial" and status == "correct":
						continue
					seen.add((s, e))
					if classification == "incorrect":
						rationale = f"Contradicts point {n}: {point.text}"
						if status != "correct":
							status = "incorrect"
					else:
						missing = self._missing_words(alt, answer[s:e])
						rationale = f"Close to point {n}, but say it precisely: {point.text}"
						if missing:
							rationale += f" (missing: {', '.join(missing)})"
						if status == "missing":
							status = "partial"
					evidence = evidence or answer[s:e]
					highlights.append(RawHighlight(text=answer[s:e], classification=classification, rationale=rationale, ordinal=n, start=s))

		for phrase, (s, e) in ignored:
			if credited and s < credited[1] and credited[0] < e:
				continue
			highlights.append(
				RawHighlight(text=answer[s:e], classification="partial", rationale=f'"{phrase}" does not earn credit', ordinal=n, start=s)
			)
		return PointVerdict(ordinal=n, status=status, evidence=evidence), highlights

	def _missing_words(self, alt: _Alternative, text: str) -> List[str]:
		keys = [_key(t.text) for t in tokenize(text)]
		return [
			alt.words[i]
			for i, slot in enumerate(alt.slots)
			if not any(_keys_match(key, k) for key in keys for k in slot)
		]


# ---------------------------------------------------------------------------
# Model-backed judge
# ---------------------------------------------------------------------------

def _extract_json_object(text: str) -> Dict[str, Any]:
	try:
		return json.loads(text)
	except ValueError:
		pass
	code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
	if code_block:
		try:
			return json.loads(code_block.group(1))
		except ValueError:
			pass
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last > first:
		try:
			return json.loads(text[first : last + 1])
		except ValueError:
			pass
	raise MarkingEngineError("Judge did not return valid JSON")


class _ModelPoint(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	point: int
	status: str
	evidence: str = ""

	@field_validator("status", mode="before")
	@classmethod
	def _status(cls, value: Any) -> Any:
		value = canonical_classification(value)
		if value not in ("correct", "partial", "incorrect", "missing"):
			raise ValueError(f"unknown point status {value!r}")
		return value


class _ModelHighlight(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	text: str
	classification: str
	rationale: str = ""
	point: Optional[int] = None

	@field_validator("classification", mode="before")
	@classmethod
	def _classification(cls, value: Any) -> Any:
		value = canonical_classification(value)
		if value not in ("correct", "partial", "incorrect"):
			raise ValueError(f"unknown highlight classification {value!r}")
		return value


class _ModelResponse(BaseModel):
	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	points: List[_ModelPoint]
	highlights: List[_ModelHighlight]
	feedback: str
	strengths: List[str] = Field(default_factory=list)
	improvements: List[str] = Field(default_factory=list)
	marking_notes: Optional[str] = Field(default=None, alias="markingNotes")
	score: Optional[float] = None


def _normalize_model_payload(data: Any) -> Any:
	"""Map the older highlighter field names (type, tooltip) onto the current ones."""
	if not isinstance(data, dict):
		return data
	highlights = data.get("highlights")
	if isinstance(highlights, list):
		fixed = []
		for item in highlights:
			if isinstance(item, dict):
				item = dict(item)
				if "classification" not in item and "type" in item:
					item["classification"] = item.pop("type")
				if "rationale" not in item and "tooltip" in item:
					item["rationale"] = item.pop("tooltip")
			fixed.append(item)
		data = {**data, "highlights": fixed}
	return data


class GeminiJudge(Judge):
	name = "gemini"

	def __init__(self, client) -> None:
		self.client = client

	async def judge(self, question: Question, answer: str) -> Judgment:
		prompt = build_marking_prompt(question, answer)
		try:
			raw = await self.client.generate(prompt, system_instruction=MARKING_SYSTEM_PROMPT, json_output=True)
		except RuntimeError as exc:
			raise MarkingEngineError() from exc
		return self.parse(raw, question)

	def parse(self, raw: str, question: Question) -> Judgment:
		data = _normalize_model_payload(_extract_json_object(raw or ""))
		try:
			parsed = _ModelResponse.model_validate(data)
		except ValidationError as exc:
			logger.warning("Judge response failed validation: %s", exc.errors()[:3])
			raise MarkingEngineError() from exc
		known = {p.ordinal for p in question.mark_scheme.points}
		verdicts: Dict[int, PointVerdict] = {}
		for item in parsed.points:
			if item.point not in known:
				logger.info("Ignoring verdict for unknown point %s", item.point)
				continue
			verdicts.setdefault(item.point, PointVerdict(ordinal=item.point, status=item.status, evidence=item.evidence))
		ordered = [verdicts.get(n) or PointVerdict(ordinal=n, status="missing") for n in sorted(known)]
		highlights = [
			RawHighlight(
				text=h.text,
				classification=h.classification,
				rationale=h.rationale,
				ordinal=h.point if h.point in known else None,
			)
			for h in parsed.highlights
		]
		return Judgment(
			verdicts=ordered,
			highlights=highlights,
			feedback=parsed.feedback.strip() or None,
			strengths=[s.strip() for s in parsed.strengths if s and s.strip()],
			improvements=[s.strip() for s in parsed.improvements if s and s.strip()],
			marking_notes=parsed.marking_notes,
			reported_score=parsed.score,
		)
