"""Mark-scheme normalization.

Every mark scheme stored or marked against is reduced to one canonical text
form::

	Award marks for: 1) <point> (1 mark), 2) <point> (2 marks)

	Additional Acceptable Points:
	- <point>

	AO / Spec Ref: <ref>

	Important Notes:
	- do not accept "<phrase>" (point N)
	- ignore "<phrase>" (point N)
	- <note>

	Total: <max marks> marks maximum

Only the first line carries credit. :func:`parse_mark_scheme` reads that form
back; :func:`normalize` produces it from arbitrary examiner text.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import httpx

from ..errors import MalformedMarkSchemeError
from .schemas import MarkScheme, MarkSchemePoint
from .text import collapse_ws, content_tokens, has_words

logger = logging.getLogger(__name__)


HEADER = "Award marks for:"

_POINTS_HEADER_RE = re.compile(r"^\s*(?:award marks for|acceptable answers|marking points)\s*:\s*", re.I)
_SECTION_RE = re.compile(
	r"^\s*(additional acceptable points|ao\s*/\s*spec(?:ification)?\s*ref|important notes|notes|guidance|total)\s*:\s*(.*)$",
	re.I,
)
_CANONICAL_HEADER_RE = re.compile(r"(?im)^\s*(?:award marks for|acceptable answers|marking points)\s*:")
_SKIP_LINE_RE = re.compile(r"^\s*(?:mark scheme\s*:?\s*$|question\s+\d|q\d+\s*[:.)])", re.I)
_POINT_SPLIT_RE = re.compile(r"(?:^|,|\n)\s*(?=\d+[.)]\s)")
_POINT_RE = re.compile(r"^\s*(\d+)[.)]\s*(.*?)\s*(?:\(\s*(\d+)\s*marks?\s*\))?\s*[,.]?\s*$", re.I | re.S)
_MARKS_TAG_RE = re.compile(r"\(\s*(\d+)\s*marks?\s*\)|\[\s*(\d+)\s*(?:marks?)?\s*\]|\b(\d+)\s*marks?\s*$", re.I)
_BULLET_RE = re.compile(r"^\s*(?:[-*•·▪]|\(?(?:\d{1,2}|[a-hA-H]|[ivx]{1,4})[.)])\s+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")
_EXCLUDE_PREFIX_RE = re.compile(r"^\s*(?:do not accept|don't accept|dont accept|not accept|reject)\b\s*:?\s*", re.I)
_IGNORE_PREFIX_RE = re.compile(r"^\s*ignore\b\s*:?\s*(?:(?:any\s+)?(?:references?|mentions?)\s+(?:to|of)\s+)?", re.I)
_ACCEPT_PREFIX_RE = re.compile(r"^\s*(?:accept|allow)\b\s*:?\s*", re.I)
_INLINE_EXCLUDE_RE = re.compile(r"\(\s*(?:but\s+)?(?:do not accept|don't accept|reject|not)\s+([^)]+)\)", re.I)
_INLINE_IGNORE_RE = re.compile(r"\(\s*ignore\s+([^)]+)\)", re.I)
_INLINE_ACCEPT_RE = re.compile(r"\(\s*(?:accept|allow)\s+([^)]+)\)", re.I)
_POINT_REF_RE = re.compile(r"\(\s*points?\s+(\d+)\s*\)", re.I)
_QUOTED_RE = re.compile(r"\"([^\"]+)\"|“([^”]+)”|(?<!\w)'([^']+)'(?!\w)")
_HINT_SPLIT_RE = re.compile(r"\s+(?:instead of|in place of|for|as|without|on its own|alone)\b", re.I)
_COMPOUND_RE = re.compile(r"\band\b|\+|→|->|\bboth\b", re.I)


@dataclass
class _Candidate:
	text: str
	declared: Optional[int] = None
	exclusions: List[str] = field(default_factory=list)
	ignored: List[str] = field(default_factory=list)


@dataclass
class _Note:
	kind: str  # "exclude" | "ignore" | "note"
	phrase: str
	hint: str = ""
	ordinal: Optional[int] = None


def _quoted(text: str) -> List[str]:
	return [m.group(m.lastindex) for m in _QUOTED_RE.finditer(text)]


def _unquote(text: str) -> str:
	return _QUOTED_RE.sub(lambda m: m.group(m.lastindex), text)


def _marks_label(weight: int) -> str:
	return f"{weight} mark" if weight == 1 else f"{weight} marks"


def _clean_point_text(text: str) -> str:
	text = _MARKS_TAG_RE.sub("", text)
	# A "N)" inside a point would be read back as the start of a new point
	text = re.sub(r"(?<=\s)(\d+)\)", r"(\1)", text)
	text = collapse_ws(text).strip(" ,;:.-")
	return text


def format_mark_scheme(scheme: MarkScheme, max_marks: Optional[int] = None) -> str:
	total = max_marks if max_marks is not None else scheme.total_weight
	items = [f"{p.ordinal}) {_clean_point_text(p.text)} ({_marks_label(p.weight)})" for p in scheme.points]
	lines = [f"{HEADER} " + ", ".join(items)]
	if scheme.additional_points:
		lines.append("")
		lines.append("Additional Acceptable Points:")
		lines.extend(f"- {_clean_point_text(text)}" for text in scheme.additional_points)
	if scheme.ao_spec_ref:
		lines.append("")
		lines.append(f"AO / Spec Ref: {scheme.ao_spec_ref}")
	note_lines: List[str] = []
	for p in scheme.points:
		note_lines.extend(f'- do not accept "{phrase}" (point {p.ordinal})' for phrase in p.exclusions)
		note_lines.extend(f'- ignore "{phrase}" (point {p.ordinal})' for phrase in p.ignored_phrases)
	note_lines.extend(f"- {note}" for note in scheme.notes)
	if scheme.additional_notes.strip():
		note_lines.append(f"- {collapse_ws(scheme.additional_notes)}")
	if note_lines:
		lines.append("")
		lines.append("Important Notes:")
		lines.extend(note_lines)
	lines.append("")
	lines.append(f"Total: {total} marks maximum")
	return "\n".join(lines)


def _parse_note(line: str) -> Optional[_Note]:
	body = _BULLET_RE.sub("", line).strip()
	if not body:
		return None
	ordinal = None
	ref = _POINT_REF_RE.search(body)
	if ref:
		ordinal = int(ref.group(1))
		body = _POINT_REF_RE.sub("", body).strip()
	for kind, prefix in (("exclude", _EXCLUDE_PREFIX_RE), ("ignore", _IGNORE_PREFIX_RE)):
		m = prefix.match(body)
		if not m:
			continue
		rest = body[m.end():].strip()
		quoted = _quoted(rest)
		if quoted:
			phrase = quoted[0]
			hint = " ".join(quoted[1:]) or _QUOTED_RE.sub("", rest)
		else:
			parts = _HINT_SPLIT_RE.split(rest, maxsplit=1)
			phrase = parts[0]
			hint = parts[1] if len(parts) > 1 else ""
		phrase = collapse_ws(phrase).strip(" .,;:")
		if not phrase:
			return None
		return _Note(kind, phrase, collapse_ws(hint), ordinal)
	return _Note("note", collapse_ws(body), ordinal=ordinal)


def _attach_notes(points: List[MarkSchemePoint], notes: List[_Note]) -> List[str]:
	"""Attach exclusion / ignore notes to the points they concern; return the free notes."""
	free: List[str] = []
	for note in notes:
		if note.kind == "note":
			free.append(note.phrase)
			continue
		targets: List[MarkSchemePoint]
		if note.ordinal is not None and any(p.ordinal == note.ordinal for p in points):
			targets = [p for p in points if p.ordinal == note.ordinal]
		else:
			wanted = set(content_tokens(note.phrase + " " + note.hint))
			overlaps = [(len(wanted & set(content_tokens(p.text))), p) for p in points]
			best = max((o for o, _ in overlaps), default=0)
			targets = [p for o, p in overlaps if o == best and best > 0] or list(points)
		for p in targets:
			bucket = p.exclusions if note.kind == "exclude" else p.ignored_phrases
			if note.phrase not in bucket:
				bucket.append(note.phrase)
	return free


def _split_sections(text: str) -> Tuple[List[str], Dict[str, List[str]]]:
	"""Split ``text`` into point lines and named side sections."""
	point_lines: List[str] = []
	sections: Dict[str, List[str]] = {"additional": [], "ao": [], "notes": []}
	mode = "points"
	for raw_line in text.splitlines():
		line = raw_line.strip()
		if not line:
			continue
		header = _POINTS_HEADER_RE.match(line)
		if header:
			mode = "points"
			line = line[header.end():].strip()
			if not line:
				continue
		else:
			section = _SECTION_RE.match(line)
			if section:
				name = section.group(1).lower()
				rest = section.group(2).strip()
				if name.startswith("total"):
					continue
				if name.startswith("additional"):
					mode = "additional"
				elif name.startswith("ao"):
					mode = "ao"
				else:
					mode = "notes"
				if rest:
					sections[mode].append(rest)
				continue
			if _SKIP_LINE_RE.match(line):
				continue
		if mode == "points":
			point_lines.append(line)
		else:
			sections[mode].append(line)
	return point_lines, sections


def parse_mark_scheme(text: str) -> MarkScheme:
	"""Read a mark scheme written in the canonical form back into points."""
	header = _CANONICAL_HEADER_RE.search(text or "")
	if not header:
		raise MalformedMarkSchemeError("Mark scheme has no 'Award marks for:' section")
	point_lines, sections = _split_sections(text[header.start():])
	body = "\n".join(point_lines)
	points: List[MarkSchemePoint] = []
	for segment in _POINT_SPLIT_RE.split(body):
		m = _POINT_RE.match(segment)
		if not m or not has_words(m.group(2)):
			continue
		weight = int(m.group(3)) if m.group(3) else 1
		points.append(MarkSchemePoint(ordinal=len(points) + 1, text=_clean_point_text(m.group(2)), weight=max(1, weight)))
	if not points:
		raise MalformedMarkSchemeError("Mark scheme lists no numbered points")
	notes = [n for n in (_parse_note(line) for line in sections["notes"]) if n]
	free = _attach_notes(points, notes)
	return MarkScheme(
		points=points,
		additional_points=[_clean_point_text(_BULLET_RE.sub("", line)) for line in sections["additional"] if has_words(line)],
		ao_spec_ref="; ".join(sections["ao"]) or None,
		notes=free,
	)


def _segments(line: str) -> List[str]:
	if len(re.findall(r"(?:^|\s)\d+[.)]\s", line)) > 1:
		pieces = _POINT_SPLIT_RE.split(line)
	else:
		pieces = [line]
	out: List[str] = []
	for piece in pieces:
		for part in piece.split(";"):
			out.extend(s for s in _SENTENCE_SPLIT_RE.split(part) if s.strip())
	return out


def _candidate_from_segment(segment: str) -> Tuple[Optional[_Candidate], Optional[_Note]]:
	body = _BULLET_RE.sub("", segment).strip()
	if not body:
		return None, None
	if _EXCLUDE_PREFIX_RE.match(body) or _IGNORE_PREFIX_RE.match(body):
		return None, _parse_note(body)
	declared = None
	tag = _MARKS_TAG_RE.search(body)
	if tag:
		declared = int(next(g for g in tag.groups() if g))
	cand = _Candidate(text="", declared=declared)
	for m in _INLINE_EXCLUDE_RE.finditer(body):
		cand.exclusions.append(collapse_ws(_unquote(m.group(1))).strip(" .\"'“”"))
	for m in _INLINE_IGNORE_RE.finditer(body):
		cand.ignored.append(collapse_ws(_unquote(m.group(1))).strip(" .\"'“”"))
	alternatives = [collapse_ws(m.group(1)).strip(" .") for m in _INLINE_ACCEPT_RE.finditer(body)]
	body = _INLINE_ACCEPT_RE.sub("", _INLINE_IGNORE_RE.sub("", _INLINE_EXCLUDE_RE.sub("", body)))
	text = _clean_point_text(body)
	if alternatives:
		text = " OR ".join([text] + alternatives)
	if not has_words(text) or re.fullmatch(r"(?i)(?:max(?:imum)?\s*)?\d*\s*(?:marks?)?", text):
		return None, None
	cand.text = text
	return cand, None


def _is_compound(text: str) -> bool:
	return bool(_COMPOUND_RE.search(text)) and len(content_tokens(text)) >= 3


def _allocate(candidates: List[_Candidate], max_marks: int) -> Tuple[List[Tuple[_Candidate, int]], List[_Candidate]]:
	weights = [max(1, c.declared) if c.declared else 1 for c in candidates]
	total = sum(weights)
	while total > max_marks and any(w > 1 for w in weights):
		i = weights.index(max(weights))
		weights[i] -= 1
		total -= 1
	kept = list(zip(candidates, weights))
	overflow: List[_Candidate] = []
	if len(kept) > max_marks:
		overflow = [c for c, _ in kept[max_marks:]]
		kept = kept[:max_marks]
	total = sum(w for _, w in kept)
	if total < max_marks:
		# Compound points may carry two marks before anything else is topped up
		for i, (cand, w) in enumerate(kept):
			if total >= max_marks:
				break
			if w == 1 and cand.declared is None and _is_compound(cand.text):
				kept[i] = (cand, 2)
				total += 1
		i = 0
		while total < max_marks:
			cand, w = kept[i % len(kept)]
			kept[i % len(kept)] = (cand, w + 1)
			total += 1
			i += 1
	return kept, overflow


def normalize(raw_text: str, max_marks: int) -> MarkScheme:
	"""Turn examiner text into a MarkScheme whose weights sum to ``max_marks``."""
	if max_marks is None or int(max_marks) < 1:
		raise MalformedMarkSchemeError("Maximum marks must be a positive whole number")
	max_marks = int(max_marks)
	if not raw_text or not has_words(raw_text):
		raise MalformedMarkSchemeError()

	candidates: List[_Candidate] = []
	notes: List[_Note] = []
	point_lines, sections = _split_sections(raw_text)
	for line in point_lines:
		for segment in _segments(line):
			cand, note = _candidate_from_segment(segment)
			if note:
				notes.append(note)
			elif cand:
				accept = _ACCEPT_PREFIX_RE.match(cand.text)
				if accept and candidates:
					candidates[-1].text += " OR " + cand.text[accept.end():].strip()
					continue
				candidates.append(cand)
	additional: List[str] = []
	for line in sections["additional"]:
		cand, _ = _candidate_from_segment(line)
		if cand:
			additional.append(cand.text)
	for line in sections["notes"]:
		note = _parse_note(line)
		if note:
			notes.append(note)

	seen = set()
	unique: List[_Candidate] = []
	for cand in candidates:
		key = " ".join(content_tokens(cand.text))
		if key and key not in seen:
			seen.add(key)
			unique.append(cand)
	if not unique:
		raise MalformedMarkSchemeError()

	kept, overflow = _allocate(unique, max_marks)
	points = [
		MarkSchemePoint(
			ordinal=i + 1,
			text=cand.text,
			weight=weight,
			exclusions=list(dict.fromkeys(cand.exclusions)),
			ignored_phrases=list(dict.fromkeys(cand.ignored)),
		)
		for i, (cand, weight) in enumerate(kept)
	]
	free_notes = _attach_notes(points, notes)
	scheme = MarkScheme(
		points=points,
		additional_points=[c.text for c in overflow] + additional,
		ao_spec_ref="; ".join(sections["ao"]) or None,
		notes=free_notes,
	)
	if overflow:
		logger.info("Mark scheme had %d more points than %d marks; kept extras as additional points", len(overflow), max_marks)
	return scheme


def coerce_mark_scheme(value: Union[MarkScheme, str, None], max_marks: int) -> MarkScheme:
	"""Accept a structured scheme, canonical text, or raw examiner text."""
	if isinstance(value, MarkScheme):
		return value
	if not value or not str(value).strip():
		raise MalformedMarkSchemeError("Mark scheme is required")
	text = str(value)
	try:
		scheme = parse_mark_scheme(text)
	except MalformedMarkSchemeError:
		return normalize(text, max_marks)
	return _rebalance(scheme, max_marks)


def _rebalance(scheme: MarkScheme, max_marks: int) -> MarkScheme:
	if scheme.total_weight == max_marks:
		return scheme
	# Stored text disagrees with the question's marks; re-derive the weights
	return normalize(format_mark_scheme(scheme, max_marks), max_marks)


async def normalize_with_model(client, raw_text: str, max_marks: int, question_text: Optional[str] = None) -> MarkScheme:
	"""Let the model rewrite ``raw_text`` into the canonical form, then re-check it.

	Whatever the model returns is parsed and re-balanced here, so the weights
	always sum to ``max_marks``. Output that cannot be parsed falls back to
	:func:`normalize` on the original text.
	"""
	from .prompts import FORMAT_SYSTEM_PROMPT, build_format_prompt

	if max_marks is None or int(max_marks) < 1:
		raise MalformedMarkSchemeError("Maximum marks must be a positive whole number")
	if not raw_text or not has_words(raw_text):
		raise MalformedMarkSchemeError()
	try:
		rewritten = await client.generate(
			build_format_prompt(raw_text, int(max_marks), question_text),
			system_instruction=FORMAT_SYSTEM_PROMPT,
		)
	except (RuntimeError, httpx.HTTPError) as exc:
		logger.warning("Model formatting failed (%s); normalizing the raw text instead", exc)
		return normalize(raw_text, int(max_marks))
	rewritten = re.sub(r"^```[a-z]*\s*|\s*```$", "", (rewritten or "").strip())
	try:
		return _rebalance(parse_mark_scheme(rewritten), int(max_marks))
	except MalformedMarkSchemeError:
		logger.warning("Model output was not a usable mark scheme; normalizing the raw text instead")
		return normalize(raw_text, int(max_marks))
