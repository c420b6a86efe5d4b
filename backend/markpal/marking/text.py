from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple


STOPWORDS = set(
	"a an the and or of to in on for from by with into about over after before during is are was were be being been "
	"this that these those it its their his her our your as at if then than so such also too very more most can could "
	"should would may might must will shall do does did done have has had having which who whom whose where when why "
	"how there they them he she we you i".split()
)

NEGATIONS = {"not", "no", "never", "cannot", "none", "neither", "nor", "without"}

NUMBER_WORDS = {
	"zero": 0, "one": 1, "single": 1, "two": 2, "double": 2, "three": 3, "four": 4, "five": 5,
	"six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}

# Connectors that separate clauses inside a sentence
CONNECTORS = {"and", "but", "whereas", "while", "although", "though", "however", "because", "so", "or"}

# Word forms (or stems) that mean the same thing at the specificity a mark scheme expects
SYNONYMS = {
	"made": "produc", "make": "produc", "makes": "produc", "making": "produc",
	"creat": "produc", "generat": "produc", "form": "produc",
	"big": "larg", "bigger": "larg", "larger": "larg", "huge": "larg",
	"o2": "oxygen", "h2o": "water", "co2": "carbon-dioxide",
	"smaller": "small", "tiny": "small",
	"quick": "fast", "quickly": "fast", "rapid": "fast", "rapidly": "fast", "faster": "fast",
}

_TOKEN_RE = re.compile(r"[A-Za-z0-9]+(?:['’][A-Za-z]+)?")
_SENTENCE_BREAK_RE = re.compile(r"[.!?;\n]+")
_WS_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Token:
	text: str
	start: int
	end: int

	@property
	def lower(self) -> str:
		return self.text.lower()


def collapse_ws(text: str) -> str:
	return _WS_RE.sub(" ", text or "").strip()


def tokenize(text: str, offset: int = 0) -> List[Token]:
	return [Token(m.group(0), m.start() + offset, m.end() + offset) for m in _TOKEN_RE.finditer(text or "")]


def stem(word: str) -> str:
	w = word.lower().replace("’", "'")
	if w.endswith("'s"):
		w = w[:-2]
	if len(w) > 4 and w.endswith("ies"):
		w = w[:-3] + "y"
	else:
		for suffix in ("ing", "ed", "es", "s"):
			if w.endswith(suffix) and len(w) - len(suffix) >= 3:
				if suffix == "s" and w.endswith("ss"):
					break
				w = w[: -len(suffix)]
				break
	if len(w) > 3 and w.endswith("e"):
		w = w[:-1]
	return w


def canonical(word: str) -> str:
	w = word.lower()
	if w in SYNONYMS:
		return SYNONYMS[w]
	s = stem(w)
	return SYNONYMS.get(s, s)


def is_stopword(word: str) -> bool:
	return word.lower() in STOPWORDS


def is_negation(word: str) -> bool:
	w = word.lower().replace("’", "'")
	return w in NEGATIONS or w.endswith("n't")


def number_value(word: str) -> Optional[int]:
	w = word.lower()
	if w.isdigit():
		return int(w)
	return NUMBER_WORDS.get(w)


def content_tokens(text: str) -> List[str]:
	return [canonical(t.text) for t in tokenize(text) if not is_stopword(t.text) and not is_negation(t.text)]


def sentence_ranges(text: str) -> List[Tuple[int, int]]:
	"""Character ranges of the sentences (and ';'/newline separated parts) of ``text``."""
	ranges: List[Tuple[int, int]] = []
	pos = 0
	for m in _SENTENCE_BREAK_RE.finditer(text):
		# Decimal points and abbreviations like "e.g." are not sentence ends
		if m.group(0) == "." and m.end() < len(text) and not text[m.end()].isspace():
			continue
		if m.start() > pos:
			ranges.append((pos, m.start()))
		pos = m.end()
	if pos < len(text):
		ranges.append((pos, len(text)))
	return [(s, e) for s, e in ranges if text[s:e].strip()]


def normalize_with_map(text: str) -> Tuple[str, List[int]]:
	"""Lower-case, whitespace-collapsed copy of ``text`` plus, for every character
	of the copy, the offset of the character it came from."""
	out: List[str] = []
	index: List[int] = []
	pending_space: Optional[int] = None
	for i, ch in enumerate(text):
		if ch.isspace():
			if out and pending_space is None:
				pending_space = i
			continue
		if pending_space is not None:
			out.append(" ")
			index.append(pending_space)
			pending_space = None
		for lowered in ch.lower():
			out.append(lowered)
			index.append(i)
	return "".join(out), index


def normalized_find(haystack: str, needle: str, start: int = 0) -> Optional[Tuple[int, int]]:
	"""Find ``needle`` in ``haystack`` ignoring case and whitespace runs.

	Returns original ``(start, end)`` offsets into ``haystack``, or None.
	"""
	norm_needle = collapse_ws(needle).lower()
	if not norm_needle:
		return None
	norm_hay, index = normalize_with_map(haystack)
	search_from = 0
	while True:
		pos = norm_hay.find(norm_needle, search_from)
		if pos == -1:
			return None
		orig_start = index[pos]
		orig_end = index[pos + len(norm_needle) - 1] + 1
		if orig_start >= start:
			return orig_start, orig_end
		search_from = pos + 1


_TRIM_CHARS = " \t\r\n.,;:!?()[]{}\"'-–—"


def trim_span(text: str, start: int, end: int) -> Tuple[int, int]:
	"""Shrink ``[start, end)`` past surrounding punctuation and dangling connector words."""
	while True:
		while start < end and text[start] in _TRIM_CHARS:
			start += 1
		while end > start and text[end - 1] in _TRIM_CHARS:
			end -= 1
		tokens = tokenize(text[start:end], start)
		if len(tokens) > 1 and tokens[0].lower in CONNECTORS:
			start = tokens[0].end
			continue
		if len(tokens) > 1 and tokens[-1].lower in CONNECTORS:
			end = tokens[-1].start
			continue
		return start, end


def has_words(text: str) -> bool:
	return bool(_TOKEN_RE.search(text or ""))
