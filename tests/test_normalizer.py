"""
Test: mark-scheme normalization, the canonical text form and reading it back.
"""
import asyncio

import httpx
import pytest

from markpal.errors import MalformedMarkSchemeError
from markpal.marking.normalizer import (
	coerce_mark_scheme,
	format_mark_scheme,
	normalize,
	normalize_with_model,
	parse_mark_scheme,
)
from markpal.marking.schemas import MarkScheme, MarkSchemePoint


ALVEOLI_CANONICAL = (
	"Award marks for: 1) large surface / area (1 mark), "
	"2) (large) capillary network OR good / efficient blood supply (1 mark), "
	"3) walls are thin OR walls are one cell thick (1 mark)\n"
	"\n"
	"Important Notes:\n"
	'- do not accept "thin cell walls" (point 3)\n'
	"\n"
	"Total: 3 marks maximum"
)


class TestNormalize:
	def test_semicolon_clauses_become_one_mark_points(self):
		scheme = normalize("chlorophyll absorbs light; glucose and oxygen made; happens in chloroplast", 3)
		assert [p.ordinal for p in scheme.points] == [1, 2, 3]
		assert [p.weight for p in scheme.points] == [1, 1, 1]
		assert scheme.points[0].text == "chlorophyll absorbs light"
		assert scheme.points[2].text == "happens in chloroplast"

	@pytest.mark.parametrize("max_marks", [1, 2, 3, 4, 5, 6])
	def test_weights_always_sum_to_max_marks(self, max_marks):
		scheme = normalize("chlorophyll absorbs light; glucose and oxygen made; happens in chloroplast", max_marks)
		assert sum(p.weight for p in scheme.points) == max_marks
		assert all(p.weight >= 1 for p in scheme.points)

	def test_compound_point_takes_the_extra_mark(self):
		scheme = normalize("chlorophyll absorbs light; glucose and oxygen made; happens in chloroplast", 4)
		assert [p.weight for p in scheme.points] == [1, 2, 1]

	def test_surplus_points_become_additional_points(self):
		scheme = normalize("chlorophyll absorbs light; glucose and oxygen made; happens in chloroplast", 2)
		assert len(scheme.points) == 2
		assert scheme.additional_points == ["happens in chloroplast"]

	def test_bullets_with_inline_exclusion(self):
		raw = (
			"Mark scheme:\n"
			"- walls are thin (do not accept thin cell walls)\n"
			"- large surface area\n"
			"- good blood supply\n"
		)
		scheme = normalize(raw, 3)
		assert len(scheme.points) == 3
		assert scheme.points[0].text == "walls are thin"
		assert scheme.points[0].exclusions == ["thin cell walls"]

	def test_exclusion_with_apostrophe_is_kept_whole(self):
		scheme = normalize('1) walls are thin\ndo not accept "the heart\'s walls are thin"', 1)
		assert scheme.points[0].text == "walls are thin"
		assert scheme.points[0].exclusions == ["the heart's walls are thin"]
		assert parse_mark_scheme(format_mark_scheme(scheme)).points[0].exclusions == ["the heart's walls are thin"]

	def test_declared_weights_are_respected(self):
		raw = "1. enzymes are proteins (1 mark)\n2. active site has a specific shape so only one substrate fits (2 marks)"
		scheme = normalize(raw, 3)
		assert [p.weight for p in scheme.points] == [1, 2]

	def test_accept_line_becomes_alternative(self):
		raw = "- kills bacteria\n- accept destroys microorganisms\n- prevents infection"
		scheme = normalize(raw, 2)
		assert scheme.points[0].text == "kills bacteria OR destroys microorganisms"
		assert len(scheme.points) == 2

	def test_ignore_note_attaches_to_matching_point(self):
		raw = "Award marks for:\n- walls are thin\n- large surface area\nImportant Notes:\n- ignore references to cell membranes"
		scheme = normalize(raw, 2)
		assert "cell membranes" in scheme.points[0].ignored_phrases

	def test_duplicate_points_are_dropped(self):
		scheme = normalize("oxygen is produced; Oxygen is produced; glucose is made", 2)
		assert [p.text for p in scheme.points] == ["oxygen is produced", "glucose is made"]

	@pytest.mark.parametrize("raw", ["", "   ", "--- ...", "(3 marks)"])
	def test_no_scorable_points(self, raw):
		with pytest.raises(MalformedMarkSchemeError):
			normalize(raw, 3)

	def test_max_marks_must_be_positive(self):
		with pytest.raises(MalformedMarkSchemeError):
			normalize("oxygen is produced", 0)


class TestCanonicalForm:
	def test_format_layout(self):
		scheme = MarkScheme(
			points=[
				MarkSchemePoint(ordinal=1, text="walls are thin", weight=1, exclusions=["thin cell walls"]),
				MarkSchemePoint(ordinal=2, text="large surface area and good blood supply", weight=2),
			],
			additional_points=["moist lining"],
			ao_spec_ref="AO1 / 4.2.2",
			notes=["answers must refer to alveoli"],
		)
		text = format_mark_scheme(scheme, 3)
		assert text.splitlines()[0] == (
			"Award marks for: 1) walls are thin (1 mark), 2) large surface area and good blood supply (2 marks)"
		)
		assert "Additional Acceptable Points:\n- moist lining" in text
		assert "AO / Spec Ref: AO1 / 4.2.2" in text
		assert '- do not accept "thin cell walls" (point 1)' in text
		assert "- answers must refer to alveoli" in text
		assert text.endswith("Total: 3 marks maximum")

	def test_parse_canonical_text(self):
		scheme = parse_mark_scheme(ALVEOLI_CANONICAL)
		assert [p.text for p in scheme.points] == [
			"large surface / area",
			"(large) capillary network OR good / efficient blood supply",
			"walls are thin OR walls are one cell thick",
		]
		assert scheme.total_weight == 3
		assert scheme.points[2].exclusions == ["thin cell walls"]
		assert scheme.points[0].exclusions == []

	def test_formatted_scheme_reads_back(self):
		original = normalize("chlorophyll absorbs light; glucose and oxygen made; happens in chloroplast", 4)
		again = parse_mark_scheme(format_mark_scheme(original, 4))
		assert [(p.text, p.weight) for p in again.points] == [(p.text, p.weight) for p in original.points]

	def test_parse_requires_header(self):
		with pytest.raises(MalformedMarkSchemeError):
			parse_mark_scheme("glucose; oxygen")


class TestCoerce:
	def test_structured_scheme_passes_through(self):
		scheme = MarkScheme(points=[MarkSchemePoint(ordinal=1, text="oxygen", weight=1)])
		assert coerce_mark_scheme(scheme, 1) is scheme

	def test_canonical_text_with_other_total_is_rebalanced(self):
		scheme = coerce_mark_scheme(ALVEOLI_CANONICAL, 4)
		assert scheme.total_weight == 4
		assert scheme.points[2].exclusions == ["thin cell walls"]

	def test_raw_text_falls_back_to_normalize(self):
		scheme = coerce_mark_scheme("glucose is made; oxygen is released", 2)
		assert [p.text for p in scheme.points] == ["glucose is made", "oxygen is released"]

	def test_empty_value(self):
		with pytest.raises(MalformedMarkSchemeError):
			coerce_mark_scheme("  ", 2)


class FakeModelClient:
	def __init__(self, reply=None, error=None):
		self.reply = reply
		self.error = error
		self.calls = []

	async def generate(self, prompt, **kwargs):
		self.calls.append((prompt, kwargs))
		if self.error is not None:
			raise self.error
		return self.reply


class TestNormalizeWithModel:
	def test_model_output_is_rebalanced(self):
		reply = "```\nAward marks for: 1) glucose is made (1 mark), 2) oxygen is released (1 mark)\n\nTotal: 2 marks maximum\n```"
		client = FakeModelClient(reply=reply)
		scheme = asyncio.run(normalize_with_model(client, "glucose, oxygen", 3, "What does photosynthesis produce?"))
		assert scheme.total_weight == 3
		assert [p.text for p in scheme.points] == ["glucose is made", "oxygen is released"]
		prompt, kwargs = client.calls[0]
		assert "Maximum Marks: 3" in prompt
		assert "Award marks for:" in kwargs["system_instruction"]

	def test_unusable_output_falls_back(self):
		client = FakeModelClient(reply="Sorry, I cannot help with that.")
		scheme = asyncio.run(normalize_with_model(client, "glucose is made; oxygen is released", 2))
		assert [p.text for p in scheme.points] == ["glucose is made", "oxygen is released"]

	def test_transport_error_falls_back(self):
		client = FakeModelClient(error=httpx.ConnectError("offline"))
		scheme = asyncio.run(normalize_with_model(client, "glucose is made; oxygen is released", 2))
		assert scheme.total_weight == 2
