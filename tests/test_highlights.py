"""
Test: anchoring judge highlights in the answer text and removing overlaps.
"""
import pytest
from pydantic import ValidationError

from markpal.errors import SpanNotFoundWarning
from markpal.marking.highlights import reconcile
from markpal.marking.schemas import Highlight, RawHighlight


def raw(text, classification="correct", rationale="", **kwargs):
	return RawHighlight(text=text, classification=classification, rationale=rationale, **kwargs)


def assert_anchored_and_disjoint(highlights, answer):
	for h in highlights:
		assert answer[h.start:h.end] == h.span
	for a, b in zip(highlights, highlights[1:]):
		assert a.end <= b.start


class TestLocate:
	def test_exact_match(self):
		answer = "Chlorophyll absorbs light. Oxygen is produced."
		result = reconcile([raw("Oxygen is produced")], answer)
		assert len(result) == 1
		assert result[0].span == "Oxygen is produced"
		assert result[0].start == answer.index("Oxygen")
		assert_anchored_and_disjoint(result, answer)

	def test_case_and_whitespace_insensitive_match(self):
		answer = "Chlorophyll absorbs light.  Oxygen is\nproduced."
		result = reconcile([raw("oxygen is produced")], answer)
		assert len(result) == 1
		assert result[0].span == "Oxygen is\nproduced"
		assert_anchored_and_disjoint(result, answer)

	def test_missing_text_is_dropped_with_warning(self):
		answer = "Chlorophyll absorbs light."
		with pytest.warns(SpanNotFoundWarning):
			result = reconcile([raw("glucose is stored as starch"), raw("absorbs light")], answer)
		assert [h.span for h in result] == ["absorbs light"]

	def test_repeated_text_maps_to_successive_occurrences(self):
		answer = "It is fast. Later it is fast again."
		result = reconcile([raw("is fast"), raw("is fast")], answer)
		assert [h.start for h in result] == [3, answer.rindex("is fast")]

	def test_start_hint_is_used_when_it_matches(self):
		answer = "is fast, is fast"
		hinted = raw("is fast", start=9)
		result = reconcile([hinted], answer)
		assert result[0].start == 9

	def test_wrong_start_hint_is_ignored(self):
		answer = "oxygen is produced"
		result = reconcile([raw("oxygen", start=5)], answer)
		assert result[0].start == 0

	def test_surrounding_punctuation_and_connectors_are_trimmed(self):
		answer = "Light is absorbed (and oxygen is produced)."
		result = reconcile([raw("(and oxygen is produced).")], answer)
		assert result[0].span == "oxygen is produced"

	def test_dicts_and_highlights_are_accepted(self):
		answer = "glucose is made and oxygen is released"
		items = [
			{"text": "glucose is made", "classification": "success", "rationale": "point 1"},
			Highlight(span="oxygen is released", classification="partial", start=20, end=38),
		]
		result = reconcile(items, answer)
		assert [(h.span, h.classification) for h in result] == [
			("glucose is made", "correct"),
			("oxygen is released", "partial"),
		]

	def test_negative_start_hint_is_invalid(self):
		with pytest.raises(ValidationError):
			raw("oxygen", start=-1)

	def test_negative_start_hint_in_dict_falls_back_to_search(self):
		answer = "glucose is made and oxygen is released"
		# answer[-18:-12] is "oxygen", so a negative hint would otherwise be accepted
		result = reconcile([{"text": "oxygen", "classification": "correct", "start": -18}], answer)
		assert [(h.span, h.start) for h in result] == [("oxygen", 20)]


class TestOverlaps:
	def test_same_classification_merges(self):
		answer = "Light energy is absorbed by chlorophyll in the leaf."
		result = reconcile(
			[
				raw("Light energy is absorbed by chlorophyll", rationale="Matches point 1"),
				raw("absorbed by chlorophyll in the leaf", rationale="Matches point 2"),
			],
			answer,
		)
		assert len(result) == 1
		assert result[0].span == "Light energy is absorbed by chlorophyll in the leaf"
		assert result[0].rationale == "Matches point 1 / Matches point 2"

	def test_identical_range_keeps_strongest_verdict(self):
		answer = "The walls are thin."
		result = reconcile([raw("walls are thin", "partial"), raw("walls are thin", "correct")], answer)
		assert [(h.span, h.classification) for h in result] == [("walls are thin", "correct")]

	def test_incorrect_beats_partial_on_identical_range(self):
		answer = "The walls are thin."
		result = reconcile([raw("walls are thin", "partial"), raw("walls are thin", "incorrect")], answer)
		assert [h.classification for h in result] == ["incorrect"]

	def test_narrow_span_splits_broad_span(self):
		answer = "The alveoli have very thin walls, but two cells thick."
		result = reconcile(
			[
				raw("very thin walls, but two cells thick", "partial", "Close to point 3"),
				raw("two cells thick", "incorrect", "Contradicts point 3"),
			],
			answer,
		)
		assert [(h.span, h.classification) for h in result] == [
			("very thin walls", "partial"),
			("two cells thick", "incorrect"),
		]
		assert result[0].rationale == "Close to point 3"
		assert_anchored_and_disjoint(result, answer)

	def test_narrow_span_inside_broad_span_leaves_both_sides(self):
		answer = "Blood flows quickly not slowly through capillaries"
		result = reconcile(
			[
				raw("Blood flows quickly not slowly through capillaries", "correct"),
				raw("not slowly", "incorrect"),
			],
			answer,
		)
		assert [(h.span, h.classification) for h in result] == [
			("Blood flows quickly", "correct"),
			("not slowly", "incorrect"),
			("through capillaries", "correct"),
		]

	def test_partial_overlap_cuts_the_longer_span(self):
		answer = "cells divide rapidly forming tumours"
		result = reconcile(
			[raw("cells divide rapidly", "correct"), raw("rapidly forming tumours", "incorrect")],
			answer,
		)
		assert [(h.span, h.classification) for h in result] == [
			("cells divide rapidly", "correct"),
			("forming tumours", "incorrect"),
		]

	def test_results_are_sorted_and_disjoint(self):
		answer = "Oxygen is produced. Light is absorbed by chlorophyll. Glucose is made."
		result = reconcile(
			[
				raw("Glucose is made", "partial"),
				raw("Light is absorbed by chlorophyll"),
				raw("absorbed by", "incorrect"),
				raw("Oxygen is produced"),
			],
			answer,
		)
		assert [h.start for h in result] == sorted(h.start for h in result)
		assert_anchored_and_disjoint(result, answer)
		assert result[0].span == "Oxygen is produced"
		assert result[-1].span == "Glucose is made"

	def test_empty_input(self):
		assert reconcile([], "anything") == []
