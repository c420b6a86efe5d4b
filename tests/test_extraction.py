"""
Test: splitting exam papers and mark-scheme documents into questions.
"""
import pytest

from markpal.marking.extraction import (
	classify_question_type,
	determine_subject,
	extract_from_mark_scheme,
	extract_questions,
	is_written_only,
	preprocess_text,
)


PAPER = """--- Page 1 ---
Question 1 (4 marks)
Explain how the alveoli are adapted for efficient gas exchange.
--- Page 2 ---
Question 2
What is the function of the red blood cells? [2]
"""

NUMBERED_PAPER = """1. Describe the role of enzymes in digestion. (3 marks)
2. Which organelle releases energy in respiration? (1 mark)
"""

MARK_SCHEME_DOC = """Question 1 Explain how the alveoli are adapted for gas exchange (3 marks)
- large surface area
- good blood supply
- walls are one cell thick (do not accept thin cell walls)
Question 2 Describe the role of chlorophyll in photosynthesis
1. absorbs light energy
2. converts light energy into chemical energy
Total: 2 marks
"""


class TestExtractQuestions:
	def test_named_markers(self):
		drafts = extract_questions(PAPER)
		assert [d.question_number for d in drafts] == ["1", "2"]
		first, second = drafts
		assert first.question_text == "Explain how the alveoli are adapted for efficient gas exchange."
		assert first.max_marks == 4
		assert first.marks_raw == "(4 marks)"
		assert first.type == "essay"
		assert second.question_text == "What is the function of the red blood cells?"
		assert second.max_marks == 2
		assert second.type == "short-answer"

	def test_page_markers_do_not_leak_into_text(self):
		for draft in extract_questions(PAPER):
			assert "Page" not in draft.question_text

	def test_numbered_markers(self):
		drafts = extract_questions(NUMBERED_PAPER)
		assert [(d.question_number, d.max_marks) for d in drafts] == [("1", 3), ("2", 1)]
		assert drafts[0].question_text == "Describe the role of enzymes in digestion."

	def test_no_markers_gives_no_questions(self):
		assert extract_questions("This paper has no question markers at all.") == []

	def test_short_fragments_are_dropped(self):
		drafts = extract_questions("Question 1\nName it.\nQuestion 2\nWhy do leaves look green in sunlight?")
		assert [d.question_number for d in drafts] == ["2"]

	def test_written_only_filter(self):
		paper = (
			"Question 1\nExplain why plants need nitrates for growth.\n"
			"Question 2\nUse the graph in Figure 3 to describe the trend.\n"
			"Question 3\nCalculate the magnification of the image.\n"
		)
		assert len(extract_questions(paper)) == 3
		drafts = extract_questions(paper, written_only=True)
		assert [d.question_number for d in drafts] == ["1"]

	def test_response_uses_camel_case(self):
		body = extract_questions(PAPER)[0].to_response()
		assert body["questionNumber"] == "1"
		assert body["maxMarks"] == 4
		assert body["rawMarksField"] == "(4 marks)"


class TestExtractFromMarkScheme:
	def test_questions_with_normalized_schemes(self):
		drafts = extract_from_mark_scheme(MARK_SCHEME_DOC)
		assert [d.question_number for d in drafts] == ["1", "2"]
		first, second = drafts
		assert first.question_text == "Explain how the alveoli are adapted for gas exchange"
		assert first.max_marks == 3
		assert [p.text for p in first.scheme.points] == [
			"large surface area",
			"good blood supply",
			"walls are one cell thick",
		]
		assert first.scheme.points[2].exclusions == ["thin cell walls"]
		assert first.mark_scheme.startswith("Award marks for: 1) large surface area (1 mark)")
		assert second.max_marks == 2
		assert second.scheme.total_weight == 2
		assert second.mark_scheme.endswith("Total: 2 marks maximum")

	def test_marks_derived_from_points_when_undeclared(self):
		doc = "Question 1 State two products of photosynthesis\n- glucose is produced\n- oxygen is released\n"
		drafts = extract_from_mark_scheme(doc)
		assert len(drafts) == 1
		assert drafts[0].max_marks == 2
		assert drafts[0].scheme.total_weight == 2

	def test_short_scheme_is_skipped(self):
		doc = "Question 1 State one product of photosynthesis\n- oxygen\n"
		assert extract_from_mark_scheme(doc) == []


class TestClassification:
	@pytest.mark.parametrize(
		"text, expected",
		[
			("Choose the correct answer from the box.", "multiple-choice"),
			("Tick one box. Explain your choice.", "multiple-choice"),
			("Explain why the rate of reaction increases.", "essay"),
			("Evaluate the use of wind turbines.", "essay"),
			("What is meant by diffusion?", "short-answer"),
			("Name the gas produced.", "text"),
			("However you test it, name the gas produced.", "text"),
			("Name the organ printed on the ticket.", "text"),
			("Which cells are ticked in the table?", "multiple-choice"),
		],
	)
	def test_question_type(self, text, expected):
		assert classify_question_type(text) == expected

	@pytest.mark.parametrize(
		"text, expected",
		[
			("Explain why leaves are thin.", True),
			("Look at the diagram of the heart.", False),
			("Work out the mean value.", False),
			("Complete the table below.", False),
			("Draw a ray diagram.", False),
			("Label the diagrams.", False),
			("Name the cells that line the alveoli.", True),
		],
	)
	def test_written_only(self, text, expected):
		assert is_written_only(text) is expected

	def test_subject_from_filename(self):
		assert determine_subject("GCSE_Chemistry_Paper1.pdf", "") == "chemistry"

	def test_subject_from_content(self):
		assert determine_subject("paper.pdf", "Describe photosynthesis in plants.") == "biology"

	def test_subject_from_inflected_content_word(self):
		assert determine_subject("paper.pdf", "Red blood cells carry oxygen.") == "biology"

	def test_subject_unknown(self):
		assert determine_subject("paper.pdf", "Nothing recognisable here.") == "other"

	def test_preprocess_strips_page_markers_and_blank_lines(self):
		assert preprocess_text("--- Page 1 ---\nA\n\n\nB\r\n") == "A\nB"
