from __future__ import annotations
from typing import Optional

from .normalizer import format_mark_scheme
from .schemas import Question


MARKING_SYSTEM_PROMPT = (
	"You are an expert GCSE examiner. Mark strictly against the provided mark scheme.\n\n"
	"MARKING RULES:\n"
	"- Each numbered point is scored on its own. A wrong statement elsewhere never removes credit for a point stated correctly.\n"
	"- Credit a point when the answer contains its phrase, or a synonym of the same specificity, anywhere. Extra words around it do not matter.\n"
	"- Alternatives written with OR or a slash are each enough on their own. Words in brackets are optional.\n"
	"- If the matching text is exactly a phrase listed under 'do not accept', that occurrence earns nothing.\n"
	"- Phrases listed under 'ignore' earn nothing and cost nothing.\n"
	"- Text that gestures at a point without the required precision is 'partial': it earns no marks.\n"
	"- When one run of text holds a correct part and a contradicting part (e.g. 'very thin walls (two cells thick)'), "
	"report them as separate highlights with separate classifications.\n\n"
	"HIGHLIGHTING:\n"
	"- Copy highlight text EXACTLY from the student's answer, character for character. Never paraphrase.\n"
	"- Use 'correct' for text that earns a point, 'partial' for text that needs more precision, 'incorrect' for wrong statements.\n"
	"- Give each highlight a short, actionable rationale that refers to the mark-scheme point.\n\n"
	"FEEDBACK:\n"
	"- One strength per credited point, one actionable improvement per missed or partial point.\n"
	"- Keep the overall feedback supportive whatever the score.\n\n"
	"Return ONLY a JSON object:\n"
	"{\n"
	'  "points": [{"point": 1, "status": "correct|partial|incorrect|missing", "evidence": "exact text or empty"}],\n'
	'  "highlights": [{"text": "exact text from the answer", "classification": "correct|partial|incorrect", "rationale": "...", "point": 1}],\n'
	'  "feedback": "supportive overall feedback",\n'
	'  "strengths": ["..."],\n'
	'  "improvements": ["..."],\n'
	'  "markingNotes": "brief marking summary",\n'
	'  "score": 0\n'
	"}\n"
	"List every numbered point exactly once in 'points'."
)


def build_marking_prompt(question: Question, student_answer: str) -> str:
	scheme = format_mark_scheme(question.mark_scheme, question.max_marks)
	return (
		f"Question: {question.text}\n\n"
		f"Student Answer:\n{student_answer}\n\n"
		f"Mark Scheme:\n{scheme}\n\n"
		f"Maximum Marks: {question.max_marks}\n\n"
		"Mark this answer point by point."
	)


FORMAT_SYSTEM_PROMPT = (
	"You are an expert GCSE examiner. Rewrite the mark scheme you are given into this exact format and nothing else:\n\n"
	"Award marks for: 1) <point> (1 mark), 2) <point> (1 mark), 3) <point> (2 marks)\n\n"
	"Additional Acceptable Points:\n"
	"- <extra acceptable answer>\n\n"
	"AO / Spec Ref: <reference>\n\n"
	"Important Notes:\n"
	'- do not accept "<phrase>" (point N)\n'
	'- ignore "<phrase>" (point N)\n\n'
	"Total: <max marks> marks maximum\n\n"
	"RULES:\n"
	"- All numbered points go on the single 'Award marks for:' line, separated by commas.\n"
	"- The marks of the numbered points must add up to exactly the maximum marks.\n"
	"- Prefer 1-mark points. Only a point that needs two independent facts may be worth 2 marks.\n"
	"- Points beyond the maximum marks go under 'Additional Acceptable Points'.\n"
	"- Write alternatives with OR. Keep the examiner's wording; do not invent content.\n"
	"- Leave out any section that would be empty, except 'Total'."
)


def build_format_prompt(raw_text: str, max_marks: int, question_text: Optional[str] = None) -> str:
	lines = []
	if question_text:
		lines.append(f"Question: {question_text}")
	lines.append(f"Maximum Marks: {max_marks}")
	lines.append("")
	lines.append("Mark scheme to rewrite:")
	lines.append(raw_text)
	return "\n".join(lines)
