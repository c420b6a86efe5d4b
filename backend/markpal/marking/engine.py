from __future__ import annotations
import logging
from typing import Dict, List, Optional

import httpx

from ..errors import InvalidRequestError, MarkingEngineError
from ..settings import settings
from .highlights import reconcile
from .judge import Judge, RuleJudge
from .schemas import Judgment, MarkingResult, PointResult, PointVerdict, Question

logger = logging.getLogger(__name__)


_TRANSIENT_ERRORS = (httpx.HTTPError,)


def _plural(n: int, word: str) -> str:
	return f"{n} {word}" if n == 1 else f"{n} {word}s"


def _overall_feedback(score: int, max_score: int, missed: int) -> str:
	if max_score and score == max_score:
		return f"Excellent work: you earned all {_plural(max_score, 'mark')}. Every point in the mark scheme is covered."
	if score == 0:
		return (
			"Good effort getting an answer down. This one did not earn marks yet, "
			"but the improvements below show exactly which points the examiner is looking for."
		)
	return (
		f"Good work: you earned {score} out of {_plural(max_score, 'mark')}. "
		f"Pick up the {_plural(missed, 'remaining point')} below to reach full marks."
	)


class MarkingEngine:
	"""Marks one answer against one question's mark scheme.

	The judge decides per point; the score is always derived here from those
	verdicts, so a judge can never report more marks than the points allow.
	"""

	def __init__(self, judge: Optional[Judge] = None, *, max_attempts: Optional[int] = None) -> None:
		self.judge = judge or RuleJudge()
		self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.marking_max_attempts)

	async def mark(self, question: Question, student_answer: str) -> MarkingResult:
		answer = student_answer if isinstance(student_answer, str) else ""
		if not answer.strip():
			raise InvalidRequestError("Student answer is required")
		if len(answer) > settings.max_answer_chars:
			raise InvalidRequestError(f"Student answer is longer than {settings.max_answer_chars} characters")
		judgment = await self._judge_with_retry(question, answer)
		return self._build_result(question, answer, judgment)

	async def _judge_with_retry(self, question: Question, answer: str) -> Judgment:
		last_error: Optional[Exception] = None
		for attempt in range(1, self.max_attempts + 1):
			try:
				return await self.judge.judge(question, answer)
			except MarkingEngineError as exc:
				last_error = exc
			except _TRANSIENT_ERRORS as exc:
				last_error = exc
			logger.warning(
				"Judge %s failed on attempt %d/%d: %s",
				self.judge.name,
				attempt,
				self.max_attempts,
				last_error,
			)
		raise MarkingEngineError() from last_error

	def _build_result(self, question: Question, answer: str, judgment: Judgment) -> MarkingResult:
		verdicts: Dict[int, PointVerdict] = {}
		for verdict in judgment.verdicts:
			verdicts.setdefault(verdict.ordinal, verdict)

		point_results: List[PointResult] = []
		for point in question.mark_scheme.points:
			verdict = verdicts.get(point.ordinal)
			status = verdict.status if verdict else "missing"
			point_results.append(
				PointResult(
					ordinal=point.ordinal,
					text=point.text,
					weight=point.weight,
					status=status,
					awarded=point.weight if status == "correct" else 0,
				)
			)
		raw_score = sum(p.awarded for p in point_results)
		score = max(0, min(raw_score, question.max_marks))
		if score != raw_score:
			logger.warning("Clamped score %d to %d for a %d-mark question", raw_score, score, question.max_marks)
		if judgment.reported_score is not None and judgment.reported_score != score:
			logger.info("Judge reported %s but the point verdicts give %d", judgment.reported_score, score)

		credited = [p for p in point_results if p.status == "correct"]
		missed = [p for p in point_results if p.status != "correct"]
		strengths = judgment.strengths or [f"You earned point {p.ordinal}: {p.text}" for p in credited]
		improvements = judgment.improvements or [self._improvement(p) for p in missed]
		feedback = judgment.feedback or _overall_feedback(score, question.max_marks, len(missed))
		if judgment.marking_notes:
			notes = judgment.marking_notes
		elif credited:
			label = "point" if len(credited) == 1 else "points"
			ordinals = ", ".join(str(p.ordinal) for p in credited)
			notes = f"Awarded {score}/{question.max_marks}: {label} {ordinals} credited."
		else:
			notes = f"Awarded 0/{question.max_marks}: no mark-scheme points credited."

		return MarkingResult(
			score=score,
			max_score=question.max_marks,
			feedback=feedback,
			highlights=reconcile(judgment.highlights, answer),
			strengths=strengths,
			improvements=improvements,
			marking_notes=notes,
			point_results=point_results,
		)

	def _improvement(self, result: PointResult) -> str:
		if result.status == "partial":
			return f"You are close on point {result.ordinal}; state it precisely to earn the mark: {result.text}"
		if result.status == "incorrect":
			return f"Check point {result.ordinal}: what you wrote contradicts the mark scheme, which expects: {result.text}"
		return f"Add point {result.ordinal}: {result.text}"
