from __future__ import annotations
import logging
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError
from ..gemini_client import GeminiClient
from ..marking.engine import MarkingEngine
from ..marking.judge import GeminiJudge, RuleJudge
from ..marking.normalizer import coerce_mark_scheme, format_mark_scheme, normalize, normalize_with_model
from ..marking.schemas import MarkScheme, Question
from ..quota import decrement_quota, refund_quota
from ..settings import settings
from ..store import get_question, question_from_record, save_attempt
from .auth import User, get_current_user

router = APIRouter(tags=["marking"])

logger = logging.getLogger(__name__)


async def get_model_client() -> AsyncIterator[Optional[GeminiClient]]:
	"""A Gemini client when the model backend is configured, else None."""
	if settings.marking_backend != "gemini" or not settings.gemini_api_key:
		yield None
		return
	async with GeminiClient() as client:
		yield client


async def get_marking_engine(client: Optional[GeminiClient] = Depends(get_model_client)) -> MarkingEngine:
	if client is not None:
		return MarkingEngine(GeminiJudge(client))
	return MarkingEngine(RuleJudge())


class MarkAnswerRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	question: Optional[str] = None
	student_answer: str = Field(alias="studentAnswer")
	mark_scheme: Optional[str] = Field(default=None, alias="markScheme")
	max_marks: Optional[int] = Field(default=None, alias="maxMarks")
	question_id: Optional[int] = Field(default=None, alias="questionId")


class FormatMarkSchemeRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	mark_scheme: str = Field(alias="markScheme")
	max_marks: int = Field(alias="maxMarks")
	question: Optional[str] = None


def scheme_to_dict(scheme: MarkScheme) -> Dict[str, Any]:
	return {
		"points": [
			{
				"ordinal": p.ordinal,
				"text": p.text,
				"weight": p.weight,
				"exclusions": list(p.exclusions),
				"ignoredPhrases": list(p.ignored_phrases),
			}
			for p in scheme.points
		],
		"additionalPoints": list(scheme.additional_points),
		"aoSpecRef": scheme.ao_spec_ref,
		"notes": list(scheme.notes),
		"totalMarks": scheme.total_weight,
	}


def _resolve_question(req: MarkAnswerRequest, db: Session) -> Question:
	if req.question_id is not None and not (req.question and req.mark_scheme):
		row = get_question(db, req.question_id)
		if row is None:
			raise InvalidRequestError(f"Question {req.question_id} does not exist")
		return question_from_record(row)
	question_text = (req.question or "").strip()
	if not question_text or not (req.mark_scheme or "").strip() or not req.max_marks:
		raise InvalidRequestError("question, studentAnswer, markScheme and maxMarks are required")
	if req.max_marks < 1:
		raise InvalidRequestError("maxMarks must be a positive whole number")
	scheme = coerce_mark_scheme(req.mark_scheme, req.max_marks)
	return Question(id=req.question_id, text=question_text, max_marks=req.max_marks, mark_scheme=scheme)


@router.post("/mark-answer")
async def mark_answer(
	req: MarkAnswerRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
	engine: MarkingEngine = Depends(get_marking_engine),
):
	answer = req.student_answer or ""
	if not answer.strip():
		raise InvalidRequestError("studentAnswer is required")
	if len(answer) > settings.max_answer_chars:
		raise InvalidRequestError(f"studentAnswer must be at most {settings.max_answer_chars} characters")
	question = _resolve_question(req, db)

	left = decrement_quota(db, user.username)
	try:
		result = await engine.mark(question, answer)
	except Exception:
		refund_quota(db, user.username)
		raise

	response: Dict[str, Any] = {"success": True, "data": result.to_response(), "questionsLeft": left}
	if question.id is not None:
		attempt = save_attempt(db, user.username, question.id, answer, result)
		response["attempt"] = {"id": attempt.id, "versionNumber": attempt.version_number}
	return response


@router.post("/format-mark-scheme")
async def format_mark_scheme_route(
	req: FormatMarkSchemeRequest,
	user: User = Depends(get_current_user),
	client: Optional[GeminiClient] = Depends(get_model_client),
):
	raw = (req.mark_scheme or "").strip()
	if not raw:
		raise InvalidRequestError("Mark scheme text is required")
	if req.max_marks < 1:
		raise InvalidRequestError("maxMarks must be a positive whole number")
	if client is not None:
		scheme = await normalize_with_model(client, raw, req.max_marks, req.question)
	else:
		scheme = normalize(raw, req.max_marks)
	return {
		"success": True,
		"data": {
			"formattedMarkScheme": format_mark_scheme(scheme, req.max_marks),
			**scheme_to_dict(scheme),
		},
	}
