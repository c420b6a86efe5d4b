from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError
from ..marking.extraction import determine_subject, extract_from_mark_scheme, extract_questions
from ..quota import require_tier
from ..settings import settings
from ..store import create_question
from .auth import User, get_current_user

router = APIRouter(tags=["extraction"])

logger = logging.getLogger(__name__)


class ExtractQuestionsRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	pdf_text: str = Field(alias="pdfText")
	filename: Optional[str] = None
	written_only: Optional[bool] = Field(default=None, alias="writtenOnly")


class ExtractMarkSchemeRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	mark_scheme_text: str = Field(alias="markSchemeText")
	filename: Optional[str] = None
	paper_id: Optional[str] = Field(default=None, alias="paperId")
	save: bool = False


@router.post("/extract-pdf-questions")
async def extract_pdf_questions(req: ExtractQuestionsRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	require_tier(db, user.username)
	text = req.pdf_text or ""
	if not text.strip():
		raise InvalidRequestError("PDF text is required")
	written_only = settings.extraction_written_only if req.written_only is None else req.written_only
	drafts = extract_questions(text, written_only=written_only)
	if not drafts:
		logger.warning("Paper upload by %s produced no questions", user.username)
	return {
		"success": True,
		"data": {
			"questions": [d.to_response() for d in drafts],
			"totalQuestions": len(drafts),
			"subject": determine_subject(req.filename or "", text),
			"fullText": text,
		},
	}


@router.post("/extract-mark-scheme-questions")
async def extract_mark_scheme_questions(req: ExtractMarkSchemeRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	require_tier(db, user.username)
	text = req.mark_scheme_text or ""
	if not text.strip():
		raise InvalidRequestError("Mark scheme text is required")
	drafts = extract_from_mark_scheme(text)
	if not drafts:
		logger.warning("Mark-scheme upload by %s produced no questions", user.username)
	subject = determine_subject(req.filename or "", text)
	questions = []
	for draft in drafts:
		item = draft.to_response()
		if req.save:
			row = create_question(
				db,
				username=user.username,
				text=draft.question_text,
				max_marks=draft.max_marks,
				scheme=draft.scheme,
				question_type=draft.type,
				subject=subject,
				paper_id=req.paper_id,
				source="mark_scheme",
			)
			item["id"] = row.id
		questions.append(item)
	return {
		"success": True,
		"data": {
			"questions": questions,
			"totalQuestions": len(questions),
			"subject": subject,
			"fullText": text,
		},
	}
