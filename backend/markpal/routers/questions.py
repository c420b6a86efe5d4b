from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import InvalidRequestError
from ..marking.extraction import classify_question_type
from ..marking.normalizer import coerce_mark_scheme
from ..store import create_question, get_question, list_questions, question_from_record, question_to_dict
from .auth import User, get_current_user

router = APIRouter(prefix="/questions", tags=["questions"])


class CreateQuestionRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	question_text: str = Field(alias="questionText")
	max_marks: int = Field(alias="maxMarks")
	mark_scheme: str = Field(alias="markScheme")
	type: Optional[str] = None
	subject: Optional[str] = None
	paper_id: Optional[str] = Field(default=None, alias="paperId")


class ReviseQuestionRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	question_text: Optional[str] = Field(default=None, alias="questionText")
	max_marks: Optional[int] = Field(default=None, alias="maxMarks")
	mark_scheme: Optional[str] = Field(default=None, alias="markScheme")


_QUESTION_TYPES = ("essay", "short-answer", "multiple-choice", "text")


@router.get("")
async def list_questions_route(
	subject: Optional[str] = None,
	type: Optional[str] = None,
	paper_id: Optional[str] = Query(default=None, alias="paperId"),
	limit: int = Query(default=100, ge=1, le=500),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	rows = list_questions(db, subject=subject, question_type=type, paper_id=paper_id, limit=limit)
	return {"success": True, "data": [question_to_dict(r) for r in rows]}


@router.post("", status_code=201)
async def create_question_route(req: CreateQuestionRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	text = (req.question_text or "").strip()
	if not text:
		raise InvalidRequestError("questionText is required")
	if req.max_marks < 1:
		raise InvalidRequestError("maxMarks must be a positive whole number")
	if req.type is not None and req.type not in _QUESTION_TYPES:
		raise InvalidRequestError(f"type must be one of {', '.join(_QUESTION_TYPES)}")
	scheme = coerce_mark_scheme(req.mark_scheme, req.max_marks)
	row = create_question(
		db,
		username=user.username,
		text=text,
		max_marks=req.max_marks,
		scheme=scheme,
		question_type=req.type or classify_question_type(text),
		subject=req.subject,
		paper_id=req.paper_id,
	)
	return {"success": True, "data": question_to_dict(row)}


@router.get("/{question_id}")
async def get_question_route(question_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_question(db, question_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Question not found")
	return {"success": True, "data": question_to_dict(row)}


@router.post("/{question_id}/revisions", status_code=201)
async def revise_question_route(
	question_id: int,
	req: ReviseQuestionRequest,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	row = get_question(db, question_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Question not found")
	current = question_from_record(row)
	text = (req.question_text or current.text).strip()
	max_marks = req.max_marks if req.max_marks is not None else current.max_marks
	if max_marks < 1:
		raise InvalidRequestError("maxMarks must be a positive whole number")
	if req.mark_scheme is not None:
		scheme = coerce_mark_scheme(req.mark_scheme, max_marks)
	else:
		scheme = coerce_mark_scheme(row.mark_scheme, max_marks)
	revised = create_question(
		db,
		username=user.username,
		text=text,
		max_marks=max_marks,
		scheme=scheme,
		question_type=row.question_type,
		subject=row.subject,
		paper_id=row.paper_id,
		source=row.source,
		supersedes_id=row.id,
	)
	return {"success": True, "data": question_to_dict(revised)}
