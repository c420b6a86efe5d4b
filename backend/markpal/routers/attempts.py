from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..db import get_db
from ..store import attempt_status, attempt_to_dict, get_attempt, load_history, set_saved
from .auth import User, get_current_user

router = APIRouter(prefix="/question-attempts", tags=["attempts"])


class UpdateAttemptRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	is_saved: bool = Field(alias="isSaved")
	name: Optional[str] = None


class BatchStatusRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	question_ids: List[int] = Field(alias="questionIds")


@router.get("")
async def list_attempts(
	question_id: Optional[int] = Query(default=None, alias="questionId"),
	saved: Optional[bool] = None,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	rows = load_history(db, user.username, question_id)
	if saved is not None:
		rows = [r for r in rows if bool(r.is_saved) == saved]
	return {"success": True, "data": [attempt_to_dict(r, include_result=question_id is not None) for r in rows]}


# Declared before "/{attempt_id}" routes so the path is not read as an id
@router.post("/batch-status")
async def batch_status(req: BatchStatusRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	status = attempt_status(db, user.username, req.question_ids)
	return {"success": True, "data": {str(qid): entry for qid, entry in status.items()}}


@router.get("/{attempt_id}")
async def get_attempt_route(attempt_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_attempt(db, user.username, attempt_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Attempt not found")
	return {"success": True, "data": attempt_to_dict(row)}


@router.put("/{attempt_id}")
async def update_attempt(attempt_id: int, req: UpdateAttemptRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_attempt(db, user.username, attempt_id)
	if row is None:
		raise HTTPException(status_code=404, detail="Attempt not found")
	row = set_saved(db, row, req.is_saved, req.name)
	return {"success": True, "data": attempt_to_dict(row)}
