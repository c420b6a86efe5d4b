from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


Classification = Literal["correct", "partial", "incorrect"]
PointStatus = Literal["correct", "partial", "incorrect", "missing"]
QuestionType = Literal["essay", "short-answer", "multiple-choice", "text"]

# Labels of the older highlighter UI, still produced by some prompts
CLASSIFICATION_ALIASES: Dict[str, str] = {
	"success": "correct",
	"warning": "partial",
	"error": "incorrect",
}


def canonical_classification(value: Any) -> Any:
	if isinstance(value, str):
		key = value.strip().lower()
		return CLASSIFICATION_ALIASES.get(key, key)
	return value


class MarkSchemePoint(BaseModel):
	ordinal: int = Field(ge=1)
	text: str
	weight: int = Field(default=1, ge=1)
	exclusions: List[str] = Field(default_factory=list)
	ignored_phrases: List[str] = Field(default_factory=list)

	@field_validator("text")
	@classmethod
	def _text_not_blank(cls, value: str) -> str:
		value = value.strip()
		if not value:
			raise ValueError("mark scheme point text must not be empty")
		return value


class MarkScheme(BaseModel):
	points: List[MarkSchemePoint]
	additional_points: List[str] = Field(default_factory=list)
	ao_spec_ref: Optional[str] = None
	notes: List[str] = Field(default_factory=list)
	additional_notes: str = ""

	@field_validator("points")
	@classmethod
	def _points_not_empty(cls, value: List[MarkSchemePoint]) -> List[MarkSchemePoint]:
		if not value:
			raise ValueError("a mark scheme needs at least one point")
		return value

	@property
	def total_weight(self) -> int:
		return sum(p.weight for p in self.points)

	def point(self, ordinal: int) -> Optional[MarkSchemePoint]:
		for p in self.points:
			if p.ordinal == ordinal:
				return p
		return None


class Question(BaseModel):
	id: Optional[int] = None
	text: str
	max_marks: int = Field(gt=0)
	mark_scheme: MarkScheme
	paper_id: Optional[str] = None
	source: str = "manual"


class Highlight(BaseModel):
	span: str
	classification: Classification
	rationale: str = ""
	start: int = Field(ge=0)
	end: int = Field(ge=0)
	ordinal: Optional[int] = None

	def to_response(self) -> Dict[str, Any]:
		return {
			"span": self.span,
			"classification": self.classification,
			"rationale": self.rationale,
			"start": self.start,
			"end": self.end,
		}


class RawHighlight(BaseModel):
	"""A highlight as proposed by a judge, before it is checked against the answer."""

	text: str
	classification: Classification
	rationale: str = ""
	ordinal: Optional[int] = None
	# Offset hint; the reconciler verifies it rather than trusting it
	start: Optional[int] = Field(default=None, ge=0)

	@field_validator("classification", mode="before")
	@classmethod
	def _aliases(cls, value: Any) -> Any:
		return canonical_classification(value)


class PointVerdict(BaseModel):
	ordinal: int
	status: PointStatus
	evidence: str = ""

	@field_validator("status", mode="before")
	@classmethod
	def _aliases(cls, value: Any) -> Any:
		return canonical_classification(value)


class Judgment(BaseModel):
	"""What a judge decided about one answer; score is derived from it, never read from it."""

	verdicts: List[PointVerdict]
	highlights: List[RawHighlight] = Field(default_factory=list)
	feedback: Optional[str] = None
	strengths: List[str] = Field(default_factory=list)
	improvements: List[str] = Field(default_factory=list)
	marking_notes: Optional[str] = None
	reported_score: Optional[float] = None


class PointResult(BaseModel):
	ordinal: int
	text: str
	weight: int
	status: PointStatus
	awarded: int


class MarkingResult(BaseModel):
	score: int
	max_score: int
	feedback: str
	highlights: List[Highlight] = Field(default_factory=list)
	strengths: List[str] = Field(default_factory=list)
	improvements: List[str] = Field(default_factory=list)
	marking_notes: str = ""
	point_results: List[PointResult] = Field(default_factory=list)

	@model_validator(mode="after")
	def _score_in_range(self) -> "MarkingResult":
		if not 0 <= self.score <= self.max_score:
			raise ValueError(f"score {self.score} outside 0..{self.max_score}")
		return self

	def to_response(self) -> Dict[str, Any]:
		return {
			"score": self.score,
			"maxScore": self.max_score,
			"feedback": self.feedback,
			"highlights": [h.to_response() for h in self.highlights],
			"strengths": list(self.strengths),
			"improvements": list(self.improvements),
			"markingNotes": self.marking_notes,
		}


class QuestionDraft(BaseModel):
	question_number: str
	question_text: str
	max_marks: Optional[int] = None
	marks_raw: Optional[str] = None
	type: QuestionType = "text"
	mark_scheme: Optional[str] = None

	def to_response(self) -> Dict[str, Any]:
		return {
			"questionNumber": self.question_number,
			"questionText": self.question_text,
			"maxMarks": self.max_marks,
			"rawMarksField": self.marks_raw,
			"type": self.type,
			"markScheme": self.mark_scheme,
		}


class MarkSchemeDraft(BaseModel):
	question_number: str
	question_text: str
	max_marks: int
	mark_scheme: str
	scheme: MarkScheme
	type: QuestionType = "text"

	def to_response(self) -> Dict[str, Any]:
		return {
			"questionNumber": self.question_number,
			"questionText": self.question_text,
			"maxMarks": self.max_marks,
			"markScheme": self.mark_scheme,
			"type": self.type,
		}
