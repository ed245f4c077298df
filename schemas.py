"""Pydantic models for classifier payloads, moderation decisions and API requests."""

from typing import Annotated, Iterator, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictBool, model_validator
from pydantic.alias_generators import to_camel

from categories import ERROR_CATEGORY, ModerationCategory

Score = Annotated[float, Field(ge=0.0, le=1.0)]


class CategoryFlags(BaseModel):
    """Per-category boolean verdicts returned by the classifier."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hate: StrictBool
    hate_threatening: StrictBool = Field(alias="hate/threatening")
    harassment: StrictBool
    harassment_threatening: StrictBool = Field(alias="harassment/threatening")
    self_harm: StrictBool = Field(alias="self-harm")
    self_harm_intent: StrictBool = Field(alias="self-harm/intent")
    self_harm_instructions: StrictBool = Field(alias="self-harm/instructions")
    sexual: StrictBool
    sexual_minors: StrictBool = Field(alias="sexual/minors")
    violence: StrictBool
    violence_graphic: StrictBool = Field(alias="violence/graphic")

    def get(self, category: ModerationCategory) -> bool:
        return getattr(self, category.field_name)


class CategoryScores(BaseModel):
    """Per-category probabilities in [0, 1] returned by the classifier."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hate: Score
    hate_threatening: Score = Field(alias="hate/threatening")
    harassment: Score
    harassment_threatening: Score = Field(alias="harassment/threatening")
    self_harm: Score = Field(alias="self-harm")
    self_harm_intent: Score = Field(alias="self-harm/intent")
    self_harm_instructions: Score = Field(alias="self-harm/instructions")
    sexual: Score
    sexual_minors: Score = Field(alias="sexual/minors")
    violence: Score
    violence_graphic: Score = Field(alias="violence/graphic")

    def get(self, category: ModerationCategory) -> float:
        return getattr(self, category.field_name)


class ClassifierResult(BaseModel):
    """One evaluation unit of a classifier response."""

    model_config = ConfigDict(frozen=True)

    # Kept for audit; the decision is driven by the per-category flags and scores.
    flagged: StrictBool = False
    categories: CategoryFlags
    category_scores: CategoryScores

    def iter_categories(self) -> Iterator[Tuple[ModerationCategory, bool, float]]:
        for category in ModerationCategory:
            yield category, self.categories.get(category), self.category_scores.get(category)


class ClassifierResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    model: str
    results: Tuple[ClassifierResult, ...]


class ModerationDecision(BaseModel):
    """Outcome of moderating one piece of text."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    is_allowed: bool
    flagged_categories: Tuple[str, ...] = ()
    confidence_score: Score = 0.0
    raw: Tuple[ClassifierResult, ...] = ()
    model: Optional[str] = None
    response_id: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _allowed_iff_nothing_flagged(self) -> "ModerationDecision":
        if self.is_allowed == bool(self.flagged_categories):
            raise ValueError("is_allowed must be true exactly when no category is flagged")
        if len(set(self.flagged_categories)) != len(self.flagged_categories):
            raise ValueError("flagged_categories must not contain duplicates")
        return self

    @classmethod
    def fail_closed(cls, error: str, model: Optional[str] = None) -> "ModerationDecision":
        """Blocking decision used whenever the classifier could not be consulted."""
        return cls(
            is_allowed=False,
            flagged_categories=(ERROR_CATEGORY,),
            confidence_score=1.0,
            model=model,
            response_id="error",
            error=error,
        )


class ModerateRequest(BaseModel):
    content: str = Field(..., description="Text to be moderated")


class CreatePostRequest(BaseModel):
    content: str = Field(..., description="Text of the post to publish")
