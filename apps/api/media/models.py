from typing import List, Optional
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


class Flashcard(BaseModel):
    front: str = Field(validation_alias=AliasChoices("front", "question"))
    back: str = Field(validation_alias=AliasChoices("back", "answer"))

    @field_validator("front", "back")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("flashcard text must not be empty")
        return value


class TopicDraft(BaseModel):
    """One topic as returned by the generative segmenter."""

    title: str = Field(min_length=1, max_length=200)
    start_time: float = Field(ge=0, validation_alias=AliasChoices("start_time", "startTime"))
    end_time: float = Field(gt=0, validation_alias=AliasChoices("end_time", "endTime"))
    content: str = Field(min_length=1)

    @model_validator(mode="after")
    def _range_is_forward(self) -> "TopicDraft":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class TopicOutline(BaseModel):
    topics: List[TopicDraft] = Field(min_length=4, max_length=6)

    @model_validator(mode="after")
    def _ordered_and_disjoint(self) -> "TopicOutline":
        for previous, current in zip(self.topics, self.topics[1:]):
            if current.start_time <= previous.start_time:
                raise ValueError("topic start times must strictly increase")
            if current.start_time < previous.end_time:
                raise ValueError("topic time ranges must not overlap")
        return self


class Topic(BaseModel):
    """Topic as persisted on a video analysis."""

    id: str
    title: str
    start_time: float
    end_time: float
    content: str
    summary: Optional[str] = None
    flashcards: Optional[List[Flashcard]] = None
