from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be blank")
    return value


class TutorResult(CamelModel):
    title: str = ""
    simple_explanation: str = ""
    real_world_example: str = ""
    key_commands: list[str] = Field(default_factory=list)
    common_mistakes: list[str] = Field(default_factory=list)
    quick_check: list[str] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class TutorRequest(CamelModel):
    concept: str = Field(min_length=1, max_length=200)
    context: str | None = None
    stream: bool = False
    max_output_tokens: int | None = Field(default=None, ge=64, le=8192)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)

    @field_validator("concept")
    @classmethod
    def concept_not_blank(cls, value: str) -> str:
        return _require_text(value).strip()


class GenerateRequest(CamelModel):
    prompt: str = Field(min_length=1, max_length=20000)
    stream: bool = False

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        return _require_text(value)


class GenerateResponse(BaseModel):
    text: str
