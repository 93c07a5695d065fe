from typing import List

from pydantic import BaseModel, ConfigDict, Field

from pymaker.extract import extract_python_code


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str = Field(..., pattern="^(system|user|assistant)$")
    content: str


class ChatRequest(BaseModel):
    model: str
    messages: List[Turn]
    max_tokens: int = Field(4096, ge=1)
    temperature: float = Field(0.2, ge=0.0, le=2.0)


class ChatMessage(BaseModel):
    role: str = "assistant"
    content: str


class Choice(BaseModel):
    message: ChatMessage


class ChatResponse(BaseModel):
    choices: List[Choice]


class GeneratedArtifact(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw_response: str
    extracted_code: str

    @classmethod
    def from_raw(cls, raw: str) -> "GeneratedArtifact":
        return cls(raw_response=raw, extracted_code=extract_python_code(raw))
