"""Request models for chat exchanges."""

from pydantic import BaseModel, Field, field_validator


class ChatRequest(BaseModel):
    """One user message sent into an existing session."""

    session_id: str = Field(min_length=1, max_length=128)
    message: str = Field(min_length=1, max_length=100_000)
    system_prompt: str | None = Field(default=None, max_length=32_768)
    model: str | None = Field(default=None, max_length=256)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=8192)
    tool_choice: str | None = Field(
        default=None,
        description="auto, none, required or the name of a registered tool",
    )
    use_tools: bool = Field(default=True, description="Offer registered tools to the model")

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v
