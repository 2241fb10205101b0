from typing import Optional

from pydantic import BaseModel, Field, SecretStr


class ModelConfig(BaseModel):
    """
    Resolved configuration for one OpenAI-compatible chat model.
    """

    ref: str = Field(..., description="Stable reference stored in session records")
    model: str
    base_url: str
    api_key: SecretStr
    temperature: float = 0.7
    max_tokens: Optional[int] = 1000


__all__ = ["ModelConfig"]
