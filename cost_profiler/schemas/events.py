from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Provider = Literal["openai", "anthropic", "google-gemini"]

MAX_BATCH_SIZE = 500


class LlmEvent(BaseModel):
    """One observed LLM call as emitted by a client interceptor."""

    model_config = ConfigDict(extra="ignore")

    traceId: str = Field(..., min_length=1, description="Groups the calls of one user action")
    spanId: str = Field(..., min_length=1, description="Unique per call")
    parentSpanId: Optional[str] = None
    feature: str = Field(..., min_length=1)
    userId: Optional[str] = None
    provider: Provider
    model: str = Field(..., min_length=1)
    inputTokens: int = Field(..., ge=0)
    outputTokens: int = Field(..., ge=0)
    cachedTokens: int = Field(0, ge=0)
    latencyMs: float = Field(..., ge=0)
    estimatedCostUsd: float = Field(..., ge=0, description="Client-side estimate")
    timestamp: datetime
    metadata: Optional[Dict[str, Any]] = None
    isStreaming: bool = False
    errorCode: Optional[str] = None
    retryCount: int = Field(0, ge=0)
    isError: bool = False


class BatchEventRequest(BaseModel):
    events: List[LlmEvent] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)
