from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class IngestResponse(BaseModel):
    success: bool
    count: int


class PaginationInfo(BaseModel):
    nextCursor: Optional[str] = None
    hasMore: bool


class EventListResponse(BaseModel):
    data: List[Dict[str, Any]]
    pagination: PaginationInfo


class RealtimeTotals(BaseModel):
    totalCost: float
    totalRequests: int
    totalTokens: int
