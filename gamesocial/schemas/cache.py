from typing import List, Optional
from pydantic import BaseModel, Field


class CacheMetricsOut(BaseModel):
    hits: int
    misses: int
    sets: int
    evictions: int
    size: int
    memory_bytes: int
    hit_rate: float
    miss_rate: float
    average_response_time_ms: float
    inflight: int


class CacheEventOut(BaseModel):
    type: str
    key: Optional[str] = None
    timestamp: float
    reason: Optional[str] = None


class WarmIn(BaseModel):
    # defaults to the caller
    user_ids: Optional[List[int]] = Field(None, max_length=50)


class WarmOut(BaseModel):
    warmed: dict
