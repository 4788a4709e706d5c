"""
Pydantic schemas for event reads.
"""

from typing import Optional
from pydantic import BaseModel


class EventSummary(BaseModel):
    id: str
    title: str
    slug: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[int] = None  # minutes
    location: Optional[str] = None
    status: Optional[str] = None
    visibility: Optional[str] = None
    timezone: Optional[str] = None

    model_config = {"extra": "ignore"}
