"""Pydantic schemas for conversion metering"""
from typing import Optional

from pydantic import BaseModel, Field


class ConversionCheck(BaseModel):
    """Pre-flight entitlement query."""

    conversion_type: str = Field(..., description="Conversion kind, e.g. merge-pdf")
    file_size: int = Field(default=0, ge=0, description="Input size in bytes")
    session_id: Optional[str] = Field(default=None, description="Anonymous session id")


class ConversionTrack(BaseModel):
    """Report of a conversion the client is about to run."""

    conversion_type: str = Field(..., description="Conversion kind")
    file_size_mb: float = Field(default=0.0, ge=0, description="Input size in megabytes")
    session_id: Optional[str] = Field(default=None, description="Anonymous session id")


class UsageQuery(BaseModel):
    session_id: Optional[str] = None
