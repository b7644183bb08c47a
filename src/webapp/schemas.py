"""
Pydantic models for request bodies and responses in the web application.

Provides request validation with sensible defaults and constraints.
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict


class MappingCreate(BaseModel):
    """Request model for adding a mapping."""

    sku: str = Field(..., min_length=1, description="Marketplace SKU")
    msku: str = Field(..., min_length=1, description="Master SKU")
    marketplace: str = Field("", description="Marketplace that issued the SKU")

    @validator('sku', 'msku', 'marketplace')
    def strip_whitespace(cls, v):
        """Strip surrounding whitespace."""
        return v.strip() if isinstance(v, str) else v

    class Config:
        """Pydantic config."""

        extra = "ignore"


class MappingUpdate(BaseModel):
    """
    Request model for updating a mapping.

    Only the fields that are set are applied.
    """

    msku: Optional[str] = Field(None, min_length=1, description="New master SKU")
    marketplace: Optional[str] = Field(None, description="New marketplace")

    @validator('msku', 'marketplace')
    def strip_whitespace(cls, v):
        """Strip surrounding whitespace."""
        return v.strip() if isinstance(v, str) else v

    class Config:
        """Pydantic config."""

        extra = "ignore"


class DetectResponse(BaseModel):
    """Response model for marketplace detection."""

    sku: str
    marketplace: Optional[str] = None


class CatalogResponse(BaseModel):
    """Registered marketplace formats in detection order."""

    marketplaces: List[str] = Field(default_factory=list)
    formats: Dict[str, str] = Field(default_factory=dict)
