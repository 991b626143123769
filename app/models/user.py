"""
Actor and authority models.

Authentication happens outside this service; requests arrive with an
already-verified actor identity and role.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional
from enum import Enum

from app.services.departments import DEPARTMENTS


class ActorRole(str, Enum):
    CITIZEN = "citizen"
    ADMIN = "admin"
    AUTHORITY = "authority"


class Actor(BaseModel):
    """Authenticated caller of an engine operation."""
    id: str = Field(..., min_length=1)
    role: ActorRole = ActorRole.CITIZEN


class Authority(BaseModel):
    """Field-staff account that issues are routed to."""
    id: str = Field(..., description="Store document ID")
    name: Optional[str] = Field(None, max_length=100)
    department: str = Field(..., min_length=1)
    is_active: bool = True
    latitude: Optional[float] = Field(None, ge=-90, le=90, description="Last known latitude")
    longitude: Optional[float] = Field(None, ge=-180, le=180, description="Last known longitude")

    @field_validator("department")
    @classmethod
    def _known_department(cls, value: str) -> str:
        if value not in DEPARTMENTS:
            raise ValueError(f"Unknown department: {value!r}")
        return value

    @model_validator(mode="after")
    def _coordinates_pair(self):
        # Half a coordinate cannot be ranked; drop it.
        if (self.latitude is None) != (self.longitude is None):
            self.latitude = None
            self.longitude = None
        return self

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None
