"""
Wheel of Fortune schemas.
"""

from pydantic import BaseModel, Field


class SpinRequest(BaseModel):
    multiplier: int = Field(default=1, ge=1, description="Number of bet units to spin")
