"""
Pydantic models for saved history records and their request bodies.

JSON uses camelCase field names (userId, aiResponse, ...); Python code
uses snake_case. Both spellings are accepted on input.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ChatMessage(CamelModel):
    id: int
    user_id: str
    user_message: str
    ai_response: str
    session_id: Optional[str] = None
    timestamp: datetime


class SavedRecipe(CamelModel):
    id: int
    user_id: str
    recipe_text: str
    ingredients: str
    cuisine: Optional[str] = None
    dietary_restrictions: Optional[str] = None
    recipe_name: Optional[str] = None
    saved_at: datetime


class SavedItinerary(CamelModel):
    id: int
    user_id: str
    destination: str
    days: int
    interests: Optional[str] = None
    budget: Optional[str] = None
    itinerary_text: str
    trip_name: str
    saved_at: datetime


class SaveChatRequest(CamelModel):
    prompt: str = Field(..., min_length=1)
    ai_response: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None


class SaveRecipeRequest(CamelModel):
    recipe_text: str = Field(..., min_length=1)
    ingredients: str = Field(..., min_length=1)
    cuisine: Optional[str] = None
    dietary_restrictions: Optional[str] = None
    recipe_name: Optional[str] = None
    user_id: Optional[str] = None


class SaveTravelRequest(CamelModel):
    destination: str = Field(..., min_length=1)
    days: int = Field(..., ge=1)
    interests: Optional[str] = None
    budget: Optional[str] = None
    itinerary_text: str = Field(..., min_length=1)
    trip_name: Optional[str] = None
    user_id: Optional[str] = None


class UpdateTravelRequest(CamelModel):
    """Partial update: only fields that are set are applied."""

    destination: Optional[str] = None
    days: Optional[int] = Field(None, ge=1)
    interests: Optional[str] = None
    budget: Optional[str] = None
    itinerary_text: Optional[str] = None
    trip_name: Optional[str] = None
    user_id: Optional[str] = None
