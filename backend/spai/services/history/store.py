"""
In-memory history store.

Ownership rules:
- A blank or missing user id means ANONYMOUS_USER
- Reading, updating or deleting another user's record raises
  PermissionDeniedError; an unknown id raises RecordNotFoundError

Ordering:
- Chat history for a session is oldest first; for a user, newest first
- Recipes and itineraries are newest first
"""
import itertools
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from spai.core.logging import get_logger
from spai.services.history.models import (
    ChatMessage,
    SavedItinerary,
    SavedRecipe,
    UpdateTravelRequest,
)

logger = get_logger(__name__)

ANONYMOUS_USER = "anonymous_user"


class RecordNotFoundError(LookupError):
    def __init__(self, kind: str, record_id):
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class PermissionDeniedError(PermissionError):
    def __init__(self, kind: str, record_id):
        super().__init__(f"You don't have permission to access this {kind}")
        self.kind = kind
        self.record_id = record_id


def normalize_user_id(user_id: Optional[str]) -> str:
    if user_id is None or not user_id.strip():
        return ANONYMOUS_USER
    return user_id.strip()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryStore:
    """Thread-safe store for saved chats, recipes and itineraries."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._chats: List[ChatMessage] = []
        self._recipes: Dict[int, SavedRecipe] = {}
        self._itineraries: Dict[int, SavedItinerary] = {}

    # Chat

    def save_chat(
        self,
        user_id: Optional[str],
        prompt: str,
        ai_response: str,
        session_id: Optional[str] = None,
    ) -> ChatMessage:
        with self._lock:
            message = ChatMessage(
                id=next(self._ids),
                user_id=normalize_user_id(user_id),
                user_message=prompt,
                ai_response=ai_response,
                session_id=session_id or None,
                timestamp=self._clock(),
            )
            self._chats.append(message)
        logger.info("chat_saved", record_id=message.id, session_id=message.session_id)
        return message

    def list_chats(self, user_id: Optional[str], session_id: Optional[str] = None) -> List[ChatMessage]:
        owner = normalize_user_id(user_id)
        with self._lock:
            messages = [m for m in self._chats if m.user_id == owner]
        if session_id:
            return sorted(
                (m for m in messages if m.session_id == session_id),
                key=lambda m: (m.timestamp, m.id),
            )
        return sorted(messages, key=lambda m: (m.timestamp, m.id), reverse=True)

    def get_session(self, session_id: str, user_id: Optional[str]) -> List[ChatMessage]:
        """Messages of one session, oldest first. The session must belong to user_id."""
        owner = normalize_user_id(user_id)
        with self._lock:
            messages = sorted(
                (m for m in self._chats if m.session_id == session_id),
                key=lambda m: (m.timestamp, m.id),
            )
        if messages and messages[0].user_id != owner:
            raise PermissionDeniedError("session", session_id)
        return messages

    # Recipes

    def save_recipe(
        self,
        user_id: Optional[str],
        recipe_text: str,
        ingredients: str,
        cuisine: Optional[str] = None,
        dietary_restrictions: Optional[str] = None,
        recipe_name: Optional[str] = None,
    ) -> SavedRecipe:
        with self._lock:
            recipe = SavedRecipe(
                id=next(self._ids),
                user_id=normalize_user_id(user_id),
                recipe_text=recipe_text,
                ingredients=ingredients,
                cuisine=cuisine,
                dietary_restrictions=dietary_restrictions,
                recipe_name=recipe_name,
                saved_at=self._clock(),
            )
            self._recipes[recipe.id] = recipe
        logger.info("recipe_saved", record_id=recipe.id)
        return recipe

    def list_recipes(self, user_id: Optional[str]) -> List[SavedRecipe]:
        owner = normalize_user_id(user_id)
        with self._lock:
            recipes = [r for r in self._recipes.values() if r.user_id == owner]
        return sorted(recipes, key=lambda r: (r.saved_at, r.id), reverse=True)

    def get_recipe(self, recipe_id: int, user_id: Optional[str]) -> SavedRecipe:
        with self._lock:
            return self._owned(self._recipes, "recipe", recipe_id, user_id)

    def delete_recipe(self, recipe_id: int, user_id: Optional[str]) -> None:
        with self._lock:
            self._owned(self._recipes, "recipe", recipe_id, user_id)
            del self._recipes[recipe_id]
        logger.info("recipe_deleted", record_id=recipe_id)

    # Itineraries

    def save_itinerary(
        self,
        user_id: Optional[str],
        destination: str,
        days: int,
        itinerary_text: str,
        interests: Optional[str] = None,
        budget: Optional[str] = None,
        trip_name: Optional[str] = None,
    ) -> SavedItinerary:
        with self._lock:
            itinerary = SavedItinerary(
                id=next(self._ids),
                user_id=normalize_user_id(user_id),
                destination=destination,
                days=days,
                interests=interests,
                budget=budget,
                itinerary_text=itinerary_text,
                trip_name=trip_name or f"{destination} - {days} days",
                saved_at=self._clock(),
            )
            self._itineraries[itinerary.id] = itinerary
        logger.info("itinerary_saved", record_id=itinerary.id)
        return itinerary

    def list_itineraries(self, user_id: Optional[str]) -> List[SavedItinerary]:
        owner = normalize_user_id(user_id)
        with self._lock:
            itineraries = [i for i in self._itineraries.values() if i.user_id == owner]
        return sorted(itineraries, key=lambda i: (i.saved_at, i.id), reverse=True)

    def search_itineraries(self, user_id: Optional[str], destination: str) -> List[SavedItinerary]:
        """Case-insensitive substring match on destination."""
        needle = (destination or "").strip().lower()
        return [i for i in self.list_itineraries(user_id) if needle in i.destination.lower()]

    def get_itinerary(self, itinerary_id: int, user_id: Optional[str]) -> SavedItinerary:
        with self._lock:
            return self._owned(self._itineraries, "itinerary", itinerary_id, user_id)

    def update_itinerary(self, itinerary_id: int, update: UpdateTravelRequest) -> SavedItinerary:
        changes = update.model_dump(exclude_unset=True, exclude_none=True, exclude={"user_id"})
        with self._lock:
            existing = self._owned(self._itineraries, "itinerary", itinerary_id, update.user_id)
            updated = existing.model_copy(update=changes)
            self._itineraries[itinerary_id] = updated
        logger.info("itinerary_updated", record_id=itinerary_id, fields=sorted(changes))
        return updated

    def delete_itinerary(self, itinerary_id: int, user_id: Optional[str]) -> None:
        with self._lock:
            self._owned(self._itineraries, "itinerary", itinerary_id, user_id)
            del self._itineraries[itinerary_id]
        logger.info("itinerary_deleted", record_id=itinerary_id)

    @staticmethod
    def _owned(records: dict, kind: str, record_id: int, user_id: Optional[str]):
        """Look up a record and check ownership. Caller holds the lock."""
        record = records.get(record_id)
        if record is None:
            raise RecordNotFoundError(kind, record_id)
        if record.user_id != normalize_user_id(user_id):
            raise PermissionDeniedError(kind, record_id)
        return record


_history_store: Optional[HistoryStore] = None


def get_history_store() -> HistoryStore:
    """Global singleton accessor for the history store."""
    global _history_store
    if _history_store is None:
        _history_store = HistoryStore()
    return _history_store
