"""
Per-domain request definitions.

Each builder validates and normalizes raw input, then returns an
AIRequest carrying everything the pipeline needs: the rate-limit
subject, cache namespace and key, circuit name, prompt text, completion
options and the canned fallback.

Builders raise InvalidInputError before anything touches the rate
limiter or the cache, so malformed input never consumes admission
budget.

Cache keys are the underscore-joined normalized parameters, e.g. recipe
("chicken, rice", "asian", "") -> "chicken, rice_asian_".
"""
from dataclasses import dataclass
from typing import Optional

from spai.core import cache
from spai.services.ai.llm_client import CompletionOptions

CHAT = "chat"
CHAT_OPTIONS = "chat_options"
RECIPE = "recipe"
TRAVEL = "travel"

DEFAULT_CUISINE = "any"
DEFAULT_DIETARY = ""
DEFAULT_INTERESTS = "general sightseeing"
DEFAULT_BUDGET = "moderate"
DEFAULT_MAX_DAYS = 30

CHAT_FALLBACK = "I'm currently experiencing high demand. Please try again in a moment."

RECIPE_FALLBACK = (
    "Simple Recipe:\n\n"
    "1. Heat oil in a pan\n"
    "2. Add your ingredients and stir-fry\n"
    "3. Season to taste\n"
    "4. Serve hot\n\n"
    "For a detailed AI-generated recipe, please try again later."
)

TRAVEL_FALLBACK_TEMPLATE = (
    "Quick guide for {destination}:\n"
    "Day 1: Arrival and explore main attractions\n"
    "Day 2: Cultural sites and local experiences\n"
    "Day 3: Nature and outdoor activities\n"
    "Day 4: Shopping and relaxation\n"
    "Day 5: Departure\n\n"
    "Please try again later for a detailed AI-generated itinerary."
)

RECIPE_PROMPT_TEMPLATE = """You are a professional chef. Create a complete recipe using the ingredients below.

Ingredients: {ingredients}
Cuisine: {cuisine}
Dietary restrictions: {dietary}

The recipe should include:
- A recipe title
- The full ingredient list with quantities
- Numbered step-by-step cooking instructions
- Preparation and cooking time
- Serving suggestions

Keep the instructions clear enough for a home cook."""

TRAVEL_PROMPT_TEMPLATE = """You are an expert travel consultant. Create a detailed, day-by-day travel itinerary.

Destination: {destination}
Number of days: {days}
Interests: {interests}
Budget: {budget}

The itinerary should include:
- Daily activities (morning, afternoon, evening)
- Recommended local restaurants or food experiences
- Cultural tips and hidden gems
- Practical advice (transport, dress code, etc.)

Write in a friendly, enthusiastic tone."""


class InvalidInputError(ValueError):
    """Request parameters are missing or malformed (caller fault)."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


@dataclass(frozen=True)
class AIRequest:
    """A normalized request, ready for the orchestration pipeline."""

    domain: str
    subject: str
    namespace: str
    circuit: str
    cache_key: str
    prompt: str
    fallback_text: str
    options: Optional[CompletionOptions] = None

    def fallback(self) -> str:
        return self.fallback_text


def _required(field: str, value: Optional[str]) -> str:
    if value is None or not value.strip():
        raise InvalidInputError(field, f"{field} is required")
    return value.strip()


def _optional(value: Optional[str], default: str) -> str:
    if value is None or not value.strip():
        return default
    return value.strip()


def chat_request(prompt: Optional[str]) -> AIRequest:
    text = _required("prompt", prompt)
    return AIRequest(
        domain=CHAT,
        subject=CHAT,
        namespace=cache.CHAT_RESPONSES,
        circuit=CHAT,
        cache_key=text,
        prompt=text,
        fallback_text=CHAT_FALLBACK,
    )


def chat_options_request(
    prompt: Optional[str],
    model: Optional[str] = None,
    default_model: str = "llama3.2:1b",
) -> AIRequest:
    """Chat with an explicit model; shares the chat admission budget."""
    text = _required("prompt", prompt)
    model_name = _optional(model, default_model)
    return AIRequest(
        domain=CHAT_OPTIONS,
        subject=CHAT,
        namespace=cache.CHAT_OPTIONS,
        circuit=CHAT_OPTIONS,
        cache_key=f"{model_name}_{text}",
        prompt=text,
        fallback_text=CHAT_FALLBACK,
        options=CompletionOptions(model=model_name),
    )


def recipe_request(
    ingredients: Optional[str],
    cuisine: Optional[str] = None,
    dietary_restrictions: Optional[str] = None,
) -> AIRequest:
    ingredients_text = _required("ingredients", ingredients)
    cuisine_text = _optional(cuisine, DEFAULT_CUISINE).lower()
    dietary_text = _optional(dietary_restrictions, DEFAULT_DIETARY)
    prompt = RECIPE_PROMPT_TEMPLATE.format(
        ingredients=ingredients_text,
        cuisine=cuisine_text,
        dietary=dietary_text or "none",
    )
    return AIRequest(
        domain=RECIPE,
        subject=RECIPE,
        namespace=cache.RECIPES,
        circuit=RECIPE,
        cache_key=f"{ingredients_text}_{cuisine_text}_{dietary_text}",
        prompt=prompt,
        fallback_text=RECIPE_FALLBACK,
    )


def travel_request(
    destination: Optional[str],
    days,
    interests: Optional[str] = None,
    budget: Optional[str] = None,
    max_days: int = DEFAULT_MAX_DAYS,
) -> AIRequest:
    destination_text = _required("destination", destination)
    try:
        day_count = int(days)
    except (TypeError, ValueError):
        raise InvalidInputError("days", "days must be an integer") from None
    if day_count < 1 or day_count > max_days:
        raise InvalidInputError("days", f"days must be between 1 and {max_days}")
    interests_text = _optional(interests, DEFAULT_INTERESTS)
    budget_text = _optional(budget, DEFAULT_BUDGET).lower()

    prompt = TRAVEL_PROMPT_TEMPLATE.format(
        destination=destination_text,
        days=day_count,
        interests=interests_text,
        budget=budget_text,
    )
    return AIRequest(
        domain=TRAVEL,
        subject=TRAVEL,
        namespace=cache.ITINERARIES,
        circuit=TRAVEL,
        cache_key=f"{destination_text}_{day_count}_{interests_text}_{budget_text}",
        prompt=prompt,
        fallback_text=TRAVEL_FALLBACK_TEMPLATE.format(destination=destination_text),
    )
