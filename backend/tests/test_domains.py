"""
Unit tests for per-domain normalization, cache keys, prompts and fallbacks.
"""
import pytest

from spai.core import cache
from spai.services.ai import domains
from spai.services.ai.domains import InvalidInputError


def test_chat_request_trims_prompt():
    request = domains.chat_request("  What is RAG?  ")
    assert request.cache_key == "What is RAG?"
    assert request.prompt == "What is RAG?"
    assert request.subject == domains.CHAT
    assert request.namespace == cache.CHAT_RESPONSES
    assert request.fallback() == domains.CHAT_FALLBACK


@pytest.mark.parametrize("prompt", [None, "", "   "])
def test_chat_request_requires_prompt(prompt):
    with pytest.raises(InvalidInputError) as exc_info:
        domains.chat_request(prompt)
    assert exc_info.value.field == "prompt"


def test_chat_options_request():
    request = domains.chat_options_request("hi", " mistral ")
    assert request.subject == domains.CHAT
    assert request.circuit == domains.CHAT_OPTIONS
    assert request.namespace == cache.CHAT_OPTIONS
    assert request.cache_key == "mistral_hi"
    assert request.options.model == "mistral"


def test_chat_options_default_model():
    request = domains.chat_options_request("hi", None, default_model="llama3.2:1b")
    assert request.options.model == "llama3.2:1b"
    assert request.cache_key == "llama3.2:1b_hi"


def test_recipe_request_key_and_defaults():
    request = domains.recipe_request("chicken, rice", "asian", "")
    assert request.cache_key == "chicken, rice_asian_"

    defaults = domains.recipe_request("eggs")
    assert defaults.cache_key == "eggs_any_"


def test_recipe_request_normalization():
    request = domains.recipe_request(" tofu ", " Thai ", " vegan ")
    assert request.cache_key == "tofu_thai_vegan"
    assert "Ingredients: tofu" in request.prompt
    assert "Cuisine: thai" in request.prompt
    assert "Dietary restrictions: vegan" in request.prompt


def test_recipe_fallback_text():
    request = domains.recipe_request("eggs")
    assert request.fallback().startswith("Simple Recipe:")
    assert request.fallback().endswith("please try again later.")


def test_travel_request_key_and_prompt():
    request = domains.travel_request("Lisbon", 3, "food, museums", "Budget")
    assert request.cache_key == "Lisbon_3_food, museums_budget"
    assert "You are an expert travel consultant." in request.prompt
    assert "Destination: Lisbon" in request.prompt
    assert "Number of days: 3" in request.prompt


def test_travel_request_defaults():
    request = domains.travel_request(" Kyoto ", "4")
    assert request.cache_key == "Kyoto_4_general sightseeing_moderate"


def test_travel_fallback_names_destination():
    fallback = domains.travel_request("Lisbon", 3).fallback()
    assert fallback.startswith("Quick guide for Lisbon:")
    assert "Day 5: Departure" in fallback


@pytest.mark.parametrize("days", [0, 31, "x", None])
def test_travel_request_rejects_bad_days(days):
    with pytest.raises(InvalidInputError) as exc_info:
        domains.travel_request("Paris", days)
    assert exc_info.value.field == "days"


def test_travel_request_custom_max_days():
    assert domains.travel_request("Paris", 60, max_days=90).cache_key.startswith("Paris_60")


def test_travel_request_requires_destination():
    with pytest.raises(InvalidInputError):
        domains.travel_request(" ", 3)


def test_invalid_input_is_value_error():
    assert issubclass(InvalidInputError, ValueError)
