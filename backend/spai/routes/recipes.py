"""
Recipe endpoints.

GET    /api/recipes/create?ingredients=&cuisine=&dietaryRestrictions=
GET    /api/recipes/create/async
POST   /api/recipes/save
GET    /api/recipes/saved?userId=
GET    /api/recipes/saved/{id}?userId=
DELETE /api/recipes/saved/{id}?userId=
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from spai.routes.responses import ok_response, orchestration_response
from spai.services.ai import domains
from spai.services.ai.orchestration import Orchestrator, get_orchestrator
from spai.services.history import HistoryStore, get_history_store
from spai.services.history.models import SaveRecipeRequest

router = APIRouter()


@router.get("/create")
def create_recipe(
    request: Request,
    ingredients: Optional[str] = Query(None, description="Comma separated ingredients"),
    cuisine: Optional[str] = Query(domains.DEFAULT_CUISINE),
    dietary_restrictions: Optional[str] = Query(None, alias="dietaryRestrictions"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    result = orchestrator.recipe(ingredients, cuisine, dietary_restrictions)
    return orchestration_response(request, result)


@router.get("/create/async")
async def create_recipe_async(
    request: Request,
    ingredients: Optional[str] = Query(None, description="Comma separated ingredients"),
    cuisine: Optional[str] = Query(domains.DEFAULT_CUISINE),
    dietary_restrictions: Optional[str] = Query(None, alias="dietaryRestrictions"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    deferred = orchestrator.recipe_async(ingredients, cuisine, dietary_restrictions)
    result = await orchestrator.resolve(domains.RECIPE, deferred)
    return orchestration_response(request, result)


@router.post("/save")
def save_recipe(
    request: Request,
    body: SaveRecipeRequest,
    store: HistoryStore = Depends(get_history_store),
):
    recipe = store.save_recipe(
        body.user_id,
        recipe_text=body.recipe_text,
        ingredients=body.ingredients,
        cuisine=body.cuisine,
        dietary_restrictions=body.dietary_restrictions,
        recipe_name=body.recipe_name,
    )
    return ok_response(request, recipe.to_payload(), message="Recipe saved successfully")


@router.get("/saved")
def saved_recipes(
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId"),
    store: HistoryStore = Depends(get_history_store),
):
    recipes = store.list_recipes(user_id)
    return ok_response(request, [r.to_payload() for r in recipes], message="Recipes retrieved")


@router.get("/saved/{recipe_id}")
def saved_recipe(
    request: Request,
    recipe_id: int,
    user_id: Optional[str] = Query(None, alias="userId"),
    store: HistoryStore = Depends(get_history_store),
):
    recipe = store.get_recipe(recipe_id, user_id)
    return ok_response(request, recipe.to_payload(), message="Recipe retrieved")


@router.delete("/saved/{recipe_id}")
def delete_saved_recipe(
    request: Request,
    recipe_id: int,
    user_id: Optional[str] = Query(None, alias="userId"),
    store: HistoryStore = Depends(get_history_store),
):
    store.delete_recipe(recipe_id, user_id)
    return ok_response(request, message="Recipe deleted successfully")
