"""
Travel itinerary endpoints.

GET    /api/travel/itinerary?destination=&days=&interests=&budget=
GET    /api/travel/itinerary/async
POST   /api/travel/save
GET    /api/travel/saved?userId=
GET    /api/travel/saved/search?userId=&destination=
GET    /api/travel/saved/{id}?userId=
PUT    /api/travel/saved/{id}
DELETE /api/travel/saved/{id}?userId=
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from spai.routes.responses import ok_response, orchestration_response
from spai.services.ai import domains
from spai.services.ai.orchestration import Orchestrator, get_orchestrator
from spai.services.history import HistoryStore, get_history_store
from spai.services.history.models import SaveTravelRequest, UpdateTravelRequest

router = APIRouter()


@router.get("/itinerary")
def itinerary(
    request: Request,
    destination: Optional[str] = Query(None),
    days: Optional[int] = Query(None, description="Trip length in days"),
    interests: Optional[str] = Query(None),
    budget: Optional[str] = Query(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    result = orchestrator.travel(destination, days, interests, budget)
    return orchestration_response(request, result)


@router.get("/itinerary/async")
async def itinerary_async(
    request: Request,
    destination: Optional[str] = Query(None),
    days: Optional[int] = Query(None, description="Trip length in days"),
    interests: Optional[str] = Query(None),
    budget: Optional[str] = Query(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    deferred = orchestrator.travel_async(destination, days, interests, budget)
    result = await orchestrator.resolve(domains.TRAVEL, deferred)
    return orchestration_response(request, result)


@router.post("/save")
def save_itinerary(
    request: Request,
    body: SaveTravelRequest,
    store: HistoryStore = Depends(get_history_store),
):
    itinerary = store.save_itinerary(
        body.user_id,
        destination=body.destination,
        days=body.days,
        itinerary_text=body.itinerary_text,
        interests=body.interests,
        budget=body.budget,
        trip_name=body.trip_name,
    )
    return ok_response(request, itinerary.to_payload(), message="Itinerary saved successfully")


@router.get("/saved")
def saved_itineraries(
    request: Request,
    user_id: Optional[str] = Query(None, alias="userId"),
    store: HistoryStore = Depends(get_history_store),
):
    itineraries = store.list_itineraries(user_id)
    return ok_response(request, [i.to_payload() for i in itineraries], message="Itineraries retrieved")


@router.get("/saved/search")
def search_saved_itineraries(
    request: Request,
    destination: str = Query(..., description="Destination substring (case-insensitive)"),
    user_id: Optional[str] = Query(None, alias="userId"),
    store: HistoryStore = Depends(get_history_store),
):
    itineraries = store.search_itineraries(user_id, destination)
    return ok_response(request, [i.to_payload() for i in itineraries], message="Search results")


@router.get("/saved/{itinerary_id}")
def saved_itinerary(
    request: Request,
    itinerary_id: int,
    user_id: Optional[str] = Query(None, alias="userId"),
    store: HistoryStore = Depends(get_history_store),
):
    itinerary = store.get_itinerary(itinerary_id, user_id)
    return ok_response(request, itinerary.to_payload(), message="Itinerary retrieved")


@router.put("/saved/{itinerary_id}")
def update_saved_itinerary(
    request: Request,
    itinerary_id: int,
    body: UpdateTravelRequest,
    store: HistoryStore = Depends(get_history_store),
):
    itinerary = store.update_itinerary(itinerary_id, body)
    return ok_response(request, itinerary.to_payload(), message="Itinerary updated successfully")


@router.delete("/saved/{itinerary_id}")
def delete_saved_itinerary(
    request: Request,
    itinerary_id: int,
    user_id: Optional[str] = Query(None, alias="userId"),
    store: HistoryStore = Depends(get_history_store),
):
    store.delete_itinerary(itinerary_id, user_id)
    return ok_response(request, message="Itinerary deleted successfully")
