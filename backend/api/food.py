from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.deps import get_food_search_service, http_error
from services.errors import MalformedDataError, UpstreamUnavailableError
from services.food_search_service import FoodSearchService

router = APIRouter(prefix="/food", tags=["food"])


@router.get("/search")
def search_food(
    q: str = Query(..., min_length=1, max_length=200),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    food_search: FoodSearchService = Depends(get_food_search_service),
):
    try:
        matches = food_search.search(q, limit)
    except (ValueError, UpstreamUnavailableError, MalformedDataError) as exc:
        raise http_error(exc) from exc
    return {"query": q, "results": [m.to_dict() for m in matches]}


@router.get("/status")
def food_search_status(food_search: FoodSearchService = Depends(get_food_search_service)):
    return food_search.status()
