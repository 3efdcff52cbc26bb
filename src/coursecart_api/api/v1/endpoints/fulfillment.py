from fastapi import APIRouter, Depends

from coursecart_api.api.dependencies.security import require_checkout_api_key
from coursecart_api.observability.fulfillment import get_fulfillment_store

router = APIRouter(
    prefix="/fulfillment",
    tags=["Fulfillment"],
    dependencies=[Depends(require_checkout_api_key)],
)


@router.get("/observability")
async def fulfillment_observability() -> dict[str, object]:
    """Counters for webhook deliveries and saga outcomes since process start."""
    return get_fulfillment_store().snapshot().as_dict()
