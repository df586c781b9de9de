from typing import Annotated

from fastapi import APIRouter, Depends, Path

from app.api.dependencies import get_price_service
from app.core.rate_limit import get_client_key
from app.schemas.price import ErrorResponse, PriceRecord
from app.services.price_service import PriceService

router = APIRouter(tags=["Prices"])

_ERROR_RESPONSES = {
    429: {"model": ErrorResponse, "description": "Too many requests (local or upstream)"},
    500: {"model": ErrorResponse, "description": "Upstream failure"},
}


@router.get(
    "/price/{coin_id}",
    response_model=PriceRecord,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown cryptocurrency id"},
        408: {"model": ErrorResponse, "description": "Upstream timed out"},
        **_ERROR_RESPONSES,
    },
)
async def get_price(
    coin_id: Annotated[str, Path(description="CoinGecko coin id, e.g. 'bitcoin'")],
    service: Annotated[PriceService, Depends(get_price_service)],
    client_key: Annotated[str, Depends(get_client_key)],
) -> PriceRecord:
    """Get the USD price, name and symbol of one cryptocurrency.

    Served from cache for five minutes after the first successful lookup.
    """
    return await service.get_price(coin_id, client_key=client_key)


@router.get(
    "/prices/{coin_ids}",
    response_model=dict[str, PriceRecord],
    responses=_ERROR_RESPONSES,
)
async def get_prices(
    coin_ids: Annotated[str, Path(description="Comma-separated CoinGecko coin ids")],
    service: Annotated[PriceService, Depends(get_price_service)],
    client_key: Annotated[str, Depends(get_client_key)],
) -> dict[str, PriceRecord]:
    """Get prices for several cryptocurrencies at once.

    Ids the provider does not recognise are omitted from the result rather
    than failing the request.
    """
    return await service.get_prices(coin_ids, client_key=client_key)
