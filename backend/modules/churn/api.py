import asyncio
from typing import Awaitable, List, Optional, TypeVar

from fastapi import HTTPException, Query, Request

from core.base_api import BaseAPI, get, post
from core.decorators import auth_required, internal_key_required
from core.registry import ServiceRegistry
from core.logger import Logger
from .errors import ChurnBackendError, SellerNotFoundError
from .models import PurchaseUpdateEvent
from .service import ChurnService
from .utils import ChurnUtils

logger = Logger(__name__)

T = TypeVar("T")

DISCONNECT_POLL_INTERVAL_SEC = 0.5


async def run_until_disconnected(request: Request, coro: Awaitable[T], poll_interval: float = DISCONNECT_POLL_INTERVAL_SEC) -> T:
    """
    Await `coro` while watching the client connection. When the client goes
    away the work is cancelled, so no partial cache writes happen.
    """
    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info(f"Client disconnected from {request.url.path}, cancelling")
                task.cancel()
                raise HTTPException(status_code=499, detail="Client closed request")
    finally:
        if not task.done():
            task.cancel()


class ChurnAPI(BaseAPI):
    utils: ChurnUtils
    service: ChurnService

    @get("/")
    @auth_required
    async def index(self, request: Request):
        seller = self.utils.seller_from_doc(request.state.seller)
        props = await self.service.page_props(seller)
        return props.model_dump()

    @get("/data_by_date")
    @auth_required
    async def data_by_date(
        self,
        request: Request,
        start_time: Optional[str] = Query(None),
        end_time: Optional[str] = Query(None),
        aggregate_by: Optional[str] = Query(None),
        product_ids: Optional[List[str]] = Query(None),
        bracketed_product_ids: Optional[List[str]] = Query(None, alias="product_ids[]"),
    ):
        # browsers serialize arrays as product_ids[]=...
        if bracketed_product_ids:
            product_ids = (product_ids or []) + bracketed_product_ids
        seller = self.utils.seller_from_doc(request.state.seller)
        try:
            payload = await run_until_disconnected(
                request,
                self.service.data_by_date(seller, start_time, end_time, aggregate_by, product_ids),
            )
        except ChurnBackendError as e:
            logger.error(f"Churn data unavailable for seller {seller.id}: {e}")
            raise HTTPException(status_code=503, detail="Churn data is temporarily unavailable")
        return payload.model_dump(exclude_none=True)

    @post("/purchase_updated")
    @internal_key_required
    async def purchase_updated(self, request: Request, payload: PurchaseUpdateEvent):
        try:
            day = await self.service.purchase_updated(payload)
        except SellerNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        if day is None:
            return {"scheduled": False}
        return {"scheduled": True, "date": day.isoformat()}


ServiceRegistry.register_api("churn", ChurnAPI("/churn").router)
