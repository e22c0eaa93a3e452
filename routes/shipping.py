# routes/shipping.py
import logging
from typing import List
from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

import schemas
from database import get_db
from dependencies import get_courier
from settings import settings
from services import account_service, courier_service, label_service, quote_service
from services.couriers.common import Quote, ShipmentRequest
from services.couriers.errors import ShippingError
from services.couriers.melhor_envio import MelhorEnvioCourierService

router = APIRouter(prefix='/admin/shipping', tags=['Shipping'])

@router.get('/test')
async def test_carrier_connection(courier: MelhorEnvioCourierService = Depends(get_courier)):
    """Pre-flight check: company profile and balance must both load."""
    try:
        data = await account_service.preflight(courier)
    except ShippingError as e:
        logging.error(f"Carrier connection test failed: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "Carrier connection test failed", "details": jsonable_encoder({"message": e.message, "info": e.details})},
        )
    return {"success": True, "data": jsonable_encoder(data)}

@router.post('/quotes', response_model=List[Quote])
async def calculate_quotes(payload: schemas.QuoteRequest, courier: MelhorEnvioCourierService = Depends(get_courier)):
    request = ShipmentRequest(**payload.model_dump())
    return await quote_service.get_quotes(courier, request)

@router.post('/quotes/batch', response_model=schemas.BatchQuoteResponse)
async def calculate_batch_quotes(payload: schemas.BatchQuoteRequest, courier: MelhorEnvioCourierService = Depends(get_courier)):
    return await quote_service.get_quotes_for_orders(courier, payload.orders, payload.from_postal_code)

@router.post('/orders/{order_id}/labels', response_model=schemas.LabelRead, status_code=201)
async def purchase_label(
    order_id: int,
    payload: schemas.PurchaseLabelRequest,
    db: AsyncSession = Depends(get_db),
    courier: MelhorEnvioCourierService = Depends(get_courier),
):
    return await label_service.purchase_label(db, courier, order_id, payload.quote, settings.SENDER)

@router.post('/labels/{label_id}/cancel', response_model=schemas.LabelRead)
async def cancel_label(label_id: int, db: AsyncSession = Depends(get_db), courier: MelhorEnvioCourierService = Depends(get_courier)):
    return await label_service.cancel_label(db, courier, label_id)

@router.get('/labels/{label_id}/print', response_model=schemas.PrintUrl)
async def print_label(label_id: int, db: AsyncSession = Depends(get_db), courier: MelhorEnvioCourierService = Depends(get_courier)):
    url = await label_service.get_label_print_url(db, courier, label_id)
    return {"label_id": label_id, "url": url}

@router.post('/tracking/sync', response_model=schemas.TrackingSyncResult)
async def sync_tracking(db: AsyncSession = Depends(get_db), courier: MelhorEnvioCourierService = Depends(get_courier)):
    return await courier_service.sync_tracking(db, courier)
