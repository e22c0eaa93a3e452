# routes/oauth.py
import logging
import secrets
from fastapi import APIRouter, Depends

import schemas
from dependencies import get_courier
from settings import settings
from services.couriers import get_courier_service
from services.couriers.melhor_envio import MelhorEnvioCourierService

router = APIRouter(prefix='/admin/melhor-envio', tags=['Carrier OAuth'])

@router.get('/oauth')
async def authorization_url(courier: MelhorEnvioCourierService = Depends(get_courier)):
    """Where an admin authorizes the app on the carrier's site."""
    state = secrets.token_urlsafe(16)
    return {"url": courier.tokens.authorization_url(state, settings.MELHOR_ENVIO_SCOPES), "state": state}

@router.post('/oauth')
async def exchange_code(payload: schemas.OAuthCodeRequest):
    courier = get_courier_service(payload.account_key)
    token = await courier.tokens.exchange_authorization_code(payload.code)
    logging.info(f"Carrier account '{payload.account_key}' authorized through OAuth")
    return {"success": True, "expires_at": token.expires_at}
