# dependencies.py
from services.couriers import get_courier_service
from services.couriers.melhor_envio import MelhorEnvioCourierService

async def get_courier() -> MelhorEnvioCourierService:
    """The shared carrier service of the default account."""
    return get_courier_service()
