import json
from pathlib import Path
from typing import List, Dict, Any, Optional
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Models for the structures kept in the JSON files ---

class SenderAddress(BaseModel):
    """The shop's own address, used as `from` on every label."""
    name: str
    phone: str
    email: str
    address: str
    number: str
    district: str
    city: str
    postal_code: str
    state_abbr: Optional[str] = None
    complement: str = ""
    document: Optional[str] = None
    company_document: Optional[str] = None
    note: str = ""

class DefaultVolume(BaseModel):
    height: float = 2
    width: float = 12
    length: float = 17
    weight_per_item: float = 0.25
    items_per_stack: int = 3

# --- Loads the settings kept in the /config directory ---

def json_config_settings_source() -> Dict[str, Any]:
    """
    Loads settings from the .json files in the /config directory.
    """
    config_dir = Path(__file__).parent / 'config'
    config = {}

    def load_json(filename: str, key: str):
        filepath = config_dir / filename
        if filepath.exists():
            with open(filepath, 'r', encoding='utf-8') as f:
                config[key] = json.load(f)

    load_json('sender.json', 'SENDER')
    load_json('default_volume.json', 'DEFAULT_VOLUME')
    load_json('tracking_status_map.json', 'TRACKING_STATUS_MAP')

    return config


# --- Main settings class ---

class Settings(BaseSettings):
    # Loaded straight from .env
    DATABASE_URL: str
    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"

    # Melhor Envio account
    MELHOR_ENVIO_CLIENT_ID: str = ""
    MELHOR_ENVIO_CLIENT_SECRET: str = ""
    MELHOR_ENVIO_REFRESH_TOKEN: str = ""
    MELHOR_ENVIO_TOKEN: str = ""
    MELHOR_ENVIO_SANDBOX: bool = True
    MELHOR_ENVIO_REDIRECT_URI: str = ""
    MELHOR_ENVIO_USER_AGENT: str = "Shopmi (contato@shopmi.com.br)"
    MELHOR_ENVIO_SCOPES: List[str] = [
        "shipping-calculate", "shipping-cancel", "shipping-checkout",
        "shipping-companies", "shipping-generate", "shipping-preview",
        "shipping-print", "shipping-share", "shipping-tracking",
        "cart-read", "cart-write", "companies-read", "balance-read",
    ]
    # Accounts whose tokens this service manages (see scripts/seed_carrier_token.py)
    MELHOR_ENVIO_ACCOUNT_KEYS: List[str] = ["default"]

    # Carrier HTTP client
    CARRIER_TIMEOUT_SECONDS: float = 15.0
    CARRIER_MAX_ATTEMPTS: int = 3
    CARRIER_BACKOFF_BASE_SECONDS: float = 0.5
    CARRIER_BACKOFF_MAX_SECONDS: float = 8.0
    CARRIER_RETRY_AFTER_MAX_SECONDS: float = 30.0
    TOKEN_SAFETY_MARGIN_SECONDS: int = 60

    # Quotes and labels
    QUOTE_MAX_AGE_MINUTES: int = 30
    DEFAULT_FROM_POSTAL_CODE: str = "13802170"
    QUOTE_BATCH_SERVICES: str = "1,2,3"

    # Populated by `json_config_settings_source`
    SENDER: Optional[SenderAddress] = None
    DEFAULT_VOLUME: DefaultVolume = DefaultVolume()
    TRACKING_STATUS_MAP: Dict[str, str] = {
        "posted": "IN_TRANSIT",
        "delivered": "DELIVERED",
        "canceled": "CANCELLED",
    }

    # Background tasks
    BACKGROUND_TASKS_ENABLED: bool = True
    TOKEN_REFRESH_INTERVAL_MINUTES: int = 30
    TRACKING_SYNC_INTERVAL_MINUTES: int = 60

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore' # Ignore extra variables from .env
    )

    @property
    def melhor_envio_host(self) -> str:
        if self.MELHOR_ENVIO_SANDBOX:
            return "https://sandbox.melhorenvio.com.br"
        return "https://melhorenvio.com.br"

    @property
    def melhor_envio_api_url(self) -> str:
        return f"{self.melhor_envio_host}/api/v2"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Priority order: .env wins, then the environment, then the JSON files
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            json_config_settings_source,
            file_secret_settings,
        )

settings = Settings()
