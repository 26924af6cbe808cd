from typing import Iterable, Optional

import httpx

from warehouse.core.config import Settings, settings as default_settings
from warehouse.core.errors import ValidationFailed
from warehouse.integrations.carriers.base import Address, CarrierClient
from warehouse.integrations.carriers.fedex import FedExClient
from warehouse.integrations.carriers.ups import UPSClient

CARRIER_ALIASES = {"UPS": "UPS", "FEDEX": "FEDEX", "FED_EX": "FEDEX"}


class CarrierRegistry:
    """The set of carrier clients the service rates and ships with."""

    def __init__(self, clients: Iterable[CarrierClient]):
        self._clients = {c.name: c for c in clients}

    def __iter__(self):
        return iter(self._clients.values())

    def __len__(self):
        return len(self._clients)

    def get(self, name: str) -> CarrierClient:
        key = CARRIER_ALIASES.get(name.strip().upper().replace(" ", "_"), name.strip().upper())
        client = self._clients.get(key)
        if client is None:
            raise ValidationFailed(f"Unknown carrier: {name}", {"carrier": name})
        return client

    def configured(self) -> list[CarrierClient]:
        return [c for c in self._clients.values() if c.is_configured()]


def ship_from_address(cfg: Settings) -> Address:
    return Address(
        name=cfg.WAREHOUSE_NAME,
        address1=cfg.WAREHOUSE_ADDRESS1,
        address2=cfg.WAREHOUSE_ADDRESS2,
        city=cfg.WAREHOUSE_CITY,
        state=cfg.WAREHOUSE_STATE,
        postal_code=cfg.WAREHOUSE_ZIP,
        country=cfg.WAREHOUSE_COUNTRY,
        phone=cfg.WAREHOUSE_PHONE,
    )


def build_registry(
    cfg: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> CarrierRegistry:
    cfg = cfg or default_settings
    common = dict(
        ship_from=ship_from_address(cfg),
        timeout=cfg.CARRIER_TIMEOUT_SECONDS,
        transport=transport,
    )
    return CarrierRegistry([
        UPSClient(
            client_id=cfg.UPS_CLIENT_ID,
            client_secret=cfg.UPS_CLIENT_SECRET,
            account_number=cfg.UPS_ACCOUNT_NUMBER,
            base_url=cfg.UPS_BASE_URL,
            **common,
        ),
        FedExClient(
            api_key=cfg.FEDEX_API_KEY,
            secret_key=cfg.FEDEX_SECRET_KEY,
            account_number=cfg.FEDEX_ACCOUNT_NUMBER,
            base_url=cfg.FEDEX_BASE_URL,
            **common,
        ),
    ])
