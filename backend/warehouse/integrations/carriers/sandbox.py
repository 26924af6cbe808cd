"""Stand-in labels for development environments without carrier credentials."""
import base64
import hashlib

from warehouse.integrations.carriers.base import CarrierClient, LabelPurchase

# 1x1 transparent PNG
SANDBOX_LABEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="
)


def sandbox_tracking_number(carrier: str, reference: str, service_code: str) -> str:
    """Same carrier, reference and service always give the same number."""
    digest = hashlib.sha256(f"{carrier}:{reference}:{service_code}".encode()).hexdigest()
    if carrier == "UPS":
        return ("1Z" + digest.upper())[:18]
    return str(int(digest, 16))[:16]


def sandbox_label(client: CarrierClient, service_code: str, reference: str) -> LabelPurchase:
    """A free, unbillable label. Never used when the carrier is configured."""
    return LabelPurchase(
        carrier=client.name,
        service_code=service_code,
        service_name=client.service_name(service_code),
        tracking_number=sandbox_tracking_number(client.name, reference, service_code),
        label_data=SANDBOX_LABEL_PNG,
        label_format="PNG",
        cost=0.0,
        currency="USD",
        sandbox=True,
    )
