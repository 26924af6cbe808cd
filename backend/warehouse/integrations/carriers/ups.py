"""
UPS adapter (OAuth client_credentials, Rating and Shipping APIs v2403).
"""
import base64
import time
from typing import Any, Optional

from warehouse.core.errors import CarrierError
from warehouse.core.logging import carriers_logger
from warehouse.integrations.carriers.base import (
    Address,
    CarrierClient,
    LabelPurchase,
    Package,
    RateOffer,
)

TOKEN_PATH = "/security/v1/oauth/token"
RATE_PATH = "/api/rating/v2403/Rate"
SHIP_PATH = "/api/shipments/v2403/ship"

UPS_SERVICES = {
    "01": "UPS Next Day Air",
    "02": "UPS 2nd Day Air",
    "03": "UPS Ground",
    "12": "UPS 3 Day Select",
    "13": "UPS Next Day Air Saver",
    "14": "UPS Next Day Air Early",
    "59": "UPS 2nd Day Air A.M.",
    "65": "UPS Saver",
}

UPS_TRANSIT_DAYS = {
    "01": 1,
    "02": 2,
    "03": 5,
    "12": 3,
    "13": 1,
    "14": 1,
    "59": 2,
}


def _package_payload(pkg: Package, label: bool) -> dict:
    # Rating and Shipping spell the same fields with different casing
    if label:
        return {
            "Description": "Package",
            "Packaging": {"Code": "02"},
            "Dimensions": {
                "UnitOfMeasurement": {"Code": "IN"},
                "Length": f"{max(1, pkg.length):.0f}",
                "Width": f"{max(1, pkg.width):.0f}",
                "Height": f"{max(1, pkg.height):.0f}",
            },
            "PackageWeight": {
                "UnitOfMeasurement": {"Code": "LBS"},
                "Weight": f"{max(0.1, pkg.weight):.1f}",
            },
        }
    return {
        "packagingType": {"code": "02"},
        "dimensions": {
            "unitOfMeasurement": {"code": "IN"},
            "length": f"{max(1, pkg.length):.0f}",
            "width": f"{max(1, pkg.width):.0f}",
            "height": f"{max(1, pkg.height):.0f}",
        },
        "packageWeight": {
            "unitOfMeasurement": {"code": "LBS"},
            "weight": f"{max(0.1, pkg.weight):.1f}",
        },
    }


def _iso_date(value: Optional[str]) -> Optional[str]:
    """UPS returns YYYYMMDD."""
    if value and len(value) == 8 and value.isdigit():
        return f"{value[:4]}-{value[4:6]}-{value[6:]}"
    return value or None


class UPSClient(CarrierClient):
    name = "UPS"
    services = UPS_SERVICES
    transit_days = UPS_TRANSIT_DAYS

    def __init__(self, client_id: str, client_secret: str, account_number: str, **kwargs):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.account_number = account_number

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.account_number)

    def service_name(self, code: str) -> str:
        return self.services.get(code, f"UPS Service {code}")

    def tracking_url(self, tracking_number: str) -> str:
        return f"https://www.ups.com/track?tracknum={tracking_number}"

    async def _fetch_token(self):
        credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        return await self._post_token(
            url=TOKEN_PATH,
            data={"grant_type": "client_credentials"},
            headers={"Authorization": f"Basic {credentials}"},
        )

    def _headers(self, token: str) -> dict[str, str]:
        headers = super()._headers(token)
        headers["transId"] = f"wms-{int(time.time() * 1000)}"
        headers["transactionSrc"] = "warehouse"
        return headers

    def _party(self, address: Address, with_lines: bool) -> dict:
        party: dict[str, Any] = {
            "Name": address.name or "Customer",
            "Address": {
                "City": address.city,
                "StateProvinceCode": address.state,
                "PostalCode": address.postal_code,
                "CountryCode": address.country or "US",
            },
        }
        if with_lines:
            party["Address"]["AddressLine"] = address.street_lines
        if address.phone:
            party["Phone"] = {"Number": address.phone}
        return party

    async def get_rates(self, destination: Address, packages: list[Package]) -> list[RateOffer]:
        self._ensure_configured()
        self._require_ship_from(for_label=False)

        shipper = self._party(self.ship_from, with_lines=False)
        shipper["ShipperNumber"] = self.account_number
        payload = {
            "RateRequest": {
                "Request": {
                    "RequestOption": "Shop",
                    "SubVersion": "2403",
                },
                "Shipment": {
                    "Shipper": shipper,
                    "ShipTo": self._party(destination, with_lines=False),
                    "ShipFrom": self._party(self.ship_from, with_lines=False),
                    "PaymentDetails": {
                        "ShipmentCharge": [
                            {"Type": "01", "BillShipper": {"AccountNumber": self.account_number}}
                        ]
                    },
                    "Package": [_package_payload(p, label=False) for p in packages],
                },
            }
        }

        data = await self._request("POST", RATE_PATH, payload)
        try:
            rated = data["RateResponse"]["RatedShipment"]
            if isinstance(rated, dict):
                rated = [rated]
            offers = [self._parse_rated_shipment(r) for r in rated]
        except (KeyError, TypeError, ValueError) as e:
            raise CarrierError(self.name, f"Malformed rate response: {e!r}", body=data) from e

        carriers_logger.info(f"[UPS] Got {len(offers)} rates")
        return offers

    def _parse_rated_shipment(self, shipment: dict) -> RateOffer:
        code = shipment["Service"]["Code"]
        charges = shipment["TotalCharges"]
        arrival = (
            (shipment.get("TimeInTransit") or {})
            .get("ServiceSummary", {})
            .get("EstimatedArrival", {})
        )
        days = (shipment.get("GuaranteedDelivery") or {}).get("BusinessDaysInTransit") \
            or arrival.get("BusinessDaysInTransit")
        return self.make_offer(
            code=code,
            name=self.service_name(code),
            price=float(charges["MonetaryValue"]),
            currency=charges.get("CurrencyCode", "USD"),
            days=int(days) if days else None,
            delivery=_iso_date((arrival.get("Arrival") or {}).get("Date")),
        )

    async def create_shipment(
        self,
        service_code: str,
        destination: Address,
        packages: list[Package],
        label_format: str = "PNG",
    ) -> LabelPurchase:
        self._ensure_configured()
        self._require_ship_from(for_label=True)

        shipper = self._party(self.ship_from, with_lines=True)
        shipper["ShipperNumber"] = self.account_number
        payload = {
            "ShipmentRequest": {
                "Request": {"SubVersion": "2403"},
                "Shipment": {
                    "Description": "Warehouse order",
                    "Shipper": shipper,
                    "ShipTo": self._party(destination, with_lines=True),
                    "ShipFrom": self._party(self.ship_from, with_lines=True),
                    "PaymentInformation": {
                        "ShipmentCharge": [
                            {"Type": "01", "BillShipper": {"AccountNumber": self.account_number}}
                        ]
                    },
                    "Service": {"Code": service_code, "Description": self.service_name(service_code)},
                    "Package": [_package_payload(p, label=True) for p in packages],
                },
                "LabelSpecification": {
                    "LabelImageFormat": {"Code": label_format},
                    "LabelStockSize": {"Height": "6", "Width": "4"},
                },
            }
        }

        carriers_logger.info(f"[UPS] Creating shipment with service {service_code}")
        data = await self._request("POST", SHIP_PATH, payload, purchase=True)
        try:
            results = data["ShipmentResponse"]["ShipmentResults"]
            package_results = results["PackageResults"]
            if isinstance(package_results, dict):
                package_results = [package_results]
            first = package_results[0]
            label = first["ShippingLabel"]
            charges = results["ShipmentCharges"]["TotalCharges"]
            purchase = LabelPurchase(
                carrier=self.name,
                service_code=service_code,
                service_name=self.service_name(service_code),
                tracking_number=first["TrackingNumber"],
                label_data=self.decode_label(label["GraphicImage"]),
                label_format=label["ImageFormat"]["Code"],
                cost=float(charges["MonetaryValue"]),
                currency=charges.get("CurrencyCode", "USD"),
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            # The carrier may already have billed; keep the raw body for reconciliation
            raise CarrierError(self.name, f"Malformed shipment response: {e!r}", body=data) from e

        carriers_logger.info(f"[UPS] Shipment created: {purchase.tracking_number}")
        return purchase
