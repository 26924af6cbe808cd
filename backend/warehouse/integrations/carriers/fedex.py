"""
FedEx adapter (OAuth client_credentials, Rate and Ship APIs v1).
"""
from typing import Any

from warehouse.core.errors import CarrierError
from warehouse.core.logging import carriers_logger
from warehouse.integrations.carriers.base import (
    Address,
    CarrierClient,
    LabelPurchase,
    Package,
    RateOffer,
)

TOKEN_PATH = "/oauth/token"
RATE_PATH = "/rate/v1/rates/quotes"
SHIP_PATH = "/ship/v1/shipments"

FEDEX_SERVICES = {
    "FEDEX_GROUND": "FedEx Ground",
    "FEDEX_HOME_DELIVERY": "FedEx Home Delivery",
    "FEDEX_EXPRESS_SAVER": "FedEx Express Saver",
    "FEDEX_2_DAY": "FedEx 2Day",
    "FEDEX_2_DAY_AM": "FedEx 2Day A.M.",
    "STANDARD_OVERNIGHT": "FedEx Standard Overnight",
    "PRIORITY_OVERNIGHT": "FedEx Priority Overnight",
    "FIRST_OVERNIGHT": "FedEx First Overnight",
    "FEDEX_FREIGHT_ECONOMY": "FedEx Freight Economy",
    "FEDEX_FREIGHT_PRIORITY": "FedEx Freight Priority",
    "GROUND_HOME_DELIVERY": "FedEx Ground Home Delivery",
    "SMART_POST": "FedEx SmartPost",
}

FEDEX_TRANSIT_DAYS = {
    "FEDEX_GROUND": 5,
    "FEDEX_HOME_DELIVERY": 5,
    "GROUND_HOME_DELIVERY": 5,
    "FEDEX_EXPRESS_SAVER": 3,
    "FEDEX_2_DAY": 2,
    "FEDEX_2_DAY_AM": 2,
    "STANDARD_OVERNIGHT": 1,
    "PRIORITY_OVERNIGHT": 1,
    "FIRST_OVERNIGHT": 1,
}

TRANSIT_TIME_WORDS = {
    "ONE_DAY": 1,
    "TWO_DAYS": 2,
    "THREE_DAYS": 3,
    "FOUR_DAYS": 4,
    "FIVE_DAYS": 5,
    "SIX_DAYS": 6,
    "SEVEN_DAYS": 7,
}


def _line_item(pkg: Package) -> dict:
    return {
        "weight": {"units": "LB", "value": max(0.1, pkg.weight)},
        "dimensions": {
            "length": max(1, round(pkg.length)),
            "width": max(1, round(pkg.width)),
            "height": max(1, round(pkg.height)),
            "units": "IN",
        },
    }


def _address(address: Address, with_lines: bool) -> dict:
    out: dict[str, Any] = {
        "city": address.city,
        "stateOrProvinceCode": address.state,
        "postalCode": address.postal_code,
        "countryCode": address.country or "US",
    }
    if with_lines:
        out["streetLines"] = address.street_lines
    return out


class FedExClient(CarrierClient):
    name = "FEDEX"
    services = FEDEX_SERVICES
    transit_days = FEDEX_TRANSIT_DAYS

    def __init__(self, api_key: str, secret_key: str, account_number: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.secret_key = secret_key
        self.account_number = account_number

    def is_configured(self) -> bool:
        return bool(self.api_key and self.secret_key and self.account_number)

    def tracking_url(self, tracking_number: str) -> str:
        return f"https://www.fedex.com/fedextrack/?trknbr={tracking_number}"

    async def _fetch_token(self):
        return await self._post_token(
            url=TOKEN_PATH,
            data={
                "grant_type": "client_credentials",
                "client_id": self.api_key,
                "client_secret": self.secret_key,
            },
        )

    def _headers(self, token: str) -> dict[str, str]:
        headers = super()._headers(token)
        headers["X-locale"] = "en_US"
        return headers

    async def get_rates(self, destination: Address, packages: list[Package]) -> list[RateOffer]:
        self._ensure_configured()
        self._require_ship_from(for_label=False)

        payload = {
            "accountNumber": {"value": self.account_number},
            "requestedShipment": {
                "shipper": {"address": _address(self.ship_from, with_lines=False)},
                "recipient": {"address": _address(destination, with_lines=False)},
                "pickupType": "DROPOFF_AT_FEDEX_LOCATION",
                "packagingType": "YOUR_PACKAGING",
                "rateRequestType": ["ACCOUNT", "LIST"],
                "requestedPackageLineItems": [_line_item(p) for p in packages],
            },
        }

        data = await self._request("POST", RATE_PATH, payload)
        try:
            offers = []
            for detail in data["output"]["rateReplyDetails"]:
                offer = self._parse_rate_detail(detail)
                if offer is not None:
                    offers.append(offer)
        except (KeyError, TypeError, ValueError) as e:
            raise CarrierError(self.name, f"Malformed rate response: {e!r}", body=data) from e

        carriers_logger.info(f"[FedEx] Got {len(offers)} rates")
        return offers

    def _parse_rate_detail(self, detail: dict):
        rated = detail.get("ratedShipmentDetails") or []
        # Prefer the discounted account rate over list price
        chosen = next((r for r in rated if r.get("rateType") == "ACCOUNT"), rated[0] if rated else None)
        if chosen is None:
            return None

        code = detail["serviceType"]
        commit = detail.get("commit") or {}
        words = (commit.get("transitDays") or {}).get("minimumTransitTime")
        return self.make_offer(
            code=code,
            name=FEDEX_SERVICES.get(code) or detail.get("serviceName") or code,
            price=float(chosen["totalNetCharge"]),
            currency=chosen.get("currency", "USD"),
            days=TRANSIT_TIME_WORDS.get(words) if words else None,
            delivery=(commit.get("dateDetail") or {}).get("dayCxsFormat"),
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

        payload = {
            "accountNumber": {"value": self.account_number},
            "labelResponseOptions": "LABEL",
            "requestedShipment": {
                "shipper": {
                    "contact": {
                        "personName": self.ship_from.name,
                        "companyName": self.ship_from.name,
                        "phoneNumber": self.ship_from.phone or None,
                    },
                    "address": _address(self.ship_from, with_lines=True),
                },
                "recipients": [
                    {
                        "contact": {
                            "personName": destination.name or "Customer",
                            "phoneNumber": destination.phone or None,
                        },
                        "address": _address(destination, with_lines=True),
                    }
                ],
                "pickupType": "DROPOFF_AT_FEDEX_LOCATION",
                "serviceType": service_code,
                "packagingType": "YOUR_PACKAGING",
                "shippingChargesPayment": {
                    "paymentType": "SENDER",
                    "payor": {"responsibleParty": {"accountNumber": {"value": self.account_number}}},
                },
                "labelSpecification": {
                    "labelFormatType": "COMMON2D",
                    "imageType": label_format,
                    "labelStockType": "PAPER_4X6",
                },
                "requestedPackageLineItems": [_line_item(p) for p in packages],
            },
        }

        carriers_logger.info(f"[FedEx] Creating shipment with service {service_code}")
        data = await self._request("POST", SHIP_PATH, payload, purchase=True)
        try:
            shipment = data["output"]["transactionShipments"][0]
            piece = shipment["pieceResponses"][0]
            tracking = piece.get("trackingNumber") or shipment["masterTrackingNumber"]
            document = next((d for d in piece.get("packageDocuments", []) if d.get("encodedLabel")), None)
            if document is None:
                raise CarrierError(self.name, "No label data returned", body=data)

            cost, currency = 0.0, "USD"
            rating = (shipment.get("completedShipmentDetail") or {}).get("shipmentRating") or {}
            rate_details = rating.get("shipmentRateDetails") or []
            if rate_details:
                cost = float(rate_details[0]["totalNetCharge"])
                currency = rate_details[0].get("currency", "USD")

            purchase = LabelPurchase(
                carrier=self.name,
                service_code=service_code,
                service_name=self.service_name(service_code),
                tracking_number=tracking,
                label_data=self.decode_label(document["encodedLabel"]),
                label_format=label_format,
                cost=cost,
                currency=currency,
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise CarrierError(self.name, f"Malformed shipment response: {e!r}", body=data) from e

        carriers_logger.info(f"[FedEx] Shipment created: {purchase.tracking_number}")
        return purchase
