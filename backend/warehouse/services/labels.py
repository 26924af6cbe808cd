"""Stored shipping labels: lookup and HTTP presentation."""
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from warehouse.core.errors import LabelNotFound, ShipmentNotFound
from warehouse.db.models import Shipment

# format -> (content type, file extension)
LABEL_FORMATS = {
    "PNG": ("image/png", "png"),
    "GIF": ("image/gif", "gif"),
    "PDF": ("application/pdf", "pdf"),
    "ZPL": ("application/octet-stream", "zpl"),
    "ZPLII": ("application/octet-stream", "zpl"),
    "JPG": ("image/jpeg", "jpg"),
    "JPEG": ("image/jpeg", "jpg"),
}
FALLBACK_FORMAT = ("application/octet-stream", "bin")


@dataclass
class StoredLabel:
    shipment_id: int
    carrier: str
    tracking_number: str
    data: bytes
    label_format: str

    @property
    def content_type(self) -> str:
        return content_type_for(self.label_format)

    @property
    def filename(self) -> str:
        _, ext = LABEL_FORMATS.get(self.label_format.upper(), FALLBACK_FORMAT)
        return f"label-{self.carrier}-{self.tracking_number or self.shipment_id}.{ext}"

    def headers(self, download: bool = False) -> dict[str, str]:
        disposition = "attachment" if download else "inline"
        return {
            "Content-Disposition": f'{disposition}; filename="{self.filename}"',
            "Content-Length": str(len(self.data)),
            "Cache-Control": "private, max-age=3600",
        }


def content_type_for(label_format: str) -> str:
    return LABEL_FORMATS.get((label_format or "").upper(), FALLBACK_FORMAT)[0]


async def get_label(session: AsyncSession, shipment_id: int) -> StoredLabel:
    shipment = await session.get(Shipment, shipment_id)
    if shipment is None:
        raise ShipmentNotFound(shipment_id)
    if not shipment.label_data:
        raise LabelNotFound(shipment_id)
    return StoredLabel(
        shipment_id=shipment.id,
        carrier=shipment.carrier,
        tracking_number=shipment.tracking_number,
        data=bytes(shipment.label_data),
        label_format=shipment.label_format or "PNG",
    )
