"""Inbound marketplace webhook payloads."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _Payload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class ImportSummary(_Payload):
    categories_created: int = 0
    categories_updated: int = 0
    products_created: int = 0
    products_updated: int = 0


class ImportErrorItem(_Payload):
    type: Optional[str] = None
    remote_code: Optional[str] = None
    message: Optional[str] = None

    def describe(self) -> str:
        return f"{self.type}:{self.remote_code} - {self.message}"


class SubVendorDetail(_Payload):
    pos_vendor_id: Optional[str] = None


class CatalogStatusWebhook(_Payload):
    vendor_code: Optional[str] = None
    chain_code: Optional[str] = None
    import_id: Optional[str] = None
    catalog_import_id: Optional[str] = None
    status: Optional[str] = None
    summary: Optional[ImportSummary] = None
    errors: Optional[List[ImportErrorItem]] = None
    details: Optional[List[SubVendorDetail]] = None

    def normalized(self) -> "CatalogStatusWebhook":
        """Fill import_id/vendor_code from the alternate fields some senders use."""
        updates = {}
        if not self.import_id and self.catalog_import_id:
            updates["import_id"] = self.catalog_import_id
        if not self.vendor_code and self.details:
            updates["vendor_code"] = self.details[0].pos_vendor_id
        return self.model_copy(update=updates) if updates else self


class MenuImportRequestWebhook(_Payload):
    vendor_code: Optional[str] = None
    reason: Optional[str] = None
