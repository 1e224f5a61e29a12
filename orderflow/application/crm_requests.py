"""Turns outbox entries into Zoho requests.

``request_payload`` is stored as free-form JSON; its schema is chosen by
``zoho_entity_type``. Each payload model below owns the mapping of one entity
type onto the Zoho record format so the worker itself stays generic.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from orderflow.core.models import SyncOperation, SyncQueueItem, ZohoEntityType
from orderflow.infrastructure.zoho_client import ZohoClient


class UnsupportedSyncTask(Exception):
    pass


def _drop_empty(record: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in record.items() if value not in (None, "")}


class ContactPayload(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    company_name: str | None = None
    gst_number: str | None = None
    zoho_id: str | None = None

    def to_record(self) -> dict[str, Any]:
        return _drop_empty(
            {
                "First_Name": self.first_name,
                "Last_Name": self.last_name or ".",
                "Email": self.email,
                "Phone": self.phone,
                "Company": self.company_name,
                "GST_No": self.gst_number,
                "Lead_Source": "Website Registration",
            }
        )


class LeadPayload(BaseModel):
    first_name: str
    last_name: str = ""
    email: str
    phone: str | None = None
    company: str | None = None
    description: str | None = None
    lead_source: str = "Website"
    zoho_id: str | None = None

    def to_record(self) -> dict[str, Any]:
        return _drop_empty(
            {
                "First_Name": self.first_name,
                # Zoho requires a last name
                "Last_Name": self.last_name or ".",
                "Email": self.email,
                "Phone": self.phone,
                "Company": self.company,
                "Description": self.description,
                "Lead_Source": self.lead_source,
            }
        )


class InvoiceLine(BaseModel):
    name: str
    rate: Decimal
    quantity: int


class InvoicePayload(BaseModel):
    order_id: str
    customer_name: str
    customer_email: str
    customer_phone: str | None = None
    invoice_date: date
    line_items: list[InvoiceLine]
    shipping: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    currency_code: str = "INR"
    payment_terms_days: int = 15
    zoho_id: str | None = None

    def to_contact(self) -> dict[str, Any]:
        return _drop_empty(
            {
                "contact_name": self.customer_name,
                "contact_type": "customer",
                "email": self.customer_email,
                "phone": self.customer_phone,
            }
        )

    def to_record(self, customer_id: str) -> dict[str, Any]:
        return {
            "customer_id": customer_id,
            "reference_number": self.order_id,
            "date": self.invoice_date.isoformat(),
            "due_date": (
                self.invoice_date + timedelta(days=self.payment_terms_days)
            ).isoformat(),
            "payment_terms": self.payment_terms_days,
            "payment_terms_label": f"Net {self.payment_terms_days}",
            "is_inclusive_tax": False,
            "currency_code": self.currency_code,
            "line_items": [
                {
                    "name": line.name,
                    "rate": float(line.rate),
                    "quantity": line.quantity,
                    "item_total": float(line.rate * line.quantity),
                }
                for line in self.line_items
            ],
            "shipping_charge": float(self.shipping),
            "adjustment": float(-self.discount),
            "adjustment_description": "Discount",
            "notes": f"Order Number: {self.order_id}",
        }


class SyncTaskDispatcher:
    _CRM_MODULES: dict[ZohoEntityType, tuple[str, type[BaseModel]]] = {
        ZohoEntityType.CONTACT: ("Contacts", ContactPayload),
        ZohoEntityType.LEAD: ("Leads", LeadPayload),
    }

    def __init__(self, zoho_client: ZohoClient):
        self._zoho_client = zoho_client

    async def __call__(self, item: SyncQueueItem) -> dict[str, Any]:
        payload = item.request_payload or {}

        if item.zoho_entity_type in self._CRM_MODULES:
            module, payload_model = self._CRM_MODULES[item.zoho_entity_type]
            return await self._sync_crm(
                module, item.operation, payload_model.model_validate(payload)
            )
        if item.zoho_entity_type == ZohoEntityType.INVOICE:
            return await self._sync_invoice(
                item.operation, InvoicePayload.model_validate(payload)
            )

        raise UnsupportedSyncTask(
            f"Unsupported task type: {item.entity_type} -> "
            f"{item.zoho_service}/{item.zoho_entity_type}"
        )

    @staticmethod
    def _require_zoho_id(payload: BaseModel, operation: SyncOperation) -> str:
        if not payload.zoho_id:
            raise UnsupportedSyncTask(f"{operation} requires zoho_id in the payload")
        return payload.zoho_id

    async def _sync_crm(
        self, module: str, operation: SyncOperation, payload: BaseModel
    ) -> dict[str, Any]:
        if operation == SyncOperation.CREATE:
            return await self._zoho_client.create_crm_record(
                module, payload.to_record()
            )
        record_id = self._require_zoho_id(payload, operation)
        if operation == SyncOperation.UPDATE:
            return await self._zoho_client.update_crm_record(
                module, record_id, payload.to_record()
            )
        return await self._zoho_client.delete_crm_record(module, record_id)

    async def _sync_invoice(
        self, operation: SyncOperation, payload: InvoicePayload
    ) -> dict[str, Any]:
        if operation == SyncOperation.DELETE:
            return await self._zoho_client.delete_invoice(
                self._require_zoho_id(payload, operation)
            )

        customer_id = await self._zoho_client.find_books_contact(
            payload.customer_email
        )
        if customer_id is None:
            customer_id = await self._zoho_client.create_books_contact(
                payload.to_contact()
            )

        if operation == SyncOperation.CREATE:
            return await self._zoho_client.create_invoice(
                payload.to_record(customer_id)
            )
        return await self._zoho_client.update_invoice(
            self._require_zoho_id(payload, operation), payload.to_record(customer_id)
        )
