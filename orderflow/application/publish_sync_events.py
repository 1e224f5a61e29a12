from orderflow.application.sync_queue import SyncQueueService
from orderflow.core.models import (
    ContactSubmission,
    QuoteRequest,
    RegisteredUser,
    SyncEntityType,
    SyncOperation,
    SyncTask,
    ZohoEntityType,
    ZohoService,
)


def _split_name(full_name: str) -> tuple[str, str]:
    first, _, rest = full_name.strip().partition(" ")
    return first, rest.strip()


class SyncEventPublisher:
    """Turns business events into Zoho sync entries.

    Payloads are self-contained so the worker never has to read the
    originating rows back. Publishing never raises.
    """

    def __init__(self, sync_queue: SyncQueueService):
        self._sync_queue = sync_queue

    async def user_registered(self, user: RegisteredUser) -> str | None:
        return await self._sync_queue.enqueue(
            SyncTask(
                entity_type=SyncEntityType.USER,
                entity_id=user.id,
                operation=SyncOperation.CREATE,
                zoho_service=ZohoService.CRM,
                zoho_entity_type=ZohoEntityType.CONTACT,
                request_payload={
                    "first_name": user.first_name,
                    "last_name": user.last_name,
                    "email": user.email,
                    "phone": user.phone,
                    "company_name": user.company_name,
                    "gst_number": user.gst_number,
                },
            )
        )

    async def contact_submitted(self, submission: ContactSubmission) -> str | None:
        first_name, last_name = _split_name(submission.name)
        return await self._sync_queue.enqueue(
            SyncTask(
                entity_type=SyncEntityType.CONTACT_SUBMISSION,
                entity_id=submission.id,
                operation=SyncOperation.CREATE,
                zoho_service=ZohoService.CRM,
                zoho_entity_type=ZohoEntityType.LEAD,
                request_payload={
                    "first_name": first_name,
                    "last_name": last_name,
                    "email": submission.email,
                    "phone": submission.phone,
                    "company": submission.company,
                    "description": f"Subject: {submission.subject}\n\n{submission.message}",
                    "lead_source": "Website Contact Form",
                },
            )
        )

    async def quote_submitted(self, quote: QuoteRequest) -> str | None:
        user = quote.user
        description = f"B2B quote request for INR {quote.total_amount}"
        if quote.notes:
            description += f"\n\nNotes: {quote.notes}"
        return await self._sync_queue.enqueue(
            SyncTask(
                entity_type=SyncEntityType.B2B_QUOTE,
                entity_id=quote.id,
                operation=SyncOperation.CREATE,
                zoho_service=ZohoService.CRM,
                zoho_entity_type=ZohoEntityType.LEAD,
                request_payload={
                    "first_name": user.first_name,
                    "last_name": user.last_name,
                    "email": user.email,
                    "phone": user.phone,
                    "company": user.company_name,
                    "description": description,
                    "lead_source": "B2B Quote Request",
                },
            )
        )
