from datetime import timedelta

from dependency_injector import containers, providers

from orderflow.application.confirm_order_payment import (
    ConfirmOrderPaymentUseCase,
    FlagOrderForReviewUseCase,
    RecordPaymentFailureUseCase,
)
from orderflow.application.crm_requests import SyncTaskDispatcher
from orderflow.application.handle_payment_webhook import HandlePaymentWebhookUseCase
from orderflow.application.process_sync_queue import ProcessSyncQueueUseCase
from orderflow.application.publish_sync_events import SyncEventPublisher
from orderflow.application.sync_queue import SyncQueueService
from orderflow.core.retry_policy import RetryPolicy
from orderflow.infrastructure.container import InfrastructureContainer


class ApplicationContainer(containers.DeclarativeContainer):
    config = providers.Configuration()
    infrastructure_container = providers.Container[InfrastructureContainer](
        InfrastructureContainer,
        config=config.infrastructure,
    )

    retry_policy = providers.Singleton[RetryPolicy](
        RetryPolicy.from_seconds,
        max_attempts=config.application.sync.max_attempts.as_int(),
        base_delay_seconds=config.application.sync.base_delay_seconds.as_int(),
        max_delay_seconds=config.application.sync.max_delay_seconds.as_int(),
    )
    sync_queue_service = providers.Singleton[SyncQueueService](
        SyncQueueService,
        unit_of_work=infrastructure_container.unit_of_work,
        retry_policy=retry_policy,
    )
    sync_event_publisher = providers.Singleton[SyncEventPublisher](
        SyncEventPublisher, sync_queue=sync_queue_service
    )

    confirm_order_payment_use_case = providers.Singleton[ConfirmOrderPaymentUseCase](
        ConfirmOrderPaymentUseCase,
        unit_of_work=infrastructure_container.unit_of_work,
        retry_policy=retry_policy,
    )
    record_payment_failure_use_case = providers.Singleton[RecordPaymentFailureUseCase](
        RecordPaymentFailureUseCase,
        unit_of_work=infrastructure_container.unit_of_work,
        fail_order=config.application.payments.fail_order_on_declined_payment,
    )
    flag_order_for_review_use_case = providers.Singleton[FlagOrderForReviewUseCase](
        FlagOrderForReviewUseCase, unit_of_work=infrastructure_container.unit_of_work
    )
    handle_payment_webhook_use_case = providers.Singleton[HandlePaymentWebhookUseCase](
        HandlePaymentWebhookUseCase,
        verifier=infrastructure_container.easebuzz_verifier,
        confirm_order_payment=confirm_order_payment_use_case,
        record_payment_failure=record_payment_failure_use_case,
        flag_order_for_review=flag_order_for_review_use_case,
        notifier=infrastructure_container.notifier,
        timeout_seconds=config.application.fulfillment.timeout_seconds.as_float(),
    )

    sync_task_dispatcher = providers.Singleton[SyncTaskDispatcher](
        SyncTaskDispatcher, zoho_client=infrastructure_container.zoho_client
    )
    process_sync_queue_use_case = providers.Singleton[ProcessSyncQueueUseCase](
        ProcessSyncQueueUseCase,
        sync_queue=sync_queue_service,
        dispatcher=sync_task_dispatcher,
        zoho_client=infrastructure_container.zoho_client,
        batch_size=config.application.sync.batch_size.as_int(),
        item_timeout_seconds=config.application.sync.item_timeout_seconds.as_float(),
        processing_lease=providers.Factory(
            timedelta,
            seconds=config.application.sync.processing_lease_seconds.as_int(),
        ),
    )
