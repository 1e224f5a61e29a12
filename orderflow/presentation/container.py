from dependency_injector import containers, providers

from orderflow.application.container import ApplicationContainer
from orderflow.presentation.sync_worker import SyncWorker


class PresentationContainer(containers.DeclarativeContainer):
    config = providers.Configuration()
    application = providers.Container[ApplicationContainer](
        ApplicationContainer, config=config
    )

    sync_worker = providers.Singleton[SyncWorker](
        SyncWorker,
        use_case=application.process_sync_queue_use_case,
        poll_interval=config.presentation.sync_worker.poll_interval_seconds.as_float(),
    )
