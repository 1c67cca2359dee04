"""
Wires the notification components together.

One PushEngine per process: the FastAPI lifespan and the background worker
both build it from settings, and tests build it from fakes.
"""

from campus_push.config import GATEWAY_MAX_BATCH_SIZE, Settings
from campus_push.features.push_notifications.gateway import PushGateway, build_gateway
from campus_push.features.push_notifications.jobs.job_table import JobTable, load_job_table
from campus_push.features.push_notifications.jobs.notification_job import NotificationJobRunner
from campus_push.features.push_notifications.pipeline.dispatcher import BatchDispatcher
from campus_push.features.push_notifications.pipeline.eligibility import (
    EligibilityFilter,
    EligibilityRules,
    default_rules,
)
from campus_push.features.push_notifications.pipeline.result_processor import (
    DeliveryResultProcessor,
)
from campus_push.features.push_notifications.pipeline.time_window import Clock
from campus_push.features.push_notifications.repository.directory_repository import (
    DirectoryService,
    PostgresDirectory,
)
from campus_push.features.push_notifications.services.manual_send import ManualSender
from campus_push.features.push_notifications.services.scheduler import JobScheduler
from campus_push.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PushEngine:
    """Directory, gateway, job table and the services built on top of them."""

    def __init__(
        self,
        directory: DirectoryService,
        gateway: PushGateway,
        job_table: JobTable,
        *,
        rules: EligibilityRules | None = None,
        batch_size: int | None = None,
        clock: Clock | None = None,
    ):
        self.directory = directory
        self.gateway = gateway
        self.job_table = job_table

        dispatcher = BatchDispatcher(gateway, batch_size or GATEWAY_MAX_BATCH_SIZE)
        processor = DeliveryResultProcessor(directory)

        self.dispatcher = dispatcher
        self.runner = NotificationJobRunner(
            directory,
            dispatcher,
            result_processor=processor,
            eligibility_filter=EligibilityFilter(rules or default_rules()),
            clock=clock,
        )
        self.scheduler = JobScheduler(job_table, self.runner)
        self.manual = ManualSender(directory, dispatcher, processor)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushEngine":
        """
        Build the production engine.

        Raises:
            JobConfigurationError: Invalid job definitions
            PushGatewayError: Gateway misconfigured (bad PUSH_MODE, missing credentials)
        """
        rules = default_rules()
        job_table = load_job_table(settings, rules)
        gateway = build_gateway(settings)

        logger.info(
            "Push engine configured",
            push_mode=settings.PUSH_MODE,
            batch_size=settings.push_batch_size(),
            jobs=job_table.names(),
        )
        return cls(
            PostgresDirectory(),
            gateway,
            job_table,
            rules=rules,
            batch_size=settings.push_batch_size(),
        )

    async def close(self) -> None:
        await self.scheduler.shutdown()
        await self.gateway.close()
