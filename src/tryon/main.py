# main.py
import uvicorn

from tryon.adapters.aiohttp_client_adapter import AioHttpClientAdapter
from tryon.adapters.artifact_store_local import LocalArtifactStore
from tryon.adapters.artifact_store_s3 import S3ArtifactStore
from tryon.adapters.job_repository_inmemory import InMemoryJobRepository
from tryon.adapters.job_repository_sql import SqlJobRepository
from tryon.adapters.logging_adapter import LoggingAdapter
from tryon.adapters.notifier_broadcast import BroadcastNotifier, LoggingNotifier
from tryon.adapters.quota_store_inmemory import InMemoryQuotaStore
from tryon.adapters.quota_store_sql import SqlQuotaStore
from tryon.adapters.retry_tenacity import TenacityRetryAdapter
from tryon.adapters.sql_schema import create_sql_engine
from tryon.adapters.web.fastapi import create_app
from tryon.core.config import TryOnConfig
from tryon.core.logging_config import configure_logging, generate_uvicorn_log_config
from tryon.core.managers.tryon_manager import TryOnManager
from tryon.core.models.job import GLOBAL_SCOPE
from tryon.core.settings import TryOnSettings, app_settings, set_logger


# main lives at the outermost layer (not in core)
# Instantiates all the concrete adapters
# Wires dependencies together
# Starts the application

def build_stores(settings: TryOnSettings):
    """Job repository and quota store for the configured backend."""
    if settings.TRYON_JOB_STORE_URL == "memory":
        return (
            InMemoryJobRepository(settings.TRYON_JOB_DUMP_DIR),
            InMemoryQuotaStore(default_quota=settings.TRYON_DEFAULT_QUOTA),
        )
    engine = create_sql_engine(settings.TRYON_JOB_STORE_URL)
    return (
        SqlJobRepository(engine),
        SqlQuotaStore(engine, default_quota=settings.TRYON_DEFAULT_QUOTA),
    )


def build_artifact_store(settings: TryOnSettings):
    if settings.TRYON_ARTIFACT_STORE == "s3":
        access = settings.TRYON_S3_ACCESS_KEY
        secret = settings.TRYON_S3_SECRET_KEY
        return S3ArtifactStore(
            bucket=settings.TRYON_S3_BUCKET,
            endpoint_url=settings.TRYON_S3_ENDPOINT,
            region=settings.TRYON_S3_REGION,
            access_key=access.get_secret_value() if access else None,
            secret_key=secret.get_secret_value() if secret else None,
            public_base_url=settings.TRYON_S3_PUBLIC_BASE_URL,
        )
    return LocalArtifactStore(settings.TRYON_ARTIFACT_DIR, settings.artifact_base_url)


def build_app(settings: TryOnSettings = app_settings):
    http_client = AioHttpClientAdapter()
    job_repo, quota_store = build_stores(settings)
    artifact_store = build_artifact_store(settings)
    broadcast = BroadcastNotifier(queue_size=settings.TRYON_EVENT_QUEUE_SIZE)
    config = TryOnConfig.from_app_settings(settings)
    initial_allowances = {}
    if settings.TRYON_GLOBAL_QUOTA is not None:
        initial_allowances[GLOBAL_SCOPE] = settings.TRYON_GLOBAL_QUOTA

    def manager_factory(client):
        retry_adapter = TenacityRetryAdapter(attempts=config.submit_max_retries)
        return TryOnManager(
            http_client=client,
            job_repo=job_repo,
            quota_store=quota_store,
            artifact_store=artifact_store,
            config=config,
            notifier=LoggingNotifier(broadcast),
            retry_port=retry_adapter,
            initial_allowances=initial_allowances,
        )

    app = create_app(
        manager_factory=manager_factory,
        http_client=http_client,
        notifier=broadcast,
        artifact_dir=settings.TRYON_ARTIFACT_DIR if settings.TRYON_ARTIFACT_STORE == "local" else None,
    )

    return app


def main():
    # Central logging configuration BEFORE injecting adapter so uvicorn adopts level/format
    configure_logging(app_settings.TRYON_LOG_LEVEL)
    logger = LoggingAdapter("tryon", app_settings.TRYON_LOG_LEVEL)
    set_logger(logger)
    app_settings.print_settings(logger)

    app = build_app(app_settings)

    uvicorn.run(
        app,
        host=app_settings.TRYON_API_HOST,
        port=app_settings.TRYON_API_PORT,
        log_config=generate_uvicorn_log_config(app_settings.TRYON_LOG_LEVEL),
        log_level=str(app_settings.TRYON_LOG_LEVEL).lower(),
    )


if __name__ == "__main__":
    main()
