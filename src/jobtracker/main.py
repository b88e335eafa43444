# main.py
import uvicorn

from jobtracker.adapters.aiohttp_remote_jobs_adapter import AioHttpRemoteJobsAdapter
from jobtracker.adapters.logging_adapter import LoggingAdapter
from jobtracker.adapters.retry_tenacity import TenacityRetryAdapter
from jobtracker.adapters.storage_json_file import JsonFileStorageAdapter
from jobtracker.adapters.web.fastapi import create_app
from jobtracker.core.config import TrackerConfig
from jobtracker.core.logging_config import configure_logging
from jobtracker.core.managers.job_tracker import JobTracker
from jobtracker.core.settings import app_settings, logger, set_logger


# main lives at the outermost layer (not in core)
# Instantiates the concrete adapters, wires them into the JobTracker
# and starts the HTTP server

def main():
    # Central logging configuration BEFORE injecting adapter so uvicorn adopts level/format
    configure_logging(app_settings.JOBTRACKER_LOG_LEVEL)
    set_logger(LoggingAdapter("jobtracker", app_settings.JOBTRACKER_LOG_LEVEL))
    app_settings.print_settings(logger)

    remote = AioHttpRemoteJobsAdapter(
        str(app_settings.JOBTRACKER_REMOTE_URL),
        timeout=app_settings.JOBTRACKER_REMOTE_TIMEOUT,
    )
    storage = JsonFileStorageAdapter(app_settings.JOBTRACKER_HISTORY_DIR)
    config = TrackerConfig.from_app_settings(app_settings)

    def tracker_factory(client):
        retry_adapter = TenacityRetryAdapter(attempts=config.reconcile_attempts, wait_initial=0.25, wait_max=2.0)
        return JobTracker(client, storage, config=config, retry_port=retry_adapter)

    app = create_app(tracker_factory=tracker_factory, remote=remote)

    # Let uvicorn inherit existing logging (separate sinks & correlation ids)
    uvicorn.run(
        app,
        host=app_settings.JOBTRACKER_SERVER_HOST,
        port=app_settings.JOBTRACKER_SERVER_PORT,
        log_config=None,
        log_level=str(app_settings.JOBTRACKER_LOG_LEVEL).lower(),
    )


if __name__ == "__main__":
    main()
