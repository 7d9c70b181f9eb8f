#!/usr/bin/env python3
"""HearthHub File Install: entry point"""

import logging
import os
import sys
import traceback
from logging.handlers import RotatingFileHandler
from typing import Sequence

from pydantic import ValidationError

from errors import FileInstallError
from file_job import FileJob
from identity import CognitoIdentity
from job_config import JobConfig
from object_store import S3ObjectStore
from operation import OperationDescriptor, parse_operation
from profile_store import CognitoProfileStore, ProfileStore, SqliteProfileStore
from reconciler import Reconciler
from scaler import HearthHubClient

QUIET_LOGGERS = ("boto3", "botocore", "urllib3", "httpx", "httpcore")


def setup_logging() -> logging.Logger:
    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    formatter = logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s  %(message)s")
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=1 * 1024 * 1024,  # 1 MB
                backupCount=2,
                encoding="utf-8",
            )
        )

    root = logging.getLogger()
    root.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    # PartialPurgeWarning and friends end up in the job log
    logging.captureWarnings(True)
    return logging.getLogger("hearthhub")


def install_crash_handler(logger: logging.Logger):
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception


def make_profile_store(config: JobConfig, descriptor: OperationDescriptor) -> ProfileStore:
    if config.profile_store == "cognito":
        identity = CognitoIdentity(
            config.user_pool_id, config.cognito_client_id, config.cognito_client_secret
        )
        user = identity.authenticate(descriptor.discord_id, descriptor.refresh_token)
        return CognitoProfileStore(identity, user)
    return SqliteProfileStore(config.profile_db_path)


def run(argv: Sequence[str] | None = None, config: JobConfig | None = None) -> int:
    logger = logging.getLogger("hearthhub")

    try:
        descriptor = parse_operation(argv)
        config = config or JobConfig.from_env()
    except ValidationError as exc:
        logger.error("invalid job arguments or configuration: %s", exc)
        return 2

    store = None
    scaler = None
    job = None
    try:
        store = make_profile_store(config, descriptor)
        scaler = HearthHubClient(config.api_base_url)
        job = FileJob(
            descriptor,
            config,
            S3ObjectStore(config.bucket_name),
            Reconciler(config, store),
            scaler=scaler,
        )
        result = job.run()
    except (FileInstallError, OSError) as exc:
        reached = job.state.value if job is not None else "setup"
        logger.error("job failed after stage %s: %s", reached, exc)
        return 1
    finally:
        if scaler is not None:
            scaler.close()
        if store is not None:
            store.close()

    if result.errors:
        logger.warning(
            "job stopped at stage %s with errors: %s",
            result.state.value,
            "; ".join(result.errors),
        )
    else:
        logger.info("job for %s finished", descriptor.resolved_file_name)
    return 0


if __name__ == "__main__":
    logger = setup_logging()
    install_crash_handler(logger)
    logger.info("Starting HearthHub file install job")
    sys.exit(run())
