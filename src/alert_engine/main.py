import argparse
import asyncio
import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

from alert_engine.api.app import create_application
from alert_engine.engine import AlertEngine
from alert_engine.schema.engine_config_schema import EngineConfig
from alert_engine.telemetry.http_telemetry_client import HttpTelemetryClient
from alert_engine.util.config_manager import ConfigManager
from alert_engine.util.factory.notifier_factory import build_notifiers
from alert_engine.util.factory.rule_factory import load_rules_from_yaml
from alert_engine.util.logger_config import LOG_LEVEL_MAP, quiet_http_logs, setup_logging

logger = logging.getLogger("AlertEngineMain")


def load_engine_config(path: str) -> EngineConfig:
    if not os.path.exists(path):
        logger.warning(f"Engine config {path} not found, using defaults")
        return EngineConfig()
    return EngineConfig(**ConfigManager.load_yaml_with_env(path))


async def main(engine_config_path: str, rules_path: str, notifier_config_path: str, with_api: bool | None = None):
    load_dotenv()

    engine_config = load_engine_config(engine_config_path)
    setup_logging(
        log_level=LOG_LEVEL_MAP.get(engine_config.LOG_LEVEL.upper(), logging.INFO),
        log_to_file=engine_config.LOG_TO_FILE,
        log_dir=engine_config.PATHS.LOG_DIR,
    )
    quiet_http_logs()

    telemetry_cfg = engine_config.TELEMETRY
    telemetry_client = HttpTelemetryClient(
        url=telemetry_cfg.URL, api_key=telemetry_cfg.API_KEY, timeout_sec=telemetry_cfg.QUERY_TIMEOUT_SEC
    )
    notifiers = build_notifiers(notifier_config_path)

    engine = AlertEngine(telemetry_client=telemetry_client, notifiers=notifiers, config=engine_config)
    load_rules_from_yaml(rules_path, engine.registry)

    api_enabled = engine_config.API.ENABLED if with_api is None else with_api
    server: uvicorn.Server | None = None
    if api_enabled:
        app = create_application(engine)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=engine_config.API.HOST,
                port=engine_config.API.PORT,
                log_level=engine_config.LOG_LEVEL.lower(),
                access_log=False,
            )
        )

    logger.info("=" * 60)
    logger.info("ALERT EVALUATION ENGINE STARTING")
    logger.info(f"Rules: {len(engine.registry)} | Channels: {len(engine.dispatcher.channels)}")
    logger.info(f"Concurrency: {engine_config.SCHEDULER.CONCURRENCY}")
    logger.info(f"Checkpoint: {'enabled' if engine.checkpoint_task else 'disabled'}")
    if api_enabled:
        logger.info(f"API: http://{engine_config.API.HOST}:{engine_config.API.PORT}/docs")
    logger.info("=" * 60)

    try:
        await engine.start()
        if server is not None:
            await server.serve()
        else:
            await asyncio.Event().wait()
    finally:
        logger.info("Shutting down...")
        await engine.stop()
        logger.info("Shutdown complete")


def cli() -> None:
    parser = argparse.ArgumentParser(description="Threshold and query alert evaluation engine")
    parser.add_argument("--engine_config", default="res/engine_config.yml", help="Path to engine config YAML")
    parser.add_argument("--alert_rules", default="res/alert_rules.yml", help="Path to alert rule YAML")
    parser.add_argument("--notifier_config", default="res/notifier_config.yml", help="Path to notifier config YAML")
    api_group = parser.add_mutually_exclusive_group()
    api_group.add_argument("--api", dest="with_api", action="store_true", default=None, help="Serve the status API")
    api_group.add_argument("--no-api", dest="with_api", action="store_false", help="Do not serve the status API")

    args = parser.parse_args()
    try:
        asyncio.run(
            main(
                engine_config_path=args.engine_config,
                rules_path=args.alert_rules,
                notifier_config_path=args.notifier_config,
                with_api=args.with_api,
            )
        )
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Failed to start: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
