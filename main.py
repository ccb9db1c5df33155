import asyncio
import logging
import os
import sys
from dotenv import load_dotenv

from action_executor import DryRunActionExecutor
from config.logging_config import setup_logging
from engine import AutomationEngine
from execution_logger import ExecutionLogger
from performance_analyzer import PerformanceAnalyzer
from utils import load_config, validate_config, ConfigError

ENV_OVERRIDES = {
    "DROPPILOT_TICK_INTERVAL_S": ("engine", "tick_interval_s", float),
    "DROPPILOT_MAX_CONCURRENT": ("engine", "max_concurrent_executions", int),
    "DROPPILOT_COOLDOWN_S": ("engine", "cooldown_s", float),
    "DROPPILOT_LOG_LEVEL": ("logging", "level", str),
}


def apply_env_overrides(config: dict) -> dict:
    """
    Loads the .env file and applies DROPPILOT_* overrides on top of the YAML config.
    """
    load_dotenv()
    for var, (section, key, cast) in ENV_OVERRIDES.items():
        raw = os.getenv(var)
        if raw is None or raw == "":
            continue
        try:
            config.setdefault(section, {})[key] = cast(raw)
        except ValueError:
            raise ConfigError(f"CRITICAL ERROR: {var}={raw!r} is not a valid {cast.__name__}.")
        logging.info(f"Config override from environment: {section}.{key} = {raw}")
    validate_config(config)
    return config


async def main():
    """
    The main entry point. Initializes all components and runs the engine until
    it is cancelled (Ctrl+C).
    """
    engine = None  # Define here to be accessible in finally block
    execution_logger = None
    try:
        # 1. Load configuration and environment overrides
        load_dotenv()
        config = load_config(os.getenv("DROPPILOT_CONFIG") or None)
        config = apply_env_overrides(config)
        setup_logging(config.get('logging'))

        # 2. Initialize components
        executor_cfg = config.get('executor') or {}
        executor = DryRunActionExecutor(simulated_latency_s=executor_cfg.get('simulated_latency_s', 0.0))
        log_file = (config.get('logging') or {}).get('execution_log_file', 'executions.csv')
        execution_logger = ExecutionLogger(log_file) if log_file else None

        engine = AutomationEngine(config, executor, execution_logger=execution_logger)
        engine.seed_from_config()

        # 3. Run until cancelled
        await engine.start()
        await asyncio.Event().wait()

    except ConfigError as e:
        logging.error(f"Configuration Error: {e}")
    except asyncio.CancelledError:
        logging.info("Engine task was cancelled.")
    except Exception as e:
        logging.error(f"An unexpected error occurred: {e}", exc_info=True)
    finally:
        # This block will run NO MATTER WHAT, ensuring in-flight executions settle.
        if engine:
            logging.info("Stopping engine and draining the execution queue...")
            await engine.stop(drain=True)
            stats = engine.stats()
            logging.info(f"Final stats: {stats.to_dict()}")
        if execution_logger:
            execution_logger.close()
            report_performance(execution_logger.filename)


def report_performance(log_file: str):
    """
    Logs the KPIs and the per-template breakdown of the execution log.
    Returns the KPI dict, or None when there is nothing to analyze.
    """
    analyzer = PerformanceAnalyzer(log_file)
    if not analyzer.load_data():
        return None
    kpis = analyzer.calculate_kpis()
    logging.info("--- Execution performance ---")
    for name, value in kpis.items():
        logging.info(f"  {name}: {value}")
    logging.info(f"Breakdown by template:\n{analyzer.breakdown_by_template().to_string()}")
    return kpis


def run():
    """Console entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        stream=sys.stdout
    )
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Shutdown signal received (Ctrl+C). Exiting gracefully.")


if __name__ == "__main__":
    run()
