#!/usr/bin/env python3
"""
Pipeline Runner
Executes one pipeline step by name, e.g. `python pipeline_runner.py fetch_defillama_pools`.
"""

import sys
import logging
import json
import importlib
from pathlib import Path

class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "name": record.name
        }
        return json.dumps(log_record)

# Add project root to Python path
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

logger = logging.getLogger(__name__)

STEPS = {
    "init_db": "database.db_utils",
    "fetch_defillama_pools": "data_ingestion.fetch_defillama_pools",
    "create_median_snapshot": "data_processing.create_median_snapshot",
    "enrich_pools": "data_processing.enrich_pools",
}


def setup_logging(level=logging.INFO):
    """Route all log records through a single JSON handler on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def run_step(script_name):
    """Import the step's module and call the function named after the step."""
    module_path = STEPS[script_name]
    logger.info(f"Running module: {module_path}")
    module = importlib.import_module(module_path)
    main_func = getattr(module, script_name)
    logger.info(f"Calling main function: {script_name}()")
    return main_func()


def main(argv=None):
    """Main entry point for pipeline runner."""
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        logger.error("Usage: python pipeline_runner.py <script_name>")
        sys.exit(1)

    script_name = argv[0]
    if script_name not in STEPS:
        logger.error(f"Unknown script: {script_name}")
        logger.error(f"Available scripts: {', '.join(sorted(STEPS))}")
        sys.exit(1)

    logger.info(f"Starting pipeline step: {script_name}")
    try:
        run_step(script_name)
        logger.info(f"Module {script_name} completed successfully")
    except Exception as e:
        logger.exception(f"Error executing {script_name}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    setup_logging()
    main()
