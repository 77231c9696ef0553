"""Run command implementation."""

import json

from packflow.config import EngineConfig, GraphDocument
from packflow.exceptions import PackflowException
from packflow.scheduler import GraphScheduler
from packflow.utils.logging import configure_logging, logger


def run_command(args):
    """Execute a graph document and report per-node outcomes."""
    try:
        config = EngineConfig.from_yaml(args.config) if args.config else EngineConfig()
        if args.config:
            configure_logging(
                structured=config.logging.structured,
                level=args.log_level if args.log_level != "INFO" else config.logging.level.value,
            )

        graph = GraphDocument.load(args.graph).to_graph()
        scheduler = GraphScheduler(
            config.build_store(), config.build_schemas(), config.build_catalog(), config=config
        )
        report = scheduler.run(graph)
    except (PackflowException, OSError, ValueError) as e:
        logger.error("Run failed", error=str(e))
        return 1

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print(report.summary())

    if report.failure_count or report.error:
        for node_id, result in report.results.items():
            if not result.success:
                logger.error("Node failed", node_id=node_id, error=result.error)
        return 1

    logger.info("Run completed successfully", executed=report.total_executed)
    return 0
