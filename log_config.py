import logging


class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        return '"GET / ' not in msg and '"GET /test ' not in msg


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    for logger_name in ["uvicorn.access"]:
        logger = logging.getLogger(logger_name)
        logger.addFilter(HealthCheckFilter())
