import logging


LOG_FORMAT = "%(asctime)s %(levelname)s [%(tracker)s] %(message)s"


class TrackerNameFilter(logging.Filter):
    def __init__(self, tracker_name: str):
        super().__init__()
        self.tracker_name = tracker_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.tracker = self.tracker_name
        return True


def setup_logger(tracker_name: str, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(f"marker_tracker.{tracker_name}")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(TrackerNameFilter(tracker_name))
        logger.addHandler(handler)

    return logger


def add_file_handler(logger: logging.Logger, tracker_name: str, log_path: str) -> logging.FileHandler:
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(TrackerNameFilter(tracker_name))
    logger.addHandler(handler)
    return handler
