import logging
from importlib.metadata import PackageNotFoundError, version

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbosity: int = 0):
    """WARNING by default, INFO with -v, DEBUG with -vv or more."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


def log_component_version(component_name: str):
    try:
        component_version = version(component_name)
    except PackageNotFoundError:
        component_version = "unknown"

    logging.info(f"Starting {component_name} version {component_version}")
