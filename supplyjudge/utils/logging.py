import logging, os, sys

PACKAGE_LOGGER = "supplyjudge"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _package_logger():
    root = logging.getLogger(PACKAGE_LOGGER)
    if not root.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(os.getenv("LOG_FORMAT", LOG_FORMAT)))
        root.addHandler(h)
        root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    return root


def get_logger(name):
    # one stdout handler on the package logger; module loggers propagate to it
    _package_logger()
    if name == PACKAGE_LOGGER or name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
