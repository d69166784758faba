import logging

from ipc_ledger import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level=None):
    """Configure root logging once for scripts and long-lived clients."""
    logging.basicConfig(
        level=level or getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT
    )
    return logging.getLogger('ipc_ledger')
