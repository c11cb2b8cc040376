"""DEX Bridge - Migrate, enrich and verify DSS Data Exchange records."""

import logging
import warnings

__version__ = "0.1.0"
__author__ = "DEX Migration Team"
__license__ = "Apache-2.0"

# HTTP and ORM libraries are chatty at INFO; keep the console for migration progress
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("httpcore.connection").setLevel(logging.WARNING)
logging.getLogger("httpcore.http11").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

warnings.filterwarnings("ignore", category=DeprecationWarning, module="httpx")
