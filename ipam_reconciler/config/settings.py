import os
import logging
import sys

# NetBox Configuration
# CRITICAL: These MUST be set as environment variables - never hardcode credentials!
NETBOX_URL = os.getenv("NETBOX_URL")
NETBOX_TOKEN = os.getenv("NETBOX_TOKEN")
NETBOX_SSL_VERIFY = os.getenv("NETBOX_SSL_VERIFY", "true").lower() in ("true", "1", "yes")
NETBOX_TIMEOUT = float(os.getenv("NETBOX_TIMEOUT", "10"))

# Validate required environment variables at startup
if not NETBOX_URL:
    error_msg = (
        "CRITICAL CONFIGURATION ERROR: NETBOX_URL environment variable is not set!\n"
        "Please set NETBOX_URL in your environment or .env file.\n"
        "Example: export NETBOX_URL='http://netbox:8080'"
    )
    print(f"ERROR: {error_msg}", file=sys.stderr)
    raise ValueError(error_msg)

if not NETBOX_TOKEN:
    error_msg = (
        "CRITICAL CONFIGURATION ERROR: NETBOX_TOKEN environment variable is not set!\n"
        "Please set NETBOX_TOKEN in your environment or .env file.\n"
        "Generate a token in NetBox: User Menu → API Tokens\n"
        "Example: export NETBOX_TOKEN='your-api-token-here'"
    )
    print(f"ERROR: {error_msg}", file=sys.stderr)
    raise ValueError(error_msg)

# MySQL Configuration (reconciliation cache, allocation ledger, mappings)
MYSQL_HOST = os.getenv("MYSQL_HOST", "localhost")
MYSQL_PORT = int(os.getenv("MYSQL_PORT", "3306"))
MYSQL_USER = os.getenv("MYSQL_USER", "ipam")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "")
MYSQL_DATABASE = os.getenv("MYSQL_DATABASE", "ipam_reconciler")
MYSQL_POOL_SIZE = int(os.getenv("MYSQL_POOL_SIZE", "20"))

# Allocation Engine
POOL_ADDRESS_LIMIT = int(os.getenv("POOL_ADDRESS_LIMIT", "254"))
ORPHAN_ALLOCATION_MAX_AGE_HOURS = int(os.getenv("ORPHAN_ALLOCATION_MAX_AGE_HOURS", "24"))


def get_mysql_settings() -> dict:
    """Connection keyword arguments for aiomysql"""
    return {
        "host": MYSQL_HOST,
        "port": MYSQL_PORT,
        "user": MYSQL_USER,
        "password": MYSQL_PASSWORD,
        "db": MYSQL_DATABASE,
    }


# Logging Configuration
def setup_logging():
    """Configure logging for the application with rotation"""
    from logging.handlers import RotatingFileHandler

    # Get log level from environment variable, default to INFO
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    log_file = os.getenv("LOG_FILE", "ipam_reconciler.log")

    # Create rotating file handler: 50MB per file, keep 5 backup files
    rotating_handler = RotatingFileHandler(
        log_file,
        maxBytes=50 * 1024 * 1024,  # 50MB
        backupCount=5,
        encoding='utf-8'
    )

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] %(funcName)s() - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            rotating_handler
        ]
    )
    return logging.getLogger(__name__)


# Server Configuration
SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT = int(os.getenv("SERVER_PORT", "8000"))
