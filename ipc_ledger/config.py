"""
IPC Ledger configuration.

Values are read from the environment after loading the project's `.env`
file. Financial constants that mirror backend business rules live here too
so every calculator reads them from one place.
"""

from dotenv import load_dotenv
from pathlib import Path
import os

ROOT_DIR = Path(__file__).resolve().parent.parent
load_dotenv(ROOT_DIR / '.env')

# Backend API
API_URL = os.environ.get('IPC_API_URL', 'http://localhost:5280/')
API_TIMEOUT = float(os.environ.get('IPC_API_TIMEOUT', '60'))
# Bearer token for the ipc-ledger command line
API_TOKEN = os.environ.get('IPC_API_TOKEN')

# Default status filter for the contract list (2 = Active)
CONTRACT_LIST_STATUS = int(os.environ.get('CONTRACT_LIST_STATUS', '2'))

# JWT claims decoding (signature verification only when a key is configured)
JWT_SECRET_KEY = os.environ.get('JWT_SECRET_KEY')
JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM', 'HS256')

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

# ============================================
# FINANCIAL CONSTANTS
# ============================================
DEFAULT_RETENTION_PERCENTAGE = 10.0
MIN_PERCENTAGE = 0.0
MAX_PERCENTAGE = 100.0

# Bulk "apply percentage" on a building accepts over-measurement up to 200%
MAX_BULK_PERCENTAGE = 200.0

# ============================================
# CORRECTION RULES
# ============================================
CORRECTION_REASON_MIN_LENGTH = 10
CORRECTION_REASON_MAX_LENGTH = 500
CORRECTION_VALUE_TOLERANCE = 0.0001
CORRECTION_HISTORY_DEFAULT_LIMIT = 100

# Roles allowed to overwrite previous-period baselines
CORRECTION_ROLES = ("ContractsManager", "QuantitySurveyor", "Admin")

# ============================================
# APPROVAL WORKFLOW
# ============================================
# Signing order used when the backend has not recorded any step yet
APPROVAL_CHAIN_ROLES = ("ProjectManager", "QuantitySurveyor", "ContractsManager", "OperationsManager")
