from pathlib import Path
import os
from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = ROOT / '.env'
load_dotenv(dotenv_path=ENV_PATH)

DATA_DIR = ROOT / 'data'

DATABASE_URL = os.getenv('DATABASE_URL') or f"sqlite:///{DATA_DIR / 'database.db'}"
SQL_ECHO = os.getenv('SQL_ECHO', '').lower() in ('1', 'true', 'yes')

# empty means single-node mode: fan-out goes straight to local websockets
RMQ_URL = os.getenv('RMQ_URL', '')
RMQ_EXCHANGE = os.getenv('RMQ_EXCHANGE', 'messages')

DATA_ENCRYPTION_KEYS_RAW = os.getenv('DATA_ENCRYPTION_KEYS', '')
DATA_ENCRYPTION_KEYS = [k.strip() for k in DATA_ENCRYPTION_KEYS_RAW.split(',') if k.strip()]

PERSISTENCE_TIMEOUT_S = float(os.getenv('PERSISTENCE_TIMEOUT_S', '10'))
TYPING_TTL_S = float(os.getenv('TYPING_TTL_S', '3'))
OUTBOUND_QUEUE_SIZE = int(os.getenv('OUTBOUND_QUEUE_SIZE', '256'))

PING_IDLE_TIMEOUT_S = float(os.getenv('PING_IDLE_TIMEOUT_S', '75'))
WATCHDOG_TICK_S = float(os.getenv('WATCHDOG_TICK_S', '5'))

MAX_CONTENT_LENGTH = 10000
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 1000

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        'CORS_ORIGINS',
        'http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000',
    ).split(',')
    if o.strip()
]

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
