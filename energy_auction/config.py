import os
from pathlib import Path
from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path, override=True)

DB_CONFIG = {
    'host': os.getenv('DB_HOST', 'localhost'),
    'user': os.getenv('DB_USER'),
    'password': os.getenv('DB_PASSWORD'),
    'database': os.getenv('DB_NAME', 'energy_auction'),
    'port': int(os.getenv('DB_PORT', '3306')),
    'connection_timeout': int(os.getenv('DB_CONNECT_TIMEOUT', '10')),
}

# Matches the DECIMAL(10,4) columns of bids/supplies/timeslots.
PRICE_DECIMALS = int(os.getenv('PRICE_DECIMALS', '4'))
QUANTITY_DECIMALS = int(os.getenv('QUANTITY_DECIMALS', '4'))

CLEARING_LOCK_TIMEOUT = float(os.getenv('CLEARING_LOCK_TIMEOUT', '30'))
CLEARING_INTERVAL_SECONDS = int(os.getenv('CLEARING_INTERVAL_SECONDS', '300'))

LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

JWT_SECRET = os.getenv('JWT_SECRET', 'dev_secret_change_me')
JWT_ALGO = 'HS256'
