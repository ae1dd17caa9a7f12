from pathlib import Path

# Project root
BASE_PATH = Path(__file__).resolve().parent.parent

# Alembic migrations
ALEMBIC_VERSION_DIR = BASE_PATH / 'alembic' / 'versions'

# Log files
LOG_DIR = BASE_PATH / 'log'
