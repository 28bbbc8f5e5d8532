import sys
import os
# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from database import create_schema, drop_schema, init_engine, shutdown
import logging
from utils.logging_config import setup_logging

if __name__ == '__main__':
    setup_logging()
    init_engine()
    logging.info('db.reset dropping tables')
    drop_schema()
    logging.info('db.reset creating tables')
    create_schema()
    shutdown()
    logging.info('db.reset complete')
