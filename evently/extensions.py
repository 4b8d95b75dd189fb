from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy import event
import logging

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

db = SQLAlchemy()
migrate = Migrate(compare_type=True, render_as_batch=True)
jwt = JWTManager()
limiter = Limiter(
    get_remote_address,
    default_limits=["150 per minute", "10000 per hour", "100000 per day"],
    strategy="fixed-window",
)


def reset_sqlite_busy_timeout(engine, seconds):
    """Restore the engine-wide busy timeout whenever the pool hands out a connection."""
    milliseconds = int(seconds * 1000)

    @event.listens_for(engine, "checkout")
    def _reset_busy_timeout(dbapi_connection, connection_record, connection_proxy):
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout = {milliseconds}")
        cursor.close()
