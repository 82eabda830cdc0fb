"""
MongoDB utility functions for the API request audit log.
"""
import logging

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError
from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

# MongoDB client singleton
_mongo_client = None
_mongo_db = None
_mongo_available = None


def get_mongo_db():
    """Get MongoDB database instance (singleton pattern)."""
    global _mongo_client, _mongo_db, _mongo_available

    if not getattr(settings, 'MONGODB_ENABLED', True):
        return None

    # If we already know MongoDB is unavailable, return None
    if _mongo_available is False:
        return None

    if _mongo_db is None:
        try:
            _mongo_client = MongoClient(
                settings.MONGODB_URI,
                serverSelectionTimeoutMS=3000,  # 3 second timeout
                connectTimeoutMS=3000
            )
            # Test connection
            _mongo_client.admin.command('ping')
            _mongo_db = _mongo_client[settings.MONGODB_NAME]
            _mongo_available = True

            # Ensure indexes exist
            _ensure_indexes(_mongo_db)
        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.warning('MongoDB connection failed, request logging disabled: %s', e)
            _mongo_available = False
            return None

    return _mongo_db


def reset_mongo_connection():
    """Forget the cached client so the next call reconnects."""
    global _mongo_client, _mongo_db, _mongo_available
    if _mongo_client is not None:
        _mongo_client.close()
    _mongo_client = None
    _mongo_db = None
    _mongo_available = None


def _ensure_indexes(db):
    """Create necessary indexes for MongoDB collections."""
    try:
        api_logs = db.api_logs
        api_logs.create_index([("timestamp", -1)])
        api_logs.create_index([("endpoint", 1), ("timestamp", -1)])
        api_logs.create_index([("pnr", 1)])
        api_logs.create_index([("response_status", 1)])
    except PyMongoError as e:
        logger.error('Error creating MongoDB indexes: %s', e)


def log_api_request(endpoint, method, request_params, response_status,
                    execution_time_ms, pnr=None, ticket_status=None):
    """
    Log an API request to MongoDB.

    Args:
        endpoint: API endpoint path
        method: HTTP method (GET, POST, etc.)
        request_params: Dictionary of path/query parameters
        response_status: HTTP response status code
        execution_time_ms: Execution time in milliseconds
        pnr: PNR of the ticket the request booked or cancelled (optional)
        ticket_status: Tier the booked ticket landed in (optional)
    """
    db = get_mongo_db()
    if db is None:
        return  # MongoDB not available, skip logging

    log_entry = {
        "endpoint": endpoint,
        "method": method,
        "request_params": request_params,
        "response_status": response_status,
        "execution_time_ms": execution_time_ms,
        "timestamp": timezone.now()
    }

    if pnr is not None:
        log_entry["pnr"] = pnr
    if ticket_status is not None:
        log_entry["ticket_status"] = ticket_status

    try:
        db.api_logs.insert_one(log_entry)
    except PyMongoError as e:
        logger.error('Error logging to MongoDB: %s', e)


def is_mongodb_available():
    """Check if MongoDB is available."""
    if _mongo_available is not None:
        return _mongo_available

    get_mongo_db()
    return _mongo_available or False
