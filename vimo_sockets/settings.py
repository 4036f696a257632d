#!/usr/bin/env python3
import os

# set via string, convert to logging.LEVEL later
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# access dsn for sentry error reporting
SENTRY_DSN = os.environ.get("SENTRY_DSN")
SENTRY_SAMPLE_RATE = float(os.environ.get("SENTRY_SAMPLE_RATE", "0.3"))
SENTRY_PROFILING_SAMPLE_RATE = float(os.environ.get("SENTRY_PROFILING_SAMPLE_RATE", "0.0"))

APP_ENV = os.environ.get("APP_ENV", default="prod")

HOST = os.environ.get("HOST", "127.0.0.1")
PORT = int(os.environ.get("PORT", "5000"))
CORS_ALLOWED_ORIGINS = os.environ.get("CORS_ALLOWED_ORIGINS", "*")

MONGO_HOST = os.environ.get("MONGO_HOST", "localhost")
MONGO_PORT = int(os.environ.get("MONGO_PORT", "27017"))
MONGO_DB = os.environ.get("MONGO_DB", "vimo_sockets")
MONGO_USER = os.environ.get("MONGO_USER", "vimo_sockets")
MONGO_PASSWORD = os.environ.get("MONGO_PASSWORD", "vimo_sockets")

# "jwt" decodes tokens locally, "user_service" asks the identity service
AUTH_BACKEND = os.environ.get("AUTH_BACKEND", "jwt")
JWT_SECRET = os.environ.get("JWT_SECRET", "vimo-sockets-development-secret-change-me")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
AUTH_TIMEOUT_SECONDS = float(os.environ.get("AUTH_TIMEOUT_SECONDS", "10"))

USER_SERVICE_URL = os.environ.get("USER_SERVICE_URL", "http://user-service:8000")

# empty host disables domain event publishing
NATS_HOST = os.environ.get("NATS_HOST", "")
NATS_TOKEN = os.environ.get("NATS_TOKEN", "")

USE_REDIS_MANAGER = os.environ.get("USE_REDIS_MANAGER", "").lower() in ("1", "true", "yes")
REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
REDIS_PORT = int(os.environ.get("REDIS_PORT", "6379"))
REDIS_DB = int(os.environ.get("REDIS_DB", "5"))
REDIS_PASSWORD = os.environ.get("REDIS_PASSWORD", "")
REDIS_CONNECTION_STRING = f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}/{REDIS_DB}"

SIO_ADMIN_USERNAME = os.environ.get("SIO_ADMIN_USERNAME")
SIO_ADMIN_PASSWORD = os.environ.get("SIO_ADMIN_PASSWORD")

# rooms
ROOM_CODE_LENGTH = int(os.environ.get("ROOM_CODE_LENGTH", "6"))
ROOM_CODE_MAX_ATTEMPTS = int(os.environ.get("ROOM_CODE_MAX_ATTEMPTS", "10"))
ROOM_EXPIRATION_SECONDS = int(os.environ.get("ROOM_EXPIRATION_SECONDS", str(24 * 60 * 60)))
PARTICIPANT_TIMEOUT_SECONDS = int(os.environ.get("PARTICIPANT_TIMEOUT_SECONDS", "60"))
SWEEP_INTERVAL_SECONDS = float(os.environ.get("SWEEP_INTERVAL_SECONDS", "15"))

# chat
CHAT_HISTORY_LIMIT = int(os.environ.get("CHAT_HISTORY_LIMIT", "50"))
CHAT_MESSAGE_MAX_LENGTH = int(os.environ.get("CHAT_MESSAGE_MAX_LENGTH", "1000"))

# client sync agent
CLIENT_CONNECT_TIMEOUT_SECONDS = float(os.environ.get("CLIENT_CONNECT_TIMEOUT_SECONDS", "15"))
CLIENT_JOIN_TIMEOUT_SECONDS = float(os.environ.get("CLIENT_JOIN_TIMEOUT_SECONDS", "10"))
TIME_REPORT_THRESHOLD_SECONDS = float(os.environ.get("TIME_REPORT_THRESHOLD_SECONDS", "2.0"))
DRIFT_SNAP_TOLERANCE_SECONDS = float(os.environ.get("DRIFT_SNAP_TOLERANCE_SECONDS", "0.5"))
HEARTBEAT_INTERVAL_SECONDS = float(os.environ.get("HEARTBEAT_INTERVAL_SECONDS", "20"))
RECONNECT_MAX_ATTEMPTS = int(os.environ.get("RECONNECT_MAX_ATTEMPTS", "5"))
RECONNECT_BACKOFF_SECONDS = float(os.environ.get("RECONNECT_BACKOFF_SECONDS", "1.0"))
RECONNECT_BACKOFF_MAX_SECONDS = float(os.environ.get("RECONNECT_BACKOFF_MAX_SECONDS", "16.0"))

DEBUG_ROOM_CODE = os.environ.get("DEBUG_ROOM_CODE", "DEMO42")
DEBUG_HOST_ID = os.environ.get("DEBUG_HOST_ID", "debug-host")
