import os

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "schemacraft")

JWT_SECRET = os.getenv("JWT_SECRET", "supersecret-schemacraft")
JWT_EXPIRE_MIN = int(os.getenv("JWT_EXPIRE_MIN", "1440"))

DEFAULT_MONTHLY_QUOTA = int(os.getenv("DEFAULT_MONTHLY_QUOTA", "1000"))
QUOTA_WARNING_THRESHOLD = int(os.getenv("QUOTA_WARNING_THRESHOLD", "500"))

# Applied to server selection, connect and socket timeouts of every client
DB_TIMEOUT_MS = int(os.getenv("DB_TIMEOUT_MS", "10000"))

BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
FORCE_HTTPS = os.getenv("FORCE_HTTPS", "").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))
