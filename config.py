"""
Runtime configuration, read from the environment (and a local .env if present).
"""
import logging
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Security / Auth constants
SECRET_KEY = os.getenv("JWT_SECRET", "supersecretkey")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", 12))

# Gamification
POINTS_PER_TASK = int(os.getenv("POINTS_PER_TASK", 3))
COMPLETION_GRACE_DAYS = int(os.getenv("COMPLETION_GRACE_DAYS", 1))

CLIENT_URL = os.getenv("CLIENT_URL", "*")
PORT = int(os.getenv("PORT", 8000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
