import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

# Message broker (Redis pub/sub). Host differs between local runs and
# compose deployments, so it always comes from the environment.
BROKER_HOST = os.getenv("BROKER_HOST", "localhost")
BROKER_PORT = int(os.getenv("BROKER_PORT", "6379"))
BROKER_USERNAME = os.getenv("BROKER_USERNAME")
BROKER_PASSWORD = os.getenv("BROKER_PASSWORD")
BROKER_DB = int(os.getenv("BROKER_DB", "0"))
BROKER_EXCHANGE = os.getenv("BROKER_EXCHANGE", "schedule_exchange")

# Connection retry budget shared by publishers and consumers
BROKER_CONNECT_ATTEMPTS = int(os.getenv("BROKER_CONNECT_ATTEMPTS", "10"))
BROKER_RETRY_DELAY_SECONDS = float(os.getenv("BROKER_RETRY_DELAY_SECONDS", "2"))

# Notification sink
NOTIFICATIONS_FILE = os.getenv("NOTIFICATIONS_FILE", "schedule_notifications.txt")

# Artificial pause inside each optimization run (seconds)
OPTIMIZATION_DELAY_SECONDS = float(os.getenv("OPTIMIZATION_DELAY_SECONDS", "0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


class BrokerSettings(BaseModel):
    host: str = BROKER_HOST
    port: int = BROKER_PORT
    username: str | None = BROKER_USERNAME
    password: str | None = BROKER_PASSWORD
    db: int = BROKER_DB
    exchange: str = BROKER_EXCHANGE
    connect_attempts: int = BROKER_CONNECT_ATTEMPTS
    retry_delay_seconds: float = BROKER_RETRY_DELAY_SECONDS

    @classmethod
    def from_env(cls) -> "BrokerSettings":
        return cls()

    def channel_for(self, routing_key: str) -> str:
        """Redis channel that carries *routing_key* on this exchange."""
        return f"{self.exchange}:{routing_key}"

    def routing_key_of(self, channel: str) -> str:
        prefix = f"{self.exchange}:"
        return channel[len(prefix) :] if channel.startswith(prefix) else channel
