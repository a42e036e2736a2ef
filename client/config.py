import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

current_file_path = Path(__file__).resolve()
root_dir = current_file_path.parent.parent
env_path = root_dir / ".env"

if env_path.exists():
    load_dotenv(dotenv_path=env_path, override=False)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class ClientConfig:
    def __init__(
        self,
        api_url: Optional[str] = None,
        storage_path: Optional[str] = None,
        timezone: Optional[str] = None,
    ) -> None:
        self.API_URL = (api_url or os.getenv("API_URL", "http://localhost:5000/api")).rstrip("/")
        self.API_TIMEOUT = float(os.getenv("API_TIMEOUT", "10"))
        self.STORAGE_PATH = storage_path or os.getenv(
            "STORAGE_PATH", str(Path.home() / ".task_manager" / "storage.json")
        )
        # Zone used as "local time" when deriving reminder fire times
        self.TIMEZONE = timezone or os.getenv("TIMEZONE", "UTC")
        self.NOTIFICATIONS_ENABLED = _env_flag("NOTIFICATIONS_ENABLED", "true")
        self.NOTIFICATION_JOBSTORE_URL = os.getenv("NOTIFICATION_JOBSTORE_URL")
        self.STALE_NOTIFICATION_SECONDS = int(os.getenv("STALE_NOTIFICATION_SECONDS", "900"))
        self.FALLBACK_MISFIRE_GRACE_SECONDS = int(os.getenv("FALLBACK_MISFIRE_GRACE_SECONDS", "60"))

config = ClientConfig()
