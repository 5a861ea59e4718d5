import json
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

DEFAULT_CLINIC_CONFIG = {
    "platform_title": "VETADVISOR",
    "address": "Livestock Health Office",
    "phone": "000",
    "about": "Expert system for diagnosing cattle diseases from observed symptoms using certainty factors.",
}


@dataclass
class Settings:
    database_url: str = "sqlite:///./vetadvisor.db"
    session_secret: str = "change-me"
    admin_email: str = "admin@sapi.com"
    admin_password: str = "admin123"
    log_level: str = "INFO"
    log_file: str = ""
    api_url: str = "http://127.0.0.1:8000"
    config_file: str = "clinic_config.json"


def get_settings() -> Settings:
    env = os.environ
    return Settings(
        database_url=env.get("VETADVISOR_DATABASE_URL", Settings.database_url),
        session_secret=env.get("VETADVISOR_SESSION_SECRET", Settings.session_secret),
        admin_email=env.get("VETADVISOR_ADMIN_EMAIL", Settings.admin_email),
        admin_password=env.get("VETADVISOR_ADMIN_PASSWORD", Settings.admin_password),
        log_level=env.get("VETADVISOR_LOG_LEVEL", Settings.log_level),
        log_file=env.get("VETADVISOR_LOG_FILE", Settings.log_file),
        api_url=env.get("VETADVISOR_API_URL", Settings.api_url),
        config_file=env.get("VETADVISOR_CONFIG_FILE", Settings.config_file),
    )


settings = get_settings()


def get_clinic_config(path: str = None) -> dict:
    """Clinic branding and about text; defaults fill whatever the file lacks."""
    conf = dict(DEFAULT_CLINIC_CONFIG)
    try:
        with open(path or settings.config_file, "r") as f:
            conf.update(json.load(f))
    except (OSError, ValueError):
        pass
    return conf
