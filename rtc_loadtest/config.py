"""Configuration for the browser load test harness."""

from pathlib import Path
from pydantic_settings import BaseSettings
from functools import lru_cache

TEMPLATES_DIR = Path(__file__).parent / "templates"


class Settings(BaseSettings):
    """Harness settings loaded from environment variables."""
    
    # Polling
    poll_interval_seconds: float = 1.0      # Sleep between two collection passes
    wait_timeout_seconds: float = 60.0      # Default timeout for event waits
    collect_stats: bool = False             # Polling loop logs stats too, not only gather_events_and_stats
    
    # Callback dispatch
    callback_workers: int = 32              # Threads shared by every session
    
    # SSH to browser instances
    ssh_user: str = "ubuntu"
    ssh_port: int = 22
    private_key_path: str = "~/.ssh/id_rsa"
    ssh_connect_timeout_seconds: float = 10.0
    ssh_channel_timeout_seconds: float = 4.0
    template_dir: str = str(TEMPLATES_DIR)
    recording_port: int = 4444              # Port kept open under TURN restriction
    
    # Output
    stats_file: str = "browser-stats.log"
    report_file: str = ""
    
    # Observability
    metrics_port: int = 8080
    log_level: str = "INFO"
    log_json: bool = True
    
    class Config:
        env_prefix = "LOADTEST_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
