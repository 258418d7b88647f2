"""
Core configuration management
"""
from pathlib import Path
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Provisioning emulator / scanner settings"""

    # Cipher (fixed in robot firmware; overridable for experiments)
    cipher_key_hex: str = "df98b715d5c6ed2b25817b6f2554124a"
    cipher_iv_hex: str = "2841ae97419c2973296a0d4bdfe19a4f"

    # Emulated robot identity
    device_name: str = "Go2_ESP32EMU"
    serial_number: str = "ESP32-EMULATOR-v1.0-TESTDEVICE"

    # TCP bridge
    bridge_host: str = "127.0.0.1"
    bridge_port: int = 9750

    # Scanner exchange behaviour
    handshake_timeout_sec: float = 5.0
    response_timeout_sec: float = 10.0
    connect_timeout_sec: float = 30.0
    scan_duration_sec: float = 5.0
    rescan_delay_sec: float = 2.0
    chunk_size: int = 14
    name_prefixes: List[str] = ["G1_", "Go2_", "B2_", "H1_", "X1_"]

    # Scan record storage
    project_root: Path = Path(__file__).parent.parent
    data_dir: Path = project_root / "data"
    scan_db_path: Path = data_dir / "scans.db"
    scan_namespace: str = "unitree_scan"

    # Monitoring API
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    log_dir: Path = project_root / "logs"

    class Config:
        env_prefix = "UNIPROV_"
        env_file = ".env"


settings = Settings()
