"""
Offline client configuration.

Every knob is read from the environment with a development default,
the same way the server settings module does it.
"""
import os
import uuid
from dataclasses import dataclass, field


@dataclass
class OfflineConfig:
    server_url: str = 'http://localhost:8000'
    timeout_seconds: float = 30.0
    debounce_seconds: float = 5.0
    data_dir: str = '.offline'
    device_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_env(cls) -> 'OfflineConfig':
        defaults = cls()
        return cls(
            server_url=os.environ.get('SYNC_SERVER_URL', defaults.server_url),
            timeout_seconds=float(os.environ.get('SYNC_TIMEOUT_SECONDS', defaults.timeout_seconds)),
            debounce_seconds=float(os.environ.get('SYNC_DEBOUNCE_SECONDS', defaults.debounce_seconds)),
            data_dir=os.environ.get('SYNC_DATA_DIR', defaults.data_dir),
            device_id=os.environ.get('SYNC_DEVICE_ID', defaults.device_id),
        )

    @property
    def log_path(self) -> str:
        return os.path.join(self.data_dir, 'mutation_log.json')

    @property
    def store_path(self) -> str:
        return os.path.join(self.data_dir, 'local_store.json')
