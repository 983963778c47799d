import json
import os
from pathlib import Path

from .constant import ImagePullPolicy

# sandbox token
SANDBOX_TOKEN = os.getenv(
    'SANDBOX_TOKEN',
    'KoNoSandboxDa',
)
LOG_DIR = Path(os.getenv(
    'LOG_DIR',
    'logs',
))
DOCKER_URL = os.getenv(
    'DOCKER_URL',
    'unix://var/run/docker.sock',
)

# ============================================================
# Fixed Resource Policy
# ============================================================
WORK_DIR = '/code'
TEST_FILE_NAME = 'testcase.txt'
MEMORY_LIMIT = 256 * 1024 * 1024  # bytes
CPU_LIMIT = 1
EXECUTION_TIMEOUT = 10  # sec.
CONTAINER_WAIT_TIME = 2  # sec.
IMAGE_PULL_TIMEOUT = 60  # sec.
STATS_WAIT_TIME = 3  # sec.
TMPFS = {'/tmp': 'rw,noexec,nosuid,size=100m'}
# keeps a container alive so commands can be exec'd into it
IDLE_COMMAND = ['tail', '-f', '/dev/null']

# ============================================================
# Docker Client Configuration
# ============================================================
DOCKER_MAX_CONNECTIONS = int(os.getenv('DOCKER_MAX_CONNECTIONS', '100'))
DOCKER_CONNECT_TIMEOUT = int(os.getenv('DOCKER_CONNECT_TIMEOUT', '30'))
DOCKER_RESPONSE_TIMEOUT = int(os.getenv('DOCKER_RESPONSE_TIMEOUT', '45'))

# ============================================================
# Container Pool Configuration
# ============================================================
POOL_MAX_PER_LANGUAGE = int(os.getenv('POOL_MAX_PER_LANGUAGE', '4'))
POOL_LABEL = 'oj-sandbox.pool'

_DEFAULT_EXECUTOR_CONFIG_PATH = Path(
    os.getenv('EXECUTOR_CONFIG', '.config/executor.json'))


def _load_json_config(path: Path) -> dict:
    try:
        with path.open() as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'on'}


def get_executor_config(config_path: str | Path | None = None) -> dict:
    path = Path(
        config_path) if config_path else _DEFAULT_EXECUTOR_CONFIG_PATH
    cfg = _load_json_config(path) if path else {}
    cfg['pull_image_always'] = _env_flag(
        'PULL_IMAGE_ALWAYS', bool(cfg.get('pull_image_always', False)))
    cfg['container_reuse_enabled'] = _env_flag(
        'CONTAINER_REUSE_ENABLED',
        bool(cfg.get('container_reuse_enabled', True)))
    policy = os.getenv('IMAGE_PULL_POLICY',
                       cfg.get('image_pull_policy',
                               ImagePullPolicy.FAIL_FAST.value))
    cfg['image_pull_policy'] = ImagePullPolicy(policy)
    cfg.setdefault('docker_url', DOCKER_URL)
    cfg.setdefault('images', {})
    return cfg
