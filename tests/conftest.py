import pytest
from unittest.mock import patch

from container.image import ImageProvisioner
from container.metrics import MemoryCollector
from container.pool import ContainerPool
from container.runtime import ContainerRuntime
from executor.controller import CodeExecutor
from executor.languages import JAVA, JAVASCRIPT, PYTHON
from tests.docker_fake import FakeDockerClient

ALL_IMAGES = (JAVA.image, PYTHON.image, JAVASCRIPT.image)


@pytest.fixture
def fake_client():
    return FakeDockerClient(images=ALL_IMAGES)


@pytest.fixture
def runtime(fake_client):
    with patch('container.runtime.docker.APIClient',
               return_value=fake_client):
        rt = ContainerRuntime(max_workers=8)
    yield rt
    rt.close()


@pytest.fixture
def pool(runtime, tmp_path):
    base_dir = tmp_path / 'pool'
    base_dir.mkdir()
    p = ContainerPool(runtime, boot_wait=0, base_dir=base_dir)
    yield p
    p.shutdown()


@pytest.fixture
def make_executor(runtime, pool, tmp_path):
    '''
    Build a ``CodeExecutor`` wired to the fake client. Workspaces are
    created under ``tmp_path / "ws"`` so tests can check they are gone.
    '''
    ws_root = tmp_path / 'ws'
    ws_root.mkdir()

    def make(profile=PYTHON, **kwargs):
        kwargs.setdefault('pool', pool)
        kwargs.setdefault('provisioner', ImageProvisioner(runtime))
        kwargs.setdefault('collector', MemoryCollector(runtime, window=0.5))
        kwargs.setdefault('workspace_root', ws_root)
        kwargs.setdefault('command_timeout', 2)
        return CodeExecutor(profile, runtime, **kwargs)

    make.workspace_root = ws_root
    return make
