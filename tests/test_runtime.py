from unittest.mock import patch

import docker
import pytest

from container.runtime import ContainerRuntime
from tests.docker_fake import FakeDockerClient


def test_client_is_built_once_with_pool_settings():
    fake = FakeDockerClient()
    with patch('container.runtime.docker.APIClient',
               return_value=fake) as api_client:
        rt = ContainerRuntime(docker_url='tcp://docker:2375',
                              timeout=45,
                              max_connections=10)
    api_client.assert_called_once_with(
        base_url='tcp://docker:2375',
        timeout=45,
        max_pool_size=10,
    )
    assert rt.client is fake
    rt.close()
    assert fake.closed


def test_submit_after_close_raises(runtime):
    runtime.close()
    assert runtime.closed
    with pytest.raises(RuntimeError):
        runtime.submit(print)
    # closing twice is harmless
    runtime.close()


def test_reconcile_sweeps_registered_leaks(runtime, fake_client):
    cid = fake_client.create_container('python:3.9-slim')['Id']
    runtime.leaks.register(cid)
    runtime.leaks.register('gone')
    assert len(runtime.leaks) == 2

    assert runtime.reconcile() == 2
    assert len(runtime.leaks) == 0
    assert cid in fake_client.removed


def test_reconcile_keeps_failures(runtime, fake_client):
    cid = fake_client.create_container('python:3.9-slim')['Id']
    fake_client.fail_remove.add(cid)
    runtime.leaks.register(cid)
    assert runtime.reconcile() == 0
    assert runtime.leaks.snapshot() == [cid]


def test_close_sweeps_leaks(fake_client):
    with patch('container.runtime.docker.APIClient',
               return_value=fake_client):
        rt = ContainerRuntime()
    cid = fake_client.create_container('python:3.9-slim')['Id']
    rt.leaks.register(cid)
    with rt:
        pass
    assert cid not in fake_client.containers
    with pytest.raises(docker.errors.NotFound):
        fake_client.inspect_container(cid)
