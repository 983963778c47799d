import threading
from pathlib import Path

import docker
import pytest

from container.metrics import MemoryCollector
from container.pool import ContainerPool
from executor.constant import ExecutionStatus
from executor.exception import ContainerStartError, ImagePullError
from executor.languages import JAVA, JAVASCRIPT, PYTHON
from tests.docker_fake import live_feed, script

PY_RUN = ['python', '/code/solution.py']


def run_commands(fake_client, prefix):
    return [
        cmd for cmd in fake_client.commands() if cmd[:len(prefix)] == prefix
    ]


def assert_workspace_removed(make_executor):
    assert list(make_executor.workspace_root.iterdir()) == []


def test_hello_matches(make_executor, fake_client):
    fake_client.responder = script()
    result = make_executor().execute_code('print("Hello")', 'Hello', 1)

    assert result.success is True
    assert result.output_matched is True
    [m] = result.per_run_metrics
    assert m.status == ExecutionStatus.COMPLETED
    assert m.raw_output == 'Hello'
    assert m.memory_bytes == 1024 * 1024
    assert m.elapsed_millis >= 0
    assert run_commands(fake_client, PY_RUN) == [PY_RUN]
    assert_workspace_removed(make_executor)


def test_division_by_zero_is_runtime_error(make_executor, fake_client):
    fake_client.responder = script(run=(
        1, 'Traceback (most recent call last):\n'
        'ZeroDivisionError: division by zero\n'))
    result = make_executor().execute_code('print(1 // 0)', '0', 1)

    [m] = result.per_run_metrics
    assert m.status == ExecutionStatus.RUNTIME_ERROR
    assert 'ZeroDivisionError' in m.raw_output
    assert m.output_matched is False
    assert result.output_matched is False


def test_unreadable_input_file_is_file_error(make_executor, fake_client):
    fake_client.responder = script(
        cat=(1, 'cat: /code/testcase.txt: Permission denied'))
    result = make_executor().execute_code_with_test_file(
        'print(open(0).read())', '1 2', '3', 1)

    [m] = result.per_run_metrics
    assert m.status == ExecutionStatus.FILE_ERROR
    assert m.output_matched is False
    assert run_commands(fake_client, PY_RUN) == []
    assert_workspace_removed(make_executor)


def test_exception_in_one_run_does_not_abort_batch(make_executor,
                                                   fake_client):
    calls = []

    def run(cmd):
        calls.append(cmd)
        if len(calls) == 2:
            raise docker.errors.APIError('exec failed')
        return 0, 'Hello'

    fake_client.responder = script(run=run)
    result = make_executor().execute_code('print("Hello")', 'Hello', 3)

    statuses = [m.status for m in result.per_run_metrics]
    assert statuses == [
        ExecutionStatus.COMPLETED,
        ExecutionStatus.EXECUTION_ERROR,
        ExecutionStatus.COMPLETED,
    ]
    failed = result.per_run_metrics[1]
    assert failed.raw_output.startswith('execution error: ')
    assert failed.elapsed_millis == 0
    assert failed.memory_bytes == 0
    assert result.output_matched is False
    assert_workspace_removed(make_executor)


@pytest.mark.parametrize('repeat_count', [1, 2, 5])
def test_one_metric_per_run(make_executor, fake_client, repeat_count):
    fake_client.responder = script()
    result = make_executor().execute_code('print("Hello")', 'Hello',
                                          repeat_count)
    assert len(result.per_run_metrics) == repeat_count
    assert result.max_memory_bytes == 1024 * 1024


def test_warm_container_is_reused_across_runs(make_executor, pool,
                                              fake_client):
    fake_client.responder = script()
    executor = make_executor()
    executor.execute_code('print("Hello")', 'Hello', 3)
    executor.execute_code('print("Hello")', 'Hello', 1)

    assert len(fake_client.created) == 1
    assert pool.stats.containers_created == 1
    assert pool.stats.pool_hits == 3
    [handle] = pool.handles('python')
    assert fake_client.containers[handle.id]['running'] is True


def test_without_reuse_containers_are_removed(make_executor, runtime,
                                              fake_client):
    fake_client.responder = script()
    pool = ContainerPool(runtime, enabled=False, boot_wait=0)
    result = make_executor(pool=pool).execute_code('print("Hello")',
                                                   'Hello', 2)
    assert result.output_matched is True
    assert len(fake_client.created) == 2
    assert fake_client.containers == {}


def test_args_are_appended(make_executor, fake_client):
    fake_client.responder = script(run=lambda cmd: (0, ' '.join(cmd[2:])))
    result = make_executor().execute_code_with_args(
        'import sys; print(*sys.argv[1:])', ['1', '2'], '1 2', 1)
    assert result.output_matched is True
    assert run_commands(fake_client, PY_RUN) == [PY_RUN + ['1', '2']]


def test_test_file_is_visible_in_container(make_executor, fake_client):
    seen = {}

    def responder(cid, cmd):
        if cmd[0] == 'cat':
            host_file = Path(fake_client.host_dir(cid)) / 'testcase.txt'
            seen['content'] = host_file.read_text()
            return 0, seen['content']
        return script(run=(0, 'ok'))(cid, cmd)

    fake_client.responder = responder
    result = make_executor().execute_code_with_test_file(
        'print("ok")', '3\n1 2 3', 'ok', 1)

    assert result.output_matched is True
    assert seen['content'] == '3\n1 2 3'
    assert run_commands(fake_client, PY_RUN) == [
        PY_RUN + ['/code/testcase.txt']
    ]


def test_missing_runtime_is_environment_error(make_executor, fake_client):
    fake_client.responder = script(version=(127, 'python: not found'))
    result = make_executor().execute_code('print(1)', '1', 1)
    [m] = result.per_run_metrics
    assert m.status == ExecutionStatus.ENVIRONMENT_ERROR
    assert run_commands(fake_client, PY_RUN) == []


def test_compilation_error_skips_run(make_executor, fake_client):
    fake_client.responder = script(
        version=(0, 'openjdk version "11"'),
        compile=(1, 'Solution.java:1: error: class, interface, or enum '
                 'expected'),
    )
    result = make_executor(JAVA).execute_code('clas Solution {}', '', 2)

    for m in result.per_run_metrics:
        assert m.status == ExecutionStatus.COMPILATION_ERROR
        assert m.memory_bytes == 0
        assert m.output_matched is False
        assert 'error' in m.raw_output
    assert run_commands(fake_client, ['java', '-cp']) == []
    assert len(run_commands(fake_client, ['javac'])) == 2


def test_java_compiles_then_runs(make_executor, fake_client):
    fake_client.responder = script(version=(0, 'openjdk version "11"'),
                                   run=(0, 'Hello'))
    result = make_executor(JAVA).execute_code('class Solution {}', 'Hello',
                                              1)
    assert result.output_matched is True
    assert run_commands(fake_client, ['javac']) == [['javac', 'Solution.java']]
    assert run_commands(fake_client,
                        ['java', '-cp']) == [['java', '-cp', '/code', 'Solution']]


def test_javascript_runs_with_node(make_executor, fake_client):
    fake_client.responder = script(version=(0, 'v18.20.0'), run=(0, '42'))
    result = make_executor(JAVASCRIPT).execute_code('console.log(42)', '42',
                                                    1)
    assert result.output_matched is True
    assert run_commands(fake_client, ['node', '/code/solution.js'])


def test_timed_out_run_retires_container(make_executor, pool, fake_client):
    gate = threading.Event()

    def run(cmd):
        gate.wait(5)
        return 0, ''

    fake_client.responder = script(run=run)
    try:
        result = make_executor(command_timeout=0.2).execute_code(
            'while True: pass', '', 1)
    finally:
        gate.set()

    [m] = result.per_run_metrics
    assert m.status == ExecutionStatus.RUNTIME_ERROR
    assert 'timed out' in m.raw_output
    assert pool.handles('python') == []
    assert fake_client.removed == fake_client.created


def test_invalid_repeat_count(make_executor):
    with pytest.raises(ValueError):
        make_executor().execute_code('print(1)', '1', 0)
    assert_workspace_removed(make_executor)


def test_pull_failure_aborts_and_cleans_up(make_executor, fake_client):
    fake_client.images.clear()
    fake_client.pull_events = [{'error': 'pull access denied'}]
    with pytest.raises(ImagePullError):
        make_executor().execute_code('print(1)', '1', 1)
    assert fake_client.created == []
    assert_workspace_removed(make_executor)


def test_container_start_failure_aborts(make_executor, fake_client):
    fake_client.responder = script()
    fake_client.fail_create = docker.errors.APIError('daemon unavailable')
    with pytest.raises(ContainerStartError):
        make_executor().execute_code('print(1)', '1', 2)
    assert_workspace_removed(make_executor)


def test_force_pull(make_executor, fake_client):
    fake_client.responder = script()
    executor = make_executor()
    executor.execute_code('print("Hello")', 'Hello', 1)
    assert fake_client.pulled == []
    executor.execute_code('print("Hello")', 'Hello', 1, force_pull=True)
    assert fake_client.pulled == [PYTHON.image]


def test_pull_image_always(make_executor, fake_client):
    fake_client.responder = script()
    make_executor(pull_image_always=True).execute_code(
        'print("Hello")', 'Hello', 1)
    assert fake_client.pulled == [PYTHON.image]


def test_elapsed_excludes_memory_sampling(make_executor, runtime,
                                          fake_client):
    gate = threading.Event()
    # a feed that stays silent makes the collector wait its whole window
    fake_client.stats_feed = live_feed(gate)
    fake_client.responder = script()
    executor = make_executor(collector=MemoryCollector(runtime, window=1.5))
    try:
        result = executor.execute_code('print("Hello")', 'Hello', 1)
    finally:
        gate.set()
    [m] = result.per_run_metrics
    assert m.memory_bytes == 1024 * 1024
    assert m.elapsed_millis < 1500
