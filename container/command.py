import concurrent.futures
import dataclasses
from typing import Sequence

from executor import config
from executor.utils import logger, short_id
from .runtime import ContainerRuntime

# exit code reported when the real one cannot be determined
EXIT_CODE_UNKNOWN = -1
TIMEOUT_NOTE = '\nexecution timed out or was interrupted.'
INCOMPLETE_NOTE = '\noperation did not complete within the time limit.'


@dataclasses.dataclass
class CompletedCommand:
    exit_code: int
    output: str
    timed_out: bool = False


def run_command(
    runtime: ContainerRuntime,
    container_id: str,
    command: Sequence[str],
    timeout: float = config.EXECUTION_TIMEOUT,
) -> CompletedCommand:
    '''
    Exec ``command`` in a running container and wait at most ``timeout``
    seconds for it. stdout and stderr are captured together.

    Expiry is not raised: the result carries ``timed_out`` and the
    unknown-exit-code sentinel, and the output is annotated.
    '''
    client = runtime.client
    command = list(command)
    logger().debug(f'[{short_id(container_id)}] exec: {command}')
    exec_id = client.exec_create(
        container_id,
        command,
        stdout=True,
        stderr=True,
    )['Id']
    future = runtime.submit(client.exec_start, exec_id)
    timed_out = False
    try:
        raw = future.result(timeout=timeout)
        output = raw.decode('utf-8', 'ignore') if raw else ''
    except concurrent.futures.TimeoutError:
        future.cancel()
        timed_out = True
        logger().warning(
            f'[{short_id(container_id)}] command timed out after {timeout}s: '
            f'{command}')
        output = TIMEOUT_NOTE
    exit_code = EXIT_CODE_UNKNOWN
    if not timed_out:
        try:
            code = client.exec_inspect(exec_id).get('ExitCode')
            if code is not None:
                exit_code = code
        except Exception as e:
            logger().warning(f'failed to inspect exec {exec_id[:12]}: {e}')
    if exit_code == EXIT_CODE_UNKNOWN:
        output += INCOMPLETE_NOTE
    return CompletedCommand(
        exit_code=exit_code,
        output=output,
        timed_out=timed_out,
    )
