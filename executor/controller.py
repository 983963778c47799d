import time
from typing import List, Optional, Sequence

from container.command import CompletedCommand, run_command
from container.image import ImageProvisioner
from container.metrics import MemoryCollector
from container.pool import ContainerHandle, ContainerPool, TrackedContainers
from container.runtime import ContainerRuntime
from . import config
from .constant import ExecutionMode, ExecutionStatus, ImagePullPolicy
from .exception import ContainerStartError, WorkspaceError
from .languages import LanguageProfile
from .meta import AggregateResult, ExecutionMetrics
from .result_factory import aggregate, make_run_metrics
from .utils import logger, short_id
from .workspace import Workspace


def _millis_since(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class CodeExecutor:
    '''
    Runs submissions of one language inside containers.

    Every public call owns one workspace for its whole batch of runs and
    destroys it before returning, whatever happened. Each run acquires a
    container from the pool and releases it again; anything raised after
    acquisition becomes an ``EXECUTION_ERROR`` metric for that run only.
    Image-pull, container-start and workspace failures abort the batch.
    '''

    def __init__(
        self,
        profile: LanguageProfile,
        runtime: ContainerRuntime,
        pool: Optional[ContainerPool] = None,
        provisioner: Optional[ImageProvisioner] = None,
        collector: Optional[MemoryCollector] = None,
        pull_image_always: bool = False,
        container_reuse_enabled: bool = True,
        image_pull_policy: ImagePullPolicy = ImagePullPolicy.FAIL_FAST,
        command_timeout: float = config.EXECUTION_TIMEOUT,
        workspace_root=None,
    ):
        self.profile = profile
        self.runtime = runtime
        self.pull_image_always = pull_image_always
        self.pool = pool or ContainerPool(runtime,
                                          enabled=container_reuse_enabled)
        self.provisioner = provisioner or ImageProvisioner(
            runtime, policy=image_pull_policy)
        self.collector = collector or MemoryCollector(runtime)
        self.command_timeout = command_timeout
        self.workspace_root = workspace_root

    def execute_code(
        self,
        source: str,
        expected_output: Optional[str] = None,
        repeat_count: int = 1,
        force_pull: Optional[bool] = None,
    ) -> AggregateResult:
        return self._execute(
            source=source,
            expected_output=expected_output,
            repeat_count=repeat_count,
            force_pull=force_pull,
            mode=ExecutionMode.BARE,
        )

    def execute_code_with_args(
        self,
        source: str,
        args: Sequence[str],
        expected_output: Optional[str] = None,
        repeat_count: int = 1,
        force_pull: Optional[bool] = None,
    ) -> AggregateResult:
        return self._execute(
            source=source,
            expected_output=expected_output,
            repeat_count=repeat_count,
            force_pull=force_pull,
            mode=ExecutionMode.ARGS,
            args=list(args or []),
        )

    def execute_code_with_test_file(
        self,
        source: str,
        input_file_content: str,
        expected_output: Optional[str] = None,
        repeat_count: int = 1,
        force_pull: Optional[bool] = None,
    ) -> AggregateResult:
        return self._execute(
            source=source,
            expected_output=expected_output,
            repeat_count=repeat_count,
            force_pull=force_pull,
            mode=ExecutionMode.TEST_FILE,
            input_file_content=input_file_content,
        )

    def _execute(
        self,
        source: str,
        expected_output: Optional[str],
        repeat_count: int,
        force_pull: Optional[bool],
        mode: ExecutionMode,
        args: Optional[List[str]] = None,
        input_file_content: Optional[str] = None,
    ) -> AggregateResult:
        if repeat_count < 1:
            raise ValueError(f'repeat_count must be >= 1, got {repeat_count}')
        if force_pull is None:
            force_pull = self.pull_image_always
        lang = self.profile.language_id
        workspace = None
        tracked = TrackedContainers()
        try:
            workspace = Workspace.create(self.profile.temp_dir_prefix,
                                         base_dir=self.workspace_root)
            source_path = workspace.write(self.profile.source_file_name,
                                          source)
            self.profile.after_source_written(source_path)
            if mode == ExecutionMode.TEST_FILE:
                test_path = workspace.write(config.TEST_FILE_NAME,
                                            input_file_content)
                self.profile.after_test_file_written(test_path)
            self.provisioner.ensure_image(self.profile.image, force_pull)

            metrics: List[ExecutionMetrics] = []
            for i in range(repeat_count):
                logger().info(
                    f'[{lang}] run {i + 1}/{repeat_count} ({mode.name.lower()})'
                )
                try:
                    metrics.append(
                        self._run_once(workspace, tracked, mode, args,
                                       expected_output))
                except (ContainerStartError, WorkspaceError):
                    raise
                except Exception as e:
                    logger().error(
                        f'[{lang}] run {i + 1}/{repeat_count} failed: {e}',
                        exc_info=True)
                    metrics.append(
                        self.profile.error_metrics(
                            ExecutionStatus.EXECUTION_ERROR,
                            f'execution error: {e}'))
            return aggregate(metrics)
        except Exception as e:
            logger().error(f'[{lang}] invocation aborted: {e}')
            raise
        finally:
            self.pool.close_scope(tracked)
            if workspace is not None:
                workspace.destroy()

    def _run_once(
        self,
        workspace: Workspace,
        tracked: TrackedContainers,
        mode: ExecutionMode,
        args: Optional[List[str]],
        expected_output: Optional[str],
    ) -> ExecutionMetrics:
        handle = self.pool.acquire(self.profile, workspace, tracked)
        try:
            return self._run_in_container(handle, mode, args, expected_output)
        finally:
            self.pool.release(handle, tracked)

    def _run_in_container(
        self,
        handle: ContainerHandle,
        mode: ExecutionMode,
        args: Optional[List[str]],
        expected_output: Optional[str],
    ) -> ExecutionMetrics:
        started = time.monotonic()
        profile = self.profile
        base_name = profile.base_name

        if profile.version_command:
            check = self._exec(handle, profile.version_command)
            logger().info(
                f'[{short_id(handle.id)}] {profile.language_id} runtime: '
                f'{check.output.strip()}')
            if check.exit_code != 0:
                return make_run_metrics(
                    ExecutionStatus.ENVIRONMENT_ERROR,
                    f'{profile.language_id} runtime unavailable: '
                    f'{check.output}',
                    _millis_since(started),
                )

        compile_command = profile.compile_command(base_name)
        if compile_command:
            compiled = self._exec(handle, compile_command)
            if compiled.exit_code != 0:
                logger().info(
                    f'[{short_id(handle.id)}] compilation failed '
                    f'(exit {compiled.exit_code})')
                return make_run_metrics(
                    ExecutionStatus.COMPILATION_ERROR,
                    compiled.output,
                    _millis_since(started),
                )

        if mode == ExecutionMode.TEST_FILE:
            input_path = f'{config.WORK_DIR}/{config.TEST_FILE_NAME}'
            probe = self._exec(handle, ['cat', input_path])
            if probe.exit_code != 0:
                logger().error(
                    f'[{short_id(handle.id)}] input file is not readable: '
                    f'{probe.output.strip()}')
                return make_run_metrics(
                    ExecutionStatus.FILE_ERROR,
                    f'input file is not readable: {probe.output}',
                    _millis_since(started),
                )
            command = profile.run_with_input_file_command(
                base_name, input_path)
        elif mode == ExecutionMode.ARGS:
            command = profile.run_command(base_name, args)
        else:
            command = profile.run_command(base_name)

        result = self._exec(handle, command)
        logger().info(
            f'[{short_id(handle.id)}] finished with exit code '
            f'{result.exit_code}')
        elapsed = _millis_since(started)
        memory = self.collector.collect(handle.id)
        status = (ExecutionStatus.COMPLETED
                  if result.exit_code == 0 else ExecutionStatus.RUNTIME_ERROR)
        return make_run_metrics(
            status,
            result.output,
            elapsed,
            memory_bytes=memory,
            expected_output=expected_output,
        )

    def _exec(self, handle: ContainerHandle, command) -> CompletedCommand:
        result = run_command(self.runtime, handle.id, command,
                             self.command_timeout)
        if result.timed_out:
            # the process may still be alive in there
            handle.mark_unhealthy()
        return result
