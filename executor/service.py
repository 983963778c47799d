import threading
from typing import Dict, Optional

from container.image import ImageProvisioner
from container.metrics import MemoryCollector
from container.pool import ContainerPool
from container.runtime import ContainerRuntime
from . import config
from .constant import Language
from .controller import CodeExecutor
from .exception import UnsupportedLanguageError
from .languages import get_profile
from .meta import AggregateResult, ExecuteCodeRequest
from .utils import logger


class SandboxService:
    '''
    Process-wide owner of the Docker runtime, the container pool and one
    ``CodeExecutor`` per language. Shared by the HTTP app and the CLI.
    '''

    def __init__(
        self,
        config_path: Optional[str] = None,
        runtime: Optional[ContainerRuntime] = None,
        **overrides,
    ):
        self.config = config.get_executor_config(config_path)
        self.config.update(overrides)
        self.runtime = runtime or ContainerRuntime(
            docker_url=self.config['docker_url'])
        self.pool = ContainerPool(
            self.runtime,
            enabled=self.config['container_reuse_enabled'],
        )
        self.provisioner = ImageProvisioner(
            self.runtime,
            policy=self.config['image_pull_policy'],
        )
        self.collector = MemoryCollector(self.runtime)
        self._executors: Dict[str, CodeExecutor] = {}
        self._lock = threading.Lock()
        logger().info(
            'sandbox service ready '
            f'(reuse={self.config["container_reuse_enabled"]}, '
            f'pull_always={self.config["pull_image_always"]}, '
            f'policy={self.config["image_pull_policy"].value})')

    def executor_for(self, language) -> CodeExecutor:
        profile = get_profile(language, self.config['images'])
        with self._lock:
            executor = self._executors.get(profile.language_id)
            if executor is None:
                executor = CodeExecutor(
                    profile,
                    self.runtime,
                    pool=self.pool,
                    provisioner=self.provisioner,
                    collector=self.collector,
                    pull_image_always=self.config['pull_image_always'],
                )
                self._executors[profile.language_id] = executor
            return executor

    def execute(
        self,
        req: ExecuteCodeRequest,
        language: Optional[Language] = None,
    ) -> AggregateResult:
        '''
        Dispatch a request to the matching execution mode.

        ``FILE`` input joins the inputs with newlines into the input file;
        otherwise non-empty inputs become program arguments.
        '''
        language = language if language is not None else req.language
        if language is None:
            raise UnsupportedLanguageError('language is required')
        executor = self.executor_for(language)
        if req.inputType == 'FILE':
            return executor.execute_code_with_test_file(
                req.code,
                '\n'.join(req.inputs),
                req.expectedOutput,
                req.executionCount,
            )
        if req.inputs:
            return executor.execute_code_with_args(
                req.code,
                req.inputs,
                req.expectedOutput,
                req.executionCount,
            )
        return executor.execute_code(
            req.code,
            req.expectedOutput,
            req.executionCount,
        )

    def cleanup(self) -> dict:
        retired = self.pool.drain()
        reconciled = self.runtime.reconcile()
        return {
            'retired': retired,
            'reconciled': reconciled,
            'leaked': len(self.runtime.leaks),
        }

    def status(self) -> dict:
        return {
            **self.pool.status(),
            'leaked': len(self.runtime.leaks),
            'executors': sorted(self._executors),
        }

    def close(self):
        logger().info('shutting down sandbox service')
        try:
            self.pool.shutdown()
        finally:
            self.runtime.close()
