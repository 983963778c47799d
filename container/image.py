import concurrent.futures

import docker
import requests
from docker.utils import parse_repository_tag

from executor import config
from executor.constant import ImagePullPolicy
from executor.exception import ImagePullError
from executor.utils import logger
from .runtime import ContainerRuntime


class ImageProvisioner:
    '''
    Make sure a language image exists locally before any container is
    created from it.

    With ``ImagePullPolicy.FAIL_FAST`` a failed pull aborts the invocation.
    With ``ImagePullPolicy.BEST_EFFORT`` the failure is logged and execution
    goes on assuming the image is cached.
    '''

    def __init__(
        self,
        runtime: ContainerRuntime,
        pull_timeout: float = config.IMAGE_PULL_TIMEOUT,
        policy: ImagePullPolicy = ImagePullPolicy.FAIL_FAST,
    ):
        self.runtime = runtime
        self.pull_timeout = pull_timeout
        self.policy = ImagePullPolicy(policy)

    def is_available(self, image: str) -> bool:
        try:
            info = self.runtime.client.inspect_image(image)
        except docker.errors.ImageNotFound:
            return False
        except (docker.errors.APIError,
                requests.exceptions.RequestException) as e:
            # inspection trouble is treated as absence
            logger().info(f'cannot inspect image {image}: {e}')
            return False
        return bool(info and info.get('Id'))

    def ensure_image(self, image: str, force_pull: bool = False):
        if not force_pull:
            logger().info(f'checking local image: {image}')
            if self.is_available(image):
                logger().info(f'image {image} found, skip pulling')
                return
        try:
            self.pull(image)
        except ImagePullError as e:
            if self.policy == ImagePullPolicy.BEST_EFFORT:
                logger().warning(
                    f'{e}; continuing on the assumption that {image} '
                    'is cached')
                return
            logger().error(str(e))
            raise

    def pull(self, image: str):
        logger().info(f'pulling image {image} (timeout: {self.pull_timeout}s)')
        future = self.runtime.submit(self._pull, image)
        try:
            future.result(timeout=self.pull_timeout)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise ImagePullError(
                f'pulling {image} timed out after {self.pull_timeout}s'
            ) from e
        except ImagePullError:
            raise
        except Exception as e:
            raise ImagePullError(f'failed to pull {image}: {e}') from e
        if not self.is_available(image):
            raise ImagePullError(f'{image} is still missing after pull')
        logger().info(f'pulled image {image}')

    def _pull(self, image: str):
        repository, tag = parse_repository_tag(image)
        for event in self.runtime.client.pull(
                repository,
                tag=tag or 'latest',
                stream=True,
                decode=True,
        ):
            if isinstance(event, dict) and event.get('error'):
                raise ImagePullError(
                    f'failed to pull {image}: {event["error"]}')
