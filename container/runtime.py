import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

import docker

from executor import config
from executor.utils import logger, short_id


class LeakRegistry:
    '''
    Containers whose removal failed. Swept on shutdown or on demand.
    '''

    def __init__(self):
        self._lock = threading.Lock()
        self._ids: List[str] = []

    def register(self, container_id: str):
        with self._lock:
            if container_id not in self._ids:
                self._ids.append(container_id)
        logger().warning(
            f'container registered for reconciliation: {short_id(container_id)}'
        )

    def __len__(self):
        with self._lock:
            return len(self._ids)

    def snapshot(self) -> List[str]:
        with self._lock:
            return self._ids[:]

    def sweep(self, client) -> int:
        '''
        Force-remove every registered container. Returns how many were
        removed; the rest stay registered.
        '''
        removed = 0
        for cid in self.snapshot():
            try:
                client.remove_container(cid, v=True, force=True)
            except docker.errors.NotFound:
                pass
            except Exception as e:
                logger().warning(
                    f'failed to reconcile container {short_id(cid)}: {e}')
                continue
            with self._lock:
                self._ids.remove(cid)
            removed += 1
        if removed:
            logger().info(f'reconciled {removed} leaked containers')
        return removed


class ContainerRuntime:
    '''
    The one long-lived Docker API handle shared by every invocation.

    Blocking calls that need a deadline shorter than the client's
    response timeout are submitted to a bounded worker pool and waited on
    with ``Future.result(timeout=...)``. ``close()`` is the shutdown path:
    it sweeps leaked containers, stops the worker pool and closes the
    client.
    '''

    def __init__(
        self,
        docker_url: Optional[str] = None,
        timeout: int = config.DOCKER_RESPONSE_TIMEOUT,
        max_connections: int = config.DOCKER_MAX_CONNECTIONS,
        max_workers: Optional[int] = None,
    ):
        self.docker_url = docker_url or config.DOCKER_URL
        logger().debug(
            f'initializing docker client: url={self.docker_url}, '
            f'timeout={timeout}s, max_connections={max_connections}')
        self.client = docker.APIClient(
            base_url=self.docker_url,
            timeout=timeout,
            max_pool_size=max_connections,
        )
        self.leaks = LeakRegistry()
        self._workers = ThreadPoolExecutor(
            max_workers=max_workers or max_connections,
            thread_name_prefix='docker-call',
        )
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, fn, *args, **kwargs) -> Future:
        if self._closed:
            raise RuntimeError('container runtime is closed')
        return self._workers.submit(fn, *args, **kwargs)

    def reconcile(self) -> int:
        return self.leaks.sweep(self.client)

    def close(self):
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        logger().info('closing container runtime...')
        try:
            self.reconcile()
        except Exception as e:
            logger().warning(f'leak reconciliation failed: {e}')
        self._workers.shutdown(wait=False, cancel_futures=True)
        try:
            self.client.close()
        except Exception as e:
            logger().warning(f'failed to close docker client: {e}')

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
