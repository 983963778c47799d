import dataclasses
import os
import shutil
import tempfile
import threading
import time
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import docker
import requests

from executor import config
from executor.exception import ContainerStartError, WorkspaceError
from executor.languages import LanguageProfile
from executor.utils import logger, short_id
from executor.workspace import Workspace
from .command import run_command
from .runtime import ContainerRuntime

WIPE_COMMAND = [
    'sh',
    '-c',
    f'rm -rf {config.WORK_DIR}/* {config.WORK_DIR}/.[!.]* '
    f'{config.WORK_DIR}/..?* || true',
]


class HandleState(str, Enum):
    IDLE = 'IDLE'
    BUSY = 'BUSY'


class ContainerHandle:
    '''
    A container handed out by the pool.

    Pooled handles point at a warm container whose ``/code`` is bound to
    ``host_work_dir``; ephemeral handles point at a container bound to the
    invocation's workspace and are removed on release.
    '''

    def __init__(
        self,
        container_id: str,
        language_id: str,
        host_work_dir: Optional[Path] = None,
        pooled: bool = True,
    ):
        self.id = container_id
        self.language_id = language_id
        self.host_work_dir = host_work_dir
        self.pooled = pooled
        self.state = HandleState.BUSY
        self.last_used_at = time.time()
        self.healthy = True
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        with self._lock:
            if self.state != HandleState.IDLE or not self.healthy:
                return False
            self.state = HandleState.BUSY
            self.last_used_at = time.time()
            return True

    def mark_idle(self):
        with self._lock:
            self.state = HandleState.IDLE
            self.last_used_at = time.time()

    def mark_unhealthy(self):
        self.healthy = False

    def __repr__(self):
        kind = 'pooled' if self.pooled else 'ephemeral'
        return (f'ContainerHandle({short_id(self.id)}, {self.language_id}, '
                f'{kind}, {self.state.value})')


class TrackedContainers:
    '''
    Ephemeral containers created for one invocation and not yet removed.
    '''

    def __init__(self):
        self._ids: List[str] = []

    def add(self, container_id: str):
        self._ids.append(container_id)

    def discard(self, container_id: str):
        if container_id in self._ids:
            self._ids.remove(container_id)

    def __iter__(self):
        return iter(self._ids[:])

    def __len__(self):
        return len(self._ids)

    def __contains__(self, container_id):
        return container_id in self._ids


@dataclasses.dataclass
class PoolStats:
    pool_hits: int = 0
    containers_created: int = 0
    ephemeral_created: int = 0
    retired: int = 0


class ContainerPool:
    '''
    Registry of warm containers keyed by language.

    ``acquire`` prefers an idle warm container, then a new warm container,
    then a plain ephemeral one. ``release`` wipes a warm container's
    working directory and marks it idle again; ephemeral containers are
    stopped and removed. Release never raises.
    '''

    def __init__(
        self,
        runtime: ContainerRuntime,
        enabled: bool = True,
        max_per_language: int = config.POOL_MAX_PER_LANGUAGE,
        boot_wait: float = config.CONTAINER_WAIT_TIME,
        base_dir: Optional[Path] = None,
    ):
        self.runtime = runtime
        self.enabled = enabled
        self.max_per_language = max_per_language
        self.boot_wait = boot_wait
        self.base_dir = base_dir
        self.stats = PoolStats()
        self._registry: Dict[str, List[ContainerHandle]] = {}
        self._pending: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def client(self):
        return self.runtime.client

    def acquire(
        self,
        profile: LanguageProfile,
        workspace: Workspace,
        tracked: TrackedContainers,
    ) -> ContainerHandle:
        if self.enabled and not self._closed:
            handle = self._take_idle(profile.language_id)
            if handle is not None:
                self._load_workspace(handle, workspace)
                with self._lock:
                    self.stats.pool_hits += 1
                logger().info(f'pool hit: {handle}')
                return handle
            try:
                handle = self._create_warm(profile)
            except Exception as e:
                logger().warning(
                    f'failed to create warm {profile.language_id} container, '
                    f'falling back to ephemeral: {e}')
                handle = None
            if handle is not None:
                self._load_workspace(handle, workspace)
                return handle
        return self._create_ephemeral(profile, workspace, tracked)

    def release(self, handle: ContainerHandle, tracked: TrackedContainers):
        try:
            if not handle.pooled:
                self._remove_container(handle.id, tracked)
                return
            if not handle.healthy:
                self._retire(handle)
                return
            try:
                run_command(self.runtime, handle.id, WIPE_COMMAND)
            except Exception as e:
                logger().warning(f'failed to wipe {handle}: {e}')
            handle.mark_idle()
            logger().debug(f'released {handle}')
        except Exception as e:
            logger().warning(f'failed to release {handle}: {e}')

    def close_scope(self, tracked: TrackedContainers):
        '''
        Remove whatever ephemeral containers an invocation still tracks.
        '''
        for cid in tracked:
            self._remove_container(cid, tracked)

    def status(self) -> dict:
        with self._lock:
            languages = {
                lang: {
                    'idle':
                    sum(1 for h in handles if h.state == HandleState.IDLE),
                    'busy':
                    sum(1 for h in handles if h.state == HandleState.BUSY),
                }
                for lang, handles in self._registry.items()
            }
            return {
                'enabled': self.enabled,
                'languages': languages,
                **dataclasses.asdict(self.stats),
            }

    def handles(self, language_id: str) -> List[ContainerHandle]:
        with self._lock:
            return self._registry.get(language_id, [])[:]

    def drain(self) -> int:
        '''
        Stop and remove every idle warm container. Busy ones are left to
        their invocation. Returns how many were retired.
        '''
        retired = 0
        for handle in self._all_handles():
            # claim it so no acquire can hand it out meanwhile
            if not handle.try_acquire():
                continue
            self._retire(handle)
            retired += 1
        logger().info(f'drained container pool ({retired} idle retired)')
        return retired

    def shutdown(self) -> int:
        '''
        Stop and remove every warm container, busy or not.
        '''
        self._closed = True
        handles = self._all_handles()
        logger().info(f'shutting down container pool ({len(handles)} warm)')
        for handle in handles:
            self._retire(handle)
        return len(handles)

    def _all_handles(self) -> List[ContainerHandle]:
        with self._lock:
            return [h for hs in self._registry.values() for h in hs]

    # --- acquire helpers ---

    def _take_idle(self, language_id: str) -> Optional[ContainerHandle]:
        for handle in self.handles(language_id):
            if not handle.try_acquire():
                continue
            if self._is_running(handle.id):
                return handle
            logger().warning(f'warm container is not running: {handle}')
            handle.mark_unhealthy()
            self._retire(handle)
        return None

    def _load_workspace(self, handle: ContainerHandle, workspace: Workspace):
        try:
            workspace.copy_into(handle.host_work_dir)
        except OSError as e:
            handle.mark_unhealthy()
            self._retire(handle)
            raise WorkspaceError(
                f'failed to copy workspace into {handle}: {e}') from e

    def _create_warm(self,
                     profile: LanguageProfile) -> Optional[ContainerHandle]:
        lang = profile.language_id
        with self._lock:
            size = len(self._registry.get(lang, [])) + self._pending.get(
                lang, 0)
            if size >= self.max_per_language:
                logger().debug(f'{lang} pool is full ({size})')
                return None
            self._pending[lang] = self._pending.get(lang, 0) + 1
        host_dir = None
        handle = None
        try:
            host_dir = Path(
                tempfile.mkdtemp(prefix=f'container-{lang}-',
                                 dir=self.base_dir))
            os.chmod(host_dir, 0o777)
            cid = self._start_container(profile, host_dir, pooled=True)
            handle = ContainerHandle(cid, lang, host_work_dir=host_dir)
        except Exception:
            if host_dir is not None:
                shutil.rmtree(host_dir, ignore_errors=True)
            raise
        finally:
            # swap the reserved slot for the registered handle atomically
            with self._lock:
                self._pending[lang] -= 1
                if handle is not None:
                    self._registry.setdefault(lang, []).append(handle)
                    self.stats.containers_created += 1
        logger().info(f'created warm container: {handle}')
        return handle

    def _create_ephemeral(
        self,
        profile: LanguageProfile,
        workspace: Workspace,
        tracked: TrackedContainers,
    ) -> ContainerHandle:
        cid = self._start_container(profile,
                                    workspace.path,
                                    pooled=False,
                                    tracked=tracked)
        with self._lock:
            self.stats.ephemeral_created += 1
        handle = ContainerHandle(cid, profile.language_id, pooled=False)
        logger().info(f'created ephemeral container: {handle}')
        return handle

    def _start_container(
        self,
        profile: LanguageProfile,
        host_dir: Path,
        pooled: bool,
        tracked: Optional[TrackedContainers] = None,
    ) -> str:
        host_config = self.client.create_host_config(
            binds={
                str(host_dir): {
                    'bind': config.WORK_DIR,
                    'mode': 'rw',
                }
            },
            mem_limit=config.MEMORY_LIMIT,
            nano_cpus=config.CPU_LIMIT * 1_000_000_000,
            network_mode='none',
            tmpfs=config.TMPFS,
        )
        try:
            container = self.client.create_container(
                image=profile.image,
                command=config.IDLE_COMMAND,
                working_dir=config.WORK_DIR,
                host_config=host_config,
                network_disabled=True,
                environment={'DEBIAN_FRONTEND': 'noninteractive'},
                labels={
                    config.POOL_LABEL:
                    profile.language_id if pooled else 'ephemeral'
                },
                detach=True,
            )
        except Exception as e:
            raise ContainerStartError(
                f'failed to create {profile.language_id} container: {e}'
            ) from e
        cid = container.get('Id')
        if tracked is not None:
            tracked.add(cid)
        try:
            self.client.start(cid)
            if self.boot_wait > 0:
                time.sleep(self.boot_wait)
            if not self._is_running(cid):
                raise ContainerStartError(
                    f'container {short_id(cid)} is not running after start')
        except Exception as e:
            if tracked is not None:
                self._remove_container(cid, tracked)
            elif not self._remove_untracked(cid):
                self.runtime.leaks.register(cid)
            if isinstance(e, ContainerStartError):
                raise
            raise ContainerStartError(
                f'failed to start container {short_id(cid)}: {e}') from e
        return cid

    def _is_running(self, container_id: str) -> bool:
        try:
            info = self.client.inspect_container(container_id)
        except (docker.errors.APIError,
                requests.exceptions.RequestException) as e:
            logger().debug(
                f'cannot inspect container {short_id(container_id)}: {e}')
            return False
        return bool((info.get('State') or {}).get('Running'))

    # --- teardown helpers ---

    def _stop_quietly(self, container_id: str):
        try:
            self.client.stop(container_id, timeout=2)
        except docker.errors.NotFound:
            pass
        except Exception as e:
            # already stopped containers are removed below anyway
            logger().debug(f'stop {short_id(container_id)}: {e}')

    def _remove_container(self, container_id: str,
                          tracked: TrackedContainers):
        if not self._remove_untracked(container_id):
            self.runtime.leaks.register(container_id)
        tracked.discard(container_id)

    def _remove_untracked(self, container_id: str) -> bool:
        self._stop_quietly(container_id)
        try:
            self.client.remove_container(container_id, v=True, force=True)
        except docker.errors.NotFound:
            return True
        except Exception as e:
            logger().warning(
                f'failed to remove container {short_id(container_id)}: {e}')
            return False
        logger().info(f'removed container {short_id(container_id)}')
        return True

    def _retire(self, handle: ContainerHandle):
        with self._lock:
            handles = self._registry.get(handle.language_id, [])
            if handle in handles:
                handles.remove(handle)
            self.stats.retired += 1
        if not self._remove_untracked(handle.id):
            self.runtime.leaks.register(handle.id)
        if handle.host_work_dir is not None:
            shutil.rmtree(handle.host_work_dir, ignore_errors=True)
        logger().info(f'retired {handle}')
