import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from .exception import WorkspaceError
from .utils import logger


class Workspace:
    '''
    Per-invocation host directory holding the source and optional input
    file. It is bind-mounted into ephemeral containers and copied into
    warm ones.
    '''

    def __init__(self, path: Path):
        self.path = path

    @classmethod
    def create(cls, prefix: str, base_dir: Optional[Path] = None):
        try:
            path = Path(tempfile.mkdtemp(prefix=prefix, dir=base_dir))
            # containers may run as a different uid
            os.chmod(path, 0o777)
        except OSError as e:
            raise WorkspaceError(f'failed to create workspace: {e}') from e
        logger().info(f'created workspace: {path}')
        return cls(path)

    def write(self, file_name: str, content: str) -> Path:
        target = self.path / file_name
        try:
            target.write_text(content or '')
        except OSError as e:
            raise WorkspaceError(f'failed to write {target}: {e}') from e
        logger().debug(f'wrote {len(content or "")} chars to {target}')
        return target

    def copy_into(self, target_dir: Path):
        '''
        Replace the contents of ``target_dir`` with this workspace's files.
        '''
        target_dir.mkdir(parents=True, exist_ok=True)
        for item in target_dir.iterdir():
            if item.is_dir() and not item.is_symlink():
                shutil.rmtree(item)
            else:
                item.unlink()
        for item in self.path.iterdir():
            dest = target_dir / item.name
            if item.is_dir():
                shutil.copytree(item, dest)
            else:
                shutil.copy2(item, dest)

    @property
    def exists(self) -> bool:
        return self.path.exists()

    def destroy(self):
        if not self.path.exists():
            return
        try:
            shutil.rmtree(self.path)
            logger().info(f'removed workspace: {self.path}')
        except OSError as e:
            logger().warning(f'failed to remove workspace {self.path}: {e}')
