import dataclasses
import os
import pathlib
from typing import Dict, List, Optional, Sequence, Tuple

from . import config
from .constant import ExecutionStatus, Language
from .exception import UnsupportedLanguageError
from .meta import ExecutionMetrics
from .result_factory import make_error_metrics
from .utils import logger


@dataclasses.dataclass(frozen=True)
class LanguageProfile:
    '''
    Static description of how one language is built and run.

    Command templates are tuples of format strings. The keys ``workdir``,
    ``base`` (source file name without suffix) and ``source`` are
    substituted when a command is built.
    '''
    language_id: str
    image: str
    source_file_name: str
    temp_dir_prefix: str
    run_template: Tuple[str, ...]
    compile_template: Optional[Tuple[str, ...]] = None
    version_command: Optional[Tuple[str, ...]] = None
    # permission bits applied after the file is written, None keeps umask
    source_file_mode: Optional[int] = None
    test_file_mode: Optional[int] = None

    @property
    def base_name(self) -> str:
        return pathlib.PurePath(self.source_file_name).stem

    def after_source_written(self, path: pathlib.Path):
        self._chmod(path, self.source_file_mode)

    def after_test_file_written(self, path: pathlib.Path):
        self._chmod(path, self.test_file_mode)

    def compile_command(self, base_name: str) -> Optional[List[str]]:
        if self.compile_template is None:
            return None
        return self._render(self.compile_template, base_name)

    def run_command(
        self,
        base_name: str,
        argv: Optional[Sequence[str]] = None,
    ) -> List[str]:
        return self._render(self.run_template, base_name) + list(argv or [])

    def run_with_input_file_command(
        self,
        base_name: str,
        input_file_path: str,
    ) -> List[str]:
        return self._render(self.run_template, base_name) + [input_file_path]

    def error_metrics(self, status: ExecutionStatus,
                      message: str) -> ExecutionMetrics:
        return make_error_metrics(status, message)

    def with_image(self, image: str) -> 'LanguageProfile':
        return dataclasses.replace(self, image=image)

    def _render(self, template: Tuple[str, ...], base_name: str) -> List[str]:
        suffix = pathlib.PurePath(self.source_file_name).suffix
        return [
            part.format(
                workdir=config.WORK_DIR,
                base=base_name,
                source=f'{base_name}{suffix}',
            ) for part in template
        ]

    def _chmod(self, path: pathlib.Path, mode: Optional[int]):
        if mode is None:
            return
        try:
            os.chmod(path, mode)
        except OSError as e:
            # the container may still be able to read the file
            logger().warning(f'failed to chmod {path}: {e}')


JAVA = LanguageProfile(
    language_id='java',
    image='openjdk:11',
    source_file_name='Solution.java',
    temp_dir_prefix='java-sandbox-',
    compile_template=('javac', '{source}'),
    run_template=('java', '-cp', '{workdir}', '{base}'),
    version_command=('java', '-version'),
)

PYTHON = LanguageProfile(
    language_id='python',
    image='python:3.9-slim',
    source_file_name='solution.py',
    temp_dir_prefix='python-sandbox-',
    run_template=('python', '{workdir}/{source}'),
    version_command=('python', '--version'),
)

JAVASCRIPT = LanguageProfile(
    language_id='javascript',
    image='node:18-alpine',
    source_file_name='solution.js',
    temp_dir_prefix='js-sandbox-',
    run_template=('node', '{workdir}/{source}'),
    version_command=('node', '--version'),
    source_file_mode=0o755,
    test_file_mode=0o755,
)

PROFILES: Dict[str, LanguageProfile] = {
    p.language_id: p
    for p in (JAVA, PYTHON, JAVASCRIPT)
}


def get_profile(
    language: 'str | Language',
    images: Optional[Dict[str, str]] = None,
) -> LanguageProfile:
    '''
    Look up a profile by key (``"python"``) or ``Language`` member,
    applying an image override from ``images`` when present.
    '''
    key = language.key if isinstance(language, Language) else str(
        language).lower()
    try:
        profile = PROFILES[key]
    except KeyError:
        raise UnsupportedLanguageError(
            f'unsupported language: {language}') from None
    image = (images or {}).get(key)
    if image:
        profile = profile.with_image(image)
    return profile
