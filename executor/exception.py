__all__ = (
    'SandboxError',
    'ImagePullError',
    'ContainerStartError',
    'WorkspaceError',
    'UnsupportedLanguageError',
)


class SandboxError(Exception):
    pass


class ImagePullError(SandboxError):
    '''Image could not be made available locally.'''


class ContainerStartError(SandboxError):
    '''Neither a warm nor an ephemeral container could be started.'''


class WorkspaceError(SandboxError):
    '''Host-side workspace could not be created or written.'''


class UnsupportedLanguageError(SandboxError, ValueError):
    pass
