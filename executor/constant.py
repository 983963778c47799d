from enum import Enum, IntEnum


class Language(IntEnum):
    JAVA = 0
    PYTHON = 1
    JAVASCRIPT = 2

    @property
    def key(self) -> str:
        return self.name.lower()


class ExecutionStatus(str, Enum):
    COMPLETED = "COMPLETED"
    COMPILATION_ERROR = "COMPILATION_ERROR"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    ENVIRONMENT_ERROR = "ENVIRONMENT_ERROR"
    FILE_ERROR = "FILE_ERROR"
    EXECUTION_ERROR = "EXECUTION_ERROR"


class ExecutionMode(IntEnum):
    BARE = 0
    ARGS = 1
    TEST_FILE = 2


class ImagePullPolicy(str, Enum):
    FAIL_FAST = "fail-fast"
    BEST_EFFORT = "best-effort"
