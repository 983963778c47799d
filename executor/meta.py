from typing import List, Optional
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from .constant import ExecutionStatus, Language


class ExecutionMetrics(BaseModel):
    '''
    Outcome of one run attempt. Failed attempts produce one too.
    '''
    model_config = ConfigDict(frozen=True)

    status: ExecutionStatus
    raw_output: str = ''
    elapsed_millis: int = Field(default=0, ge=0)
    memory_bytes: int = Field(default=0, ge=0)
    output_matched: bool = False


class AggregateResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    output_matched: bool
    per_run_metrics: List[ExecutionMetrics]
    avg_elapsed_millis: int = 0
    avg_memory_bytes: int = 0
    max_elapsed_millis: int = 0
    max_memory_bytes: int = 0


class ExecuteCodeRequest(BaseModel):
    language: Optional[Language] = None
    code: str
    inputs: List[str] = Field(default_factory=list)
    inputType: str = 'PARAMS'
    executionCount: int = 1
    expectedOutput: Optional[str] = None

    @field_validator('language', mode='before')
    @classmethod
    def _coerce_language(cls, v):
        if isinstance(v, str):
            try:
                return Language[v.upper()]
            except KeyError:
                raise ValueError(f'unsupported language: {v}') from None
        return v

    @field_validator('inputType', mode='before')
    @classmethod
    def _normalize_input_type(cls, v):
        if v is None:
            return 'PARAMS'
        v = str(v).upper()
        if v not in {'PARAMS', 'FILE'}:
            raise ValueError('inputType must be PARAMS or FILE')
        return v

    @field_validator('executionCount', mode='before')
    @classmethod
    def _clamp_execution_count(cls, v):
        if v is None:
            return 1
        return max(1, int(v))

    @field_validator('inputs', mode='before')
    @classmethod
    def _coerce_inputs(cls, v):
        return v or []
