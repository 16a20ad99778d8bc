import enum


class Language(str, enum.Enum):
    c = "c"
    cpp = "cpp"
    java = "java"
    python = "python"


class OutcomeKind(str, enum.Enum):
    success = "success"
    build_error = "build_error"
    run_error = "run_error"
    timeout = "timeout"
    overflow = "overflow"
    infrastructure = "infrastructure"


class JobStatus(str, enum.Enum):
    created = "created"
    input_written = "input_written"
    building = "building"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed_out"
    cleanup_scheduled = "cleanup_scheduled"
    cleaned_up = "cleaned_up"
