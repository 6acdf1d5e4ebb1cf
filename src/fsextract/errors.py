from __future__ import annotations


class ExtractError(Exception):
    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path: str | None = path


class SourceError(ExtractError):
    """The archive reader could not produce metadata or content."""


class NotFoundError(SourceError):
    def __init__(self, path: str) -> None:
        super().__init__(f"{path}: no such entry in source", path=path)


class TargetError(ExtractError):
    """The target tree does not allow creating an entry at a path."""


class PathEscapeError(TargetError):
    def __init__(self, path: str, base: str) -> None:
        super().__init__(
            f"Refusing to write outside target dir: target={path} base={base}",
            path=path,
        )
        self.base: str = base


class OperationError(ExtractError):
    def __init__(self, op: str, path: str, detail: str) -> None:
        super().__init__(f"{op}({path}) failed: {detail}", path=path)
        self.op: str = op
        self.detail: str = detail


class SizeMismatchError(ExtractError):
    def __init__(self, path: str, target: str, written: int, expected: int) -> None:
        super().__init__(
            f"wrote {written} bytes to {target}. expected {expected} from {path}",
            path=path,
        )
        self.written: int = written
        self.expected: int = expected


class UnsupportedTypeError(ExtractError):
    def __init__(self, path: str, kind: str) -> None:
        super().__init__(f"cannot extract {kind} file {path}", path=path)


class FsOpsUnavailableError(ExtractError):
    pass
