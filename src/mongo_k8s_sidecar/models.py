from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class LabelPair:
    key: str
    value: Optional[str] = None


@dataclass(frozen=True)
class Credentials:
    username: str
    password: Optional[str] = None


@dataclass(frozen=True)
class DbHandle:
    db: Any
    close: Callable[[], None]
