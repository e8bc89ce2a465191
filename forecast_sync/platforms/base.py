"""Platform descriptors and the three fetcher contracts.

A platform declares its identity (``name``, ``label``, ``color``) and one of
three fetcher shapes, selected by the descriptor class:

* ``PlatformV1``: ``fetcher() -> list[FetchedQuestion] | None``, always a
  full batch.
* ``PlatformV2``: ``fetcher(args) -> V2FetchResult | None``.
* ``PastcastPlatform``: ``fetcher(args) -> PastcastFetchResult | None``.

A fetcher returns ``None`` when the platform could not be fetched. ``partial``
marks a result that intentionally covers a subset of the platform, so the
sync must not delete what it did not see.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, ClassVar, Mapping, Union

from forecast_sync.core.schemas import Comment, FetchedPastcastQuestion, FetchedQuestion

FetcherArgs = Mapping[str, str]


@dataclass
class V2FetchResult:
    questions: list[FetchedQuestion]
    partial: bool = False


@dataclass
class PastcastFetchResult:
    questions: list[FetchedPastcastQuestion]
    comments: list[Comment] = field(default_factory=list)
    partial: bool = False


FetcherV1 = Callable[[], Union[list[FetchedQuestion], None]]
FetcherV2 = Callable[[FetcherArgs], Union[V2FetchResult, None]]
PastcastFetcher = Callable[[FetcherArgs], Union[PastcastFetchResult, None]]
StarsFunction = Callable[[FetchedQuestion], int]


def _validate_identity(name: str, label: str) -> None:
    if not name or not name.strip():
        raise ValueError("Platform name must be non-empty")
    if not label:
        raise ValueError(f"Platform {name} needs a label")


def _validate_fetcher(name: str, fetcher: object) -> None:
    if fetcher is not None and not callable(fetcher):
        raise ValueError(f"Platform {name}: fetcher must be callable")


def _validate_fetcher_args(name: str, fetcher_args: tuple[str, ...]) -> None:
    if len(set(fetcher_args)) != len(fetcher_args):
        raise ValueError(f"Platform {name}: duplicate fetcher_args {fetcher_args}")


@dataclass(frozen=True)
class PlatformV1:
    version: ClassVar[str] = "v1"

    name: str
    label: str
    color: str
    calculate_stars: StarsFunction
    fetcher: FetcherV1 | None = None

    @property
    def fetcher_args(self) -> tuple[str, ...]:
        return ()

    def __post_init__(self) -> None:
        _validate_identity(self.name, self.label)
        _validate_fetcher(self.name, self.fetcher)
        if not callable(self.calculate_stars):
            raise ValueError(f"Platform {self.name}: v1 platforms require calculate_stars")


@dataclass(frozen=True)
class PlatformV2:
    version: ClassVar[str] = "v2"

    name: str
    label: str
    color: str
    calculate_stars: StarsFunction
    fetcher: FetcherV2 | None = None
    fetcher_args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _validate_identity(self.name, self.label)
        _validate_fetcher(self.name, self.fetcher)
        _validate_fetcher_args(self.name, tuple(self.fetcher_args))
        if not callable(self.calculate_stars):
            raise ValueError(f"Platform {self.name}: v2 platforms require calculate_stars")


@dataclass(frozen=True)
class PastcastPlatform:
    version: ClassVar[str] = "pastcast"

    name: str
    label: str
    color: str
    fetcher: PastcastFetcher | None = None
    fetcher_args: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        _validate_identity(self.name, self.label)
        _validate_fetcher(self.name, self.fetcher)
        _validate_fetcher_args(self.name, tuple(self.fetcher_args))


Platform = Union[PlatformV1, PlatformV2, PastcastPlatform]
