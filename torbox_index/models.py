from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Source(str, Enum):
    TORRENTS = "torrents"
    WEBDL = "webdl"
    USENET = "usenet"

    @property
    def short(self) -> str:
        return {"torrents": "t", "webdl": "w", "usenet": "u"}[self.value]

    @classmethod
    def from_short(cls, code: str) -> Optional["Source"]:
        for source in cls:
            if source.short == code:
                return source
        return None


class FileEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: Source
    container_id: int
    file_id: int
    full_name: str
    display_name: str
    size: int = Field(default=0, ge=0)


class ContainerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: Source
    container_id: int
    container_name: str
    files: tuple[FileEntry, ...]

    @property
    def total_size(self) -> int:
        return sum(file.size for file in self.files)


# Raw payloads as the remote API sends them. Fields it may omit are optional.


class UpstreamFile(BaseModel):
    id: int
    name: Optional[str] = None
    short_name: Optional[str] = None
    size: Optional[int] = None


class UpstreamItem(BaseModel):
    id: int
    name: Optional[str] = None
    files: Optional[list[UpstreamFile]] = None
    download_present: Optional[bool] = None

    @property
    def available(self) -> bool:
        return self.download_present is not False and bool(self.files)


class UpstreamEnvelope(BaseModel):
    success: bool
    error: Optional[str] = None
    detail: Optional[str] = None
    data: Union[list[UpstreamItem], UpstreamItem, None] = None

    def items(self) -> list[UpstreamItem]:
        if self.data is None:
            return []
        if isinstance(self.data, list):
            return self.data
        return [self.data]

    def failure_detail(self) -> str:
        return self.detail or self.error or "unknown error"


class ListingEntry(BaseModel):
    href: Optional[str] = None
    name: str
    size: Optional[int] = None
    description: Optional[str] = None
