import os
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_ADDR = "localhost:19530"
# dimension produced by OpenAI's embedding API
DEFAULT_DIM = 1536


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


class MilvusConfig(BaseModel):
    model_config = ConfigDict(validate_default=True)

    collection_name: str = Field(default_factory=lambda: os.getenv("MILVUS_COLLECTION", ""))
    addr: str = Field(default_factory=lambda: os.getenv("MILVUS_ADDR") or DEFAULT_ADDR)
    dim: int = Field(default_factory=lambda: _env_int("MILVUS_DIM", DEFAULT_DIM))
    alias: str = Field(default_factory=lambda: os.getenv("MILVUS_ALIAS") or "default")
    shards_num: int = Field(default_factory=lambda: _env_int("MILVUS_SHARDS", 2))
    consistency_level: str = Field(
        default_factory=lambda: os.getenv("MILVUS_CONSISTENCY_LEVEL") or "Bounded"
    )
    nlist: int = Field(default_factory=lambda: _env_int("MILVUS_NLIST", 128))  # IVF 聚类桶数

    @field_validator("addr", mode="before")
    @classmethod
    def _default_addr(cls, v):
        return v or DEFAULT_ADDR

    @field_validator("dim", mode="before")
    @classmethod
    def _default_dim(cls, v):
        return v or DEFAULT_DIM

    @field_validator("dim", "shards_num", "nlist")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"must be positive, got {v}")
        return v

    def require_collection(self) -> str:
        if not self.collection_name:
            raise ValueError("collection_name is required (set MILVUS_COLLECTION or --collection)")
        return self.collection_name


@lru_cache
def get_settings() -> MilvusConfig:
    return MilvusConfig()
