"""Pluggable adapters for different vector backends.

``VectorBackend`` is the small interface the CLI and API talk to; ``MilvusBackend``
maps knowledge sections onto a Milvus collection through ``pymilvus``.
"""

from typing import List, Sequence

import numpy as np
from pymilvus import Collection, MilvusException, connections, utility

from ..config import MilvusConfig
from ..ingestion.json_loader import read_sections
from ..logging_utils import emit_metric, get_logger, span
from .models import Section, Similarity
from .schema import (
    CONTENT_FIELD,
    EMBEDDING_FIELD,
    HEADING_FIELD,
    OUTPUT_FIELDS,
    TITLE_FIELD,
    build_collection_schema,
    index_params,
    search_params,
)

logger = get_logger("vector_backends")


class VectorBackend:
    def insert(self, sections: Sequence[Section], start_id: int = 0) -> int:
        raise NotImplementedError()

    def query(self, embedding: Sequence[float], top_k: int) -> List[Similarity]:
        raise NotImplementedError()

    def load_json(self, filename: str, start_id: int = 0) -> int:
        return self.insert(read_sections(filename), start_id=start_id)


class MilvusBackend(VectorBackend):
    def __init__(self, cfg: MilvusConfig):
        self.cfg = cfg
        self.collection_name = cfg.require_collection()
        self.alias = cfg.alias
        with span("milvus_connect", logger, addr=cfg.addr):
            connections.connect(alias=self.alias, address=cfg.addr)
        logger.info(f"connected addr={cfg.addr} alias={self.alias}")

        # 集合可能不存在或尚未加载, 此处失败可忽略
        try:
            Collection(self.collection_name, using=self.alias).release()
        except MilvusException as e:
            logger.debug(f"initial release ignored collection={self.collection_name} err={e}")

        self.collection = self._create_collection_if_not_exists()

    def _create_collection_if_not_exists(self) -> Collection:
        if utility.has_collection(self.collection_name, using=self.alias):
            return Collection(self.collection_name, using=self.alias)

        logger.info(
            f"creating collection={self.collection_name} dim={self.cfg.dim} "
            f"shards={self.cfg.shards_num} consistency={self.cfg.consistency_level}"
        )
        with span("milvus_create_collection", logger, collection=self.collection_name):
            collection = Collection(
                name=self.collection_name,
                schema=build_collection_schema(self.cfg.dim),
                using=self.alias,
                shards_num=self.cfg.shards_num,
                consistency_level=self.cfg.consistency_level,
            )
        emit_metric("milvus_create_collection", collection=self.collection_name, dim=self.cfg.dim)
        return collection

    def _to_vector(self, embedding: Sequence[float]) -> List[float]:
        arr = np.asarray(embedding, dtype="float32")
        if arr.ndim != 1 or arr.shape[0] != self.cfg.dim:
            raise ValueError(
                f"Dimension mismatch: expected {self.cfg.dim}, got {arr.shape[-1] if arr.ndim else 0}"
            )
        return arr.tolist()

    def build_columns(self, sections: Sequence[Section], start_id: int = 0) -> List[list]:
        ids, titles, headings, contents, embeddings = [], [], [], [], []
        for i, s in enumerate(sections):
            ids.append(start_id + i)
            titles.append(s.title)
            headings.append(s.heading)
            contents.append(s.content)
            embeddings.append(self._to_vector(s.embedding))
        return [ids, titles, headings, contents, embeddings]

    def insert(self, sections: Sequence[Section], start_id: int = 0) -> int:
        if not sections:
            logger.info(f"insert skipped: no sections collection={self.collection_name}")
            return 0
        columns = self.build_columns(sections, start_id)

        # index creation requires the collection to be released
        with span("milvus_release", logger, collection=self.collection_name):
            self.collection.release()
        with span("milvus_create_index", logger, collection=self.collection_name):
            self.collection.create_index(
                field_name=EMBEDDING_FIELD, index_params=index_params(self.cfg.nlist)
            )
        with span("milvus_insert", logger, rows=len(sections)):
            result = self.collection.insert(columns)
        inserted = int(getattr(result, "insert_count", len(sections)))
        logger.info(
            f"insert collection={self.collection_name} rows={len(sections)} "
            f"inserted={inserted} start_id={start_id}"
        )
        emit_metric("milvus_insert", collection=self.collection_name, inserted=inserted)
        return inserted

    def query(self, embedding: Sequence[float], top_k: int) -> List[Similarity]:
        """Search the ``top_k`` nearest sections to ``embedding`` (L2, ascending distance)."""
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")
        vector = self._to_vector(embedding)

        # searching requires the collection to be loaded
        with span("milvus_load", logger, collection=self.collection_name):
            self.collection.load()
        with span("milvus_search", logger, top_k=top_k):
            result = self.collection.search(
                data=[vector],
                anns_field=EMBEDDING_FIELD,
                param=search_params(),
                limit=top_k,
                output_fields=OUTPUT_FIELDS,
            )
        similarities = similarities_from_hits(result[0] if len(result) else [])
        logger.info(
            f"query collection={self.collection_name} top_k={top_k} hits={len(similarities)} "
            f"best={(similarities[0].score if similarities else None)}"
        )
        emit_metric("milvus_query", collection=self.collection_name, top_k=top_k, hits=len(similarities))
        return similarities

    def drop_collection(self) -> None:
        if utility.has_collection(self.collection_name, using=self.alias):
            with span("milvus_drop_collection", logger, collection=self.collection_name):
                utility.drop_collection(self.collection_name, using=self.alias)
            logger.info(f"dropped collection={self.collection_name}")
        self.collection = self._create_collection_if_not_exists()

    def count(self) -> int:
        with span("milvus_count", logger, collection=self.collection_name):
            return int(self.collection.num_entities)

    def close(self) -> None:
        with span("milvus_disconnect", logger, alias=self.alias):
            connections.disconnect(self.alias)


def similarities_from_hits(hits) -> List[Similarity]:
    out: List[Similarity] = []
    for hit in hits:
        entity = hit.entity
        values = {}
        for name in (TITLE_FIELD, HEADING_FIELD, CONTENT_FIELD):
            v = entity.get(name)
            if v is None:
                raise ValueError(f"search result missing field '{name}' for id={hit.id}")
            values[name] = v
        out.append(
            Similarity(
                section=Section(**values),
                id=int(hit.id),
                score=float(hit.distance),
            )
        )
    return out
