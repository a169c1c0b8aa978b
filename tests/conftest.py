"""
Shared fixtures: an in-memory stand-in for the Milvus server so the backend,
CLI and API can be exercised without a running instance.
"""
from types import SimpleNamespace

import pytest
from pymilvus import MilvusException

from knowledge_milvus.config import MilvusConfig, get_settings
from knowledge_milvus.rag import vector_backends


class FakeServer:
    def __init__(self):
        self.collections = {}
        self.calls = []
        self.connections = {}
        self.fail_on = set()
        self.fail_times = {}

    def record(self, op, *args):
        self.calls.append((op,) + args)
        if self.fail_times.get(op, 0) > 0:
            self.fail_times[op] -= 1
            raise MilvusException(message=f"{op} failed (transient)")
        if op in self.fail_on:
            raise MilvusException(message=f"{op} failed")

    def ops(self):
        return [c[0] for c in self.calls]


class FakeHit:
    def __init__(self, row, distance):
        self.id = row["id"]
        self.distance = distance
        self.entity = {k: v for k, v in row.items() if k != "embedding"}


def make_collection_cls(server: FakeServer):
    class FakeCollection:
        def __init__(self, name, schema=None, using="default", shards_num=2,
                     consistency_level="Bounded", **kwargs):
            self.name = name
            if schema is None:
                if name not in server.collections:
                    raise MilvusException(message=f"collection not found[collection={name}]")
            else:
                server.record("create_collection", name)
                server.collections[name] = {
                    "schema": schema,
                    "shards_num": shards_num,
                    "consistency_level": consistency_level,
                    "using": using,
                    "rows": [],
                    "index": None,
                    "loaded": False,
                }
            self.state = server.collections[name]

        def release(self):
            server.record("release", self.name)
            self.state["loaded"] = False

        def load(self):
            server.record("load", self.name)
            self.state["loaded"] = True

        def create_index(self, field_name, index_params):
            server.record("create_index", self.name, field_name)
            self.state["index"] = (field_name, index_params)

        def insert(self, data):
            server.record("insert", self.name)
            ids, titles, headings, contents, embeddings = data
            for row in zip(ids, titles, headings, contents, embeddings):
                self.state["rows"].append(
                    dict(zip(("id", "title", "heading", "content", "embedding"), row))
                )
            return SimpleNamespace(insert_count=len(ids))

        def search(self, data, anns_field, param, limit, output_fields):
            server.record("search", self.name, anns_field, param, limit, tuple(output_fields))
            out = []
            for vec in data:
                scored = []
                for row in self.state["rows"]:
                    d = sum((a - b) ** 2 for a, b in zip(vec, row[anns_field]))
                    scored.append(FakeHit(row, d))
                scored.sort(key=lambda h: h.distance)
                out.append(scored[:limit])
            return out

        @property
        def num_entities(self):
            return len(self.state["rows"])

    return FakeCollection


@pytest.fixture(autouse=True)
def _quiet_metrics(monkeypatch, tmp_path):
    monkeypatch.setenv("METRICS_DISABLED", "1")
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def milvus(monkeypatch):
    """Patch the backend module's pymilvus entry points with an in-memory server."""
    server = FakeServer()

    def connect(alias="default", address=None, **kwargs):
        server.record("connect", alias, address)
        server.connections[alias] = address

    def disconnect(alias):
        server.record("disconnect", alias)
        server.connections.pop(alias, None)

    def has_collection(name, using="default"):
        server.record("has_collection", name)
        return name in server.collections

    def drop_collection(name, using="default"):
        server.record("drop_collection", name)
        server.collections.pop(name, None)

    monkeypatch.setattr(vector_backends, "Collection", make_collection_cls(server))
    monkeypatch.setattr(
        vector_backends, "connections", SimpleNamespace(connect=connect, disconnect=disconnect)
    )
    monkeypatch.setattr(
        vector_backends,
        "utility",
        SimpleNamespace(has_collection=has_collection, drop_collection=drop_collection),
    )
    return server


@pytest.fixture
def cfg():
    return MilvusConfig(collection_name="sections", dim=3)


def sample_sections():
    return [
        {"title": "Go", "heading": "Intro", "content": "Go is a language.", "embedding": [1.0, 0.0, 0.0]},
        {"title": "Go", "heading": "Types", "content": "Go has structs.", "embedding": [0.0, 1.0, 0.0]},
        {"title": "Milvus", "heading": "Index", "content": "IVF_FLAT buckets.", "embedding": [0.0, 0.0, 1.0]},
    ]


@pytest.fixture
def sections_data():
    return sample_sections()
