from pymilvus import CollectionSchema, DataType, FieldSchema

ID_FIELD = "id"
TITLE_FIELD = "title"
HEADING_FIELD = "heading"
CONTENT_FIELD = "content"
EMBEDDING_FIELD = "embedding"

# 输出字段顺序即插入列顺序 (embedding 除外)
OUTPUT_FIELDS = [ID_FIELD, TITLE_FIELD, HEADING_FIELD, CONTENT_FIELD]

TITLE_MAX_LENGTH = 50
HEADING_MAX_LENGTH = 50
CONTENT_MAX_LENGTH = 5000

METRIC_TYPE = "L2"
INDEX_TYPE = "IVF_FLAT"


def build_collection_schema(dim: int) -> CollectionSchema:
    fields = [
        FieldSchema(name=ID_FIELD, dtype=DataType.INT64, is_primary=True, auto_id=False),
        FieldSchema(name=TITLE_FIELD, dtype=DataType.VARCHAR, max_length=TITLE_MAX_LENGTH),
        FieldSchema(name=HEADING_FIELD, dtype=DataType.VARCHAR, max_length=HEADING_MAX_LENGTH),
        FieldSchema(name=CONTENT_FIELD, dtype=DataType.VARCHAR, max_length=CONTENT_MAX_LENGTH),
        FieldSchema(name=EMBEDDING_FIELD, dtype=DataType.FLOAT_VECTOR, dim=dim),
    ]
    return CollectionSchema(fields=fields, auto_id=False, description="knowledge sections")


def index_params(nlist: int = 128) -> dict:
    return {"index_type": INDEX_TYPE, "metric_type": METRIC_TYPE, "params": {"nlist": nlist}}


def search_params() -> dict:
    # flat search: no nprobe, server defaults apply
    return {"metric_type": METRIC_TYPE, "params": {}}
