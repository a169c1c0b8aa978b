import argparse
import json
import sys
from typing import List

from dotenv import load_dotenv
from pymilvus import MilvusException
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import MilvusConfig, get_settings
from .logging_utils import get_logger
from .rag.models import Similarity
from .rag.vector_backends import MilvusBackend

logger = get_logger("cli")


def resolve_config(args) -> MilvusConfig:
    settings = get_settings()
    overrides = {}
    if getattr(args, "collection", None):
        overrides["collection_name"] = args.collection
    if getattr(args, "addr", None):
        overrides["addr"] = args.addr
    if getattr(args, "dim", None):
        overrides["dim"] = args.dim
    if not overrides:
        return settings
    return MilvusConfig(**{**settings.model_dump(), **overrides})


@retry(
    retry=retry_if_exception_type(MilvusException),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
def _connect(cfg: MilvusConfig) -> MilvusBackend:
    return MilvusBackend(cfg)


def cmd_init(args) -> int:
    cfg = resolve_config(args)
    backend = _connect(cfg)
    try:
        print(f"[INIT] 集合: {backend.collection_name} (dim={cfg.dim}, addr={cfg.addr})")
        print(f"[INIT] 当前实体数: {backend.count()}")
    finally:
        backend.close()
    return 0


def cmd_load(args) -> int:
    cfg = resolve_config(args)
    backend = _connect(cfg)
    try:
        if args.rebuild:
            backend.drop_collection()
            print(f"[LOAD] 已重建集合: {backend.collection_name}")
        added = backend.load_json(args.file, start_id=args.start_id)
        print(f"[LOAD] 写入 {added} 条 section -> {backend.collection_name}")
    finally:
        backend.close()
    return 0


def _read_embedding(args) -> List[float]:
    if args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            data = json.load(f)
    else:
        data = json.loads(args.embedding)
    if not isinstance(data, list) or not all(isinstance(x, (int, float)) for x in data):
        raise ValueError("embedding must be a JSON array of numbers")
    return [float(x) for x in data]


def format_similarities(sims: List[Similarity], limit: int = 220) -> str:
    lines = []
    for i, s in enumerate(sims, 1):
        snippet = s.section.content
        if len(snippet) > limit:
            snippet = snippet[:limit] + "…"
        snippet = snippet.replace("\n", " ")
        lines.append(
            f"[{i} | id={s.id} | score={s.score:.4f}] {s.section.title} / {s.section.heading}\n  {snippet}"
        )
    return "\n".join(lines)


def cmd_query(args) -> int:
    if not args.embedding and not args.file:
        print("需要 --embedding 或 --file", file=sys.stderr)
        return 1
    embedding = _read_embedding(args)
    cfg = resolve_config(args)
    backend = _connect(cfg)
    try:
        sims = backend.query(embedding, args.top_k)
    finally:
        backend.close()
    if args.json:
        print(json.dumps([s.model_dump() for s in sims], ensure_ascii=False, indent=2))
    elif sims:
        print(format_similarities(sims))
    else:
        print("[QUERY] 无结果。")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Milvus 知识片段 CLI")
    p.add_argument("--collection", help="覆盖集合名 (MILVUS_COLLECTION)")
    p.add_argument("--addr", help="覆盖 Milvus 地址 (MILVUS_ADDR)")
    p.add_argument("--dim", type=int, help="覆盖向量维度 (MILVUS_DIM)")
    sub = p.add_subparsers(dest="command")

    pinit = sub.add_parser("init", help="连接并按需创建集合")
    pinit.set_defaults(func=cmd_init)

    pload = sub.add_parser("load", help="从 JSON 文件批量写入 section")
    pload.add_argument("file", help="section JSON 数组文件")
    pload.add_argument("--rebuild", action="store_true", help="先删除集合再全量重建")
    pload.add_argument("--start-id", type=int, default=0, help="主键起始值")
    pload.set_defaults(func=cmd_load)

    pq = sub.add_parser("query", help="向量相似检索")
    pq.add_argument("-e", "--embedding", help="查询向量 (JSON 数组)")
    pq.add_argument("-f", "--file", help="查询向量文件 (JSON 数组)")
    pq.add_argument("-k", "--top-k", type=int, default=5, help="返回条数")
    pq.add_argument("--json", action="store_true", help="JSON 输出")
    pq.set_defaults(func=cmd_query)

    return p


def main(argv=None):
    # Load environment variables at runtime (avoid import-time side-effects)
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 0
    try:
        return args.func(args)
    except (ValueError, OSError, MilvusException) as e:
        logger.debug("command failed", exc_info=True)
        print(f"[{args.command.upper()}] 失败: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
