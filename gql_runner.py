import argparse
import json
import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Tuple

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib   # fallback for <=3.10

from client import Client, Request, with_default_loggers
from schemas import RunReport

logger = logging.getLogger("gql")


def load_config(path: str = "config.toml") -> Dict:
    """Load config.toml if present; otherwise return sane defaults."""
    cfg = {
        "network": {
            "timeout_seconds": 30,
            "wait_after_too_many_requests_seconds": 30,
            "multipart": False,
            "close_request": False,
        },
        "logging": {
            "level": "WARNING",
        },
    }
    if os.path.exists(path):
        with open(path, "rb") as f:
            user = tomllib.load(f)
        # shallow merge
        for k, v in user.items():
            if isinstance(v, dict) and k in cfg:
                cfg[k].update(v)
            else:
                cfg[k] = v
    return cfg


def parse_pairs(values: List[str], sep: str) -> List[Tuple[str, str]]:
    """Split ``name<sep>value`` arguments, e.g. ``--header Authorization:Bearer x``."""
    pairs = []
    for raw in values:
        name, found, value = raw.partition(sep)
        if not found or not name.strip():
            raise ValueError(f"expected NAME{sep}VALUE, got {raw!r}")
        pairs.append((name.strip(), value.strip()))
    return pairs


def read_vars(path: str | None) -> Dict:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: variables must be a JSON object")
    return data


def build_request(query: str, variables: Dict, headers: List[Tuple[str, str]]) -> Request:
    req = Request(query)
    for k, v in variables.items():
        req.var(k, v)
    for k, v in headers:
        req.headers[k] = v
    return req


def ensure_parent(path: str) -> None:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)


def main(argv: List[str] | None = None) -> None:
    ap = argparse.ArgumentParser(description="Run a GraphQL query with retries")
    ap.add_argument("--endpoint", required=True, help="GraphQL endpoint URL")
    ap.add_argument("--query", required=True, help="File holding the query document")
    ap.add_argument("--vars", help="JSON file with query variables")
    ap.add_argument("--file", action="append", default=[], help="Upload field=path (implies multipart)")
    ap.add_argument("--header", action="append", default=[], help="Extra header Name:Value")
    ap.add_argument("--wait-429", type=float, help="Seconds to wait after a 429 without Retry-After")
    ap.add_argument("--config", default="config.toml")
    ap.add_argument("--out-json", default="out/result.json")
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    logging.basicConfig(level=cfg["logging"]["level"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    net = cfg["network"]
    uploads = parse_pairs(args.file, "=")
    wait = args.wait_429 if args.wait_429 is not None else net["wait_after_too_many_requests_seconds"]
    client = Client(
        args.endpoint,
        use_multipart_form=bool(uploads) or net["multipart"],
        close_request=net["close_request"],
        wait_after_too_many_requests=wait,
        timeout=net["timeout_seconds"],
        **with_default_loggers(logger),
    )

    with open(args.query, "r", encoding="utf-8") as f:
        query = f.read()
    req = build_request(query, read_vars(args.vars), parse_pairs(args.header, ":"))

    handles = []
    try:
        for field, path in uploads:
            fh = open(path, "rb")
            handles.append(fh)
            req.file(field, os.path.basename(path), fh)
        data = client.run(req)
    finally:
        for fh in handles:
            fh.close()
        client.session.close()

    report = RunReport(generated_at=datetime.now(timezone.utc), endpoint=args.endpoint, data=data)
    ensure_parent(args.out_json)
    with open(args.out_json, "w", encoding="utf-8") as f:
        f.write(report.model_dump_json(indent=2))

    print(f"Saved → {args.out_json}")


if __name__ == "__main__":
    main()
