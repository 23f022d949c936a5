from __future__ import annotations

import argparse
import json
from pathlib import Path

from services.api.app import app


def export(out: Path) -> Path:
    spec = app.openapi()
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8") as f:
        json.dump(spec, f, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    return out


def main() -> None:
    parser = argparse.ArgumentParser(description="Export the OpenAPI document of the floor-tracker API")
    parser.add_argument("--out", default="docs/openapi/openapi.json", help="Output path for JSON spec")
    args = parser.parse_args()

    out = export(Path(args.out))
    print(f"Wrote {out}")


if __name__ == "__main__":
    main()
