"""MCP server exposing gallery-scout discovery as a tool."""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .config import ScoutConfig
from .crawler import run_discovery
from .filters import FilterRules

logger = logging.getLogger("gallery_scout.mcp")
logger.setLevel(logging.ERROR)

mcp = FastMCP(name="gallery-scout")


@mcp.tool()
async def discover(
    url: str,
    rules_json: str = "",
) -> str:
    """Render a web page and return its gallery images as JSON.

    ``rules_json`` optionally holds filter rules such as
    ``{"extensions": ["images"], "dimensions": "large"}``.
    """

    rules = FilterRules.from_dict(json.loads(rules_json)) if rules_json.strip() else None
    with tempfile.TemporaryDirectory(prefix="gallery-scout-") as tmp_dir:
        config = ScoutConfig(output_root=Path(tmp_dir))
        reports = await run_discovery([url], config, rules)
    if not reports:
        raise RuntimeError(f"Failed to scan {url}")
    report = reports[0]
    if report.result.method == "error":
        raise RuntimeError(
            f"Failed to scan {url}: {report.result.metadata.get('error', 'unknown error')}"
        )
    return json.dumps(report.to_dict(), indent=2)


def main() -> None:
    """Entry point for running the MCP server."""
    logging.basicConfig(level=logging.ERROR)
    mcp.run()


if __name__ == "__main__":
    main()
