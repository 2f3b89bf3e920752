from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
import sys
from typing import Any

from aisecretary.core.config import get_settings
from aisecretary.core.errors import StoreUnavailable
from aisecretary.persistence.factory import get_store


async def _check_store() -> bool:
    # Ping the configured key-value backend with the same client the API uses.
    store = get_store()
    try:
        return await store.ping()
    except StoreUnavailable:
        return False


def _required_env_names() -> list[str]:
    # Keep env requirements explicit and avoid printing secret values.
    settings = get_settings()
    names = ["REDIS_URL"] if settings.store_backend == "redis" else []
    if settings.chat_provider == "line":
        names += ["LINE_CHANNEL_ACCESS_TOKEN", "LINE_CHANNEL_SECRET"]
    if settings.llm_provider == "openai":
        names.append("OPENAI_API_KEY")
    return names


def _check_webhook_route() -> bool:
    from aisecretary.apps.api.routes.webhook import router as webhook_router

    return "/webhook/line" in {route.path for route in webhook_router.routes}


async def run_preflight(*, output_json: str | None) -> int:
    settings = get_settings()
    results: list[dict[str, Any]] = []

    missing_env = [name for name in _required_env_names() if not os.environ.get(name)]
    results.append(
        {
            "check": "required_env_present",
            "status": "pass" if not missing_env else "fail",
            "detail": {"missing": missing_env},
        }
    )

    store_ok = await _check_store()
    results.append(
        {
            "check": "store_reachable",
            "status": "pass" if store_ok else "fail",
            "detail": {"backend": settings.store_backend},
        }
    )

    google_ready = bool(settings.google_client_id and settings.google_client_secret)
    results.append(
        {
            "check": "google_calendar_configured",
            "status": "pass" if google_ready else "warn",
            "detail": {"app_base_url": settings.app_base_url},
        }
    )

    results.append(
        {"check": "webhook_route_present", "status": "pass" if _check_webhook_route() else "fail", "detail": {}}
    )

    failed = [row for row in results if row["status"] == "fail"]
    summary = {
        "status": "pass" if not failed else "fail",
        "checks": results,
    }
    if output_json:
        output_path = Path(output_json)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps(summary, indent=2, sort_keys=True), encoding="utf-8")
    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0 if not failed else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Run deploy preflight checks for the secretary API.")
    parser.add_argument("--output-json", default=None)
    args = parser.parse_args()
    return asyncio.run(run_preflight(output_json=args.output_json))


if __name__ == "__main__":
    sys.exit(main())
