#!/usr/bin/env python3
"""
sessionauth token refresh trigger

Calls the token refresh route with the configured API key. Run it from
cron or any other scheduler, e.g. every minute.
"""

import argparse
import asyncio
import sys

import httpx
from dotenv import load_dotenv

from sessionauth.core import get_logger, get_settings, setup_logging


async def trigger_refresh(base_url: str, api_key: str, timeout: float) -> int:
    """Call the refresh route and report the result. Returns the exit code."""
    logger = get_logger(__name__)
    url = f"{base_url.rstrip('/')}/api/auth/refresh-tokens"

    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout)) as client:
            response = await client.post(url, headers={"Authorization": f"Bearer {api_key}"})
    except httpx.RequestError as e:
        logger.error("Token refresh request failed", url=url, error=str(e))
        print(f"❌ Could not reach {url}: {e}")
        return 1

    if response.status_code != 200:
        logger.error("Token refresh rejected", url=url, status_code=response.status_code)
        print(f"❌ Token refresh failed: {response.status_code} {response.text}")
        return 1

    result = response.json()
    logger.info("Token refresh completed", **result)
    print(f"✅ Refreshed {result['refreshed']}/{result['total']} sessions ({result['failed']} failed)")
    return 0 if result["failed"] == 0 else 2


def main() -> int:
    load_dotenv()
    settings = get_settings()
    setup_logging(settings.logging)

    parser = argparse.ArgumentParser(description="Refresh expiring OAuth tokens")
    parser.add_argument(
        "--url",
        default=f"http://localhost:{settings.server.port}",
        help="Base URL of the sessionauth server"
    )
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds")
    args = parser.parse_args()

    api_key = settings.auth.token_refresh_api_key
    if not api_key:
        print("❌ AUTH_TOKEN_REFRESH_API_KEY is not set")
        return 1

    return asyncio.run(trigger_refresh(args.url, api_key, args.timeout))


if __name__ == "__main__":
    sys.exit(main())
