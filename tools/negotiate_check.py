"""
Mint a token locally and try every candidate endpoint once.

    python tools/negotiate_check.py

Prints one line per attempt. Exit status 1 if no candidate opens.
"""

import asyncio
import sys

from dotenv import load_dotenv

from auth.candidates import TOKEN_EMBEDDINGS, mint_with_candidates
from config import AppConfig
from errors import ConfigError, NegotiationError
from observability import logger
from session.negotiator import ConnectionNegotiator


async def check(config: AppConfig) -> int:
    result = mint_with_candidates(
        config.api_key,
        config.token_default_lifetime_s,
        base_url=config.realtime_base_url,
        embeddings=TOKEN_EMBEDDINGS,
    )
    print(f"token expires at {result.token.expires_at_ms}, {len(result.candidates)} candidates")
    for candidate in result.candidates:
        headers = ",".join(name for name, _ in candidate.headers) or "-"
        print(f"  try: {candidate.name}  url={candidate.redacted_url()}  headers={headers}")

    negotiator = ConnectionNegotiator(timeout_s=config.connect_timeout_s)
    try:
        negotiated = await negotiator.connect(result.candidates)
    except NegotiationError as exc:
        for attempt in exc.attempts:
            print(f"FAIL: {attempt.describe()} ({attempt.elapsed_ms} ms)")
        return 1

    for attempt in negotiated.attempts:
        print(f"FAIL: {attempt.describe()} ({attempt.elapsed_ms} ms)")
    print(f"OPEN: [{negotiated.index + 1}] {negotiated.candidate.name}")
    await negotiated.transport.close()
    return 0


def main() -> int:
    load_dotenv()
    config = AppConfig.load_from_env()
    logger.configure(enabled=False)
    try:
        return asyncio.run(check(config))
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
