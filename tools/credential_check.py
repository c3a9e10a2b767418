"""
Check the configured ZHIPU_API_KEY without printing it.

    python tools/credential_check.py          # format checks only
    python tools/credential_check.py --ping   # plus one authenticated API call

Exit status 1 on a malformed or suspicious key, or a failed ping.
"""

import argparse
import json
import os
import sys

import httpx
from dotenv import load_dotenv

from auth.token_minter import credential_diagnostics, credential_warning, parse_credential, strip_auth_scheme
from errors import InvalidCredentialFormat

PING_URL = "https://open.bigmodel.cn/api/paas/v4/chat/completions"
PING_MODEL = "glm-4-air-250414"


def ping(api_key: str) -> bool:
    resp = httpx.post(
        PING_URL,
        headers={"Authorization": f"Bearer {api_key}"},
        json={"model": PING_MODEL, "messages": [{"role": "user", "content": "ping"}], "stream": False},
        timeout=20.0,
    )
    print("status", resp.status_code)
    print("body_head", resp.text[:200])
    return resp.status_code == 200


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--ping", action="store_true", help="make one chat completion call with the key")
    args = parser.parse_args()

    load_dotenv()
    raw = os.environ.get("ZHIPU_API_KEY", "")

    diag = credential_diagnostics(raw)
    print("key_info", json.dumps(diag))

    try:
        parse_credential(raw)
    except InvalidCredentialFormat as exc:
        print(str(exc), file=sys.stderr)
        return 1

    warning = credential_warning(diag)
    if warning:
        print(warning, file=sys.stderr)
        return 1

    if args.ping:
        try:
            return 0 if ping(strip_auth_scheme(raw)) else 1
        except httpx.HTTPError as exc:
            print(f"ping failed: {exc!r}", file=sys.stderr)
            return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
