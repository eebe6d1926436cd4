#!/usr/bin/env python3
"""
Local runner for the explain endpoint.

Wraps page text (from a file or stdin) in an API Gateway HTTP API event and
runs it through the Lambda handler with the current environment, printing the
status code and the response envelope. Useful for checking credentials and
prompt changes without deploying.
"""
from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict

from explain_pdf import handler as explain_pdf


def build_event(text: str, page_number: int, *, source_ip: str) -> Dict[str, Any]:
    return {
        "rawPath": "/explain-pdf",
        "headers": {"content-type": "application/json", "host": "localhost:3000"},
        "requestContext": {"http": {"method": "POST", "path": "/explain-pdf", "sourceIp": source_ip}},
        "body": json.dumps({"text": text, "page_number": page_number}, ensure_ascii=False),
        "isBase64Encoded": False,
    }


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "path",
        nargs="?",
        help="File containing the extracted page text (if omitted, read from stdin).",
    )
    parser.add_argument("--page", type=int, default=1, help="Page number to mention in the prompt.")
    parser.add_argument("--source-ip", default="127.0.0.1", help="Client address used for rate limiting.")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw Lambda response as JSON (default is human-readable).",
    )
    args = parser.parse_args()

    if args.path:
        with open(args.path, encoding="utf-8") as handle:
            text = handle.read()
    else:
        text = sys.stdin.read()
    if not text.strip():
        print("No text provided.", file=sys.stderr)
        return 1

    response = explain_pdf.lambda_handler(build_event(text, args.page, source_ip=args.source_ip), None)
    if args.json:
        print(json.dumps(response, ensure_ascii=False))
        return 0 if response["statusCode"] == 200 else 2

    envelope = json.loads(response["body"])
    print(f"status : {response['statusCode']}")
    if envelope.get("success"):
        print(f"model  : {envelope.get('model')}")
        print(f"latency: {envelope.get('latencyMs')} ms")
        if envelope.get("truncated"):
            print("note   : input was truncated")
        print("-" * 40)
        print(envelope.get("explanation", ""))
        return 0

    print(f"error  : {envelope.get('error')} [{envelope.get('code')}] (ID: {envelope.get('errorId')})")
    print(f"details: {json.dumps(envelope.get('details'), ensure_ascii=False)}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
