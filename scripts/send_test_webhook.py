#!/usr/bin/env python3
"""
Dev helper: send a test webhook to the local CRM backend.

Email mode posts a SendGrid Inbound Parse-shaped multipart form with a resume
attachment (a real file, or a generated plain-text resume) to
/api/webhooks/sendgrid/inbound. SMS / WhatsApp modes post a Twilio-shaped
form to /api/webhooks/twilio/{sms,whatsapp}.

Usage
-----
# Inbound email with a generated resume, targeting localhost:8000
python scripts/send_test_webhook.py

# Attach a specific resume
python scripts/send_test_webhook.py --file path/to/cv.pdf

# Inbound SMS / WhatsApp
python scripts/send_test_webhook.py sms --from +447700900123 --body "Hi"
python scripts/send_test_webhook.py whatsapp --from +447700900123

Environment / .env
------------------
INBOUND_WEBHOOK_SECRET   Sent as X-Webhook-Secret when set (email mode).
"""

import argparse
import json
import os
import sys
import textwrap
import uuid
from pathlib import Path

import httpx
from dotenv import load_dotenv

_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
}


def _make_sample_resume(from_email: str) -> bytes:
    """Return a minimal plain-text resume as bytes."""
    local = from_email.split("@", 1)[0]
    parts = [p.capitalize() for p in local.split(".") if p] or ["Jane", "Doe"]
    name = " ".join(parts)
    return textwrap.dedent(f"""\
        {name}
        Email: {from_email}
        Phone: 07123 456789

        Summary
        Backend engineer with six years of Python experience.

        Skills
        Python, FastAPI, PostgreSQL

        Experience
        Acme Ltd, Senior Engineer, 2021 - present
    """).encode()


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


def _send_email(args) -> httpx.Response:
    if args.file:
        file_path = Path(args.file)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")
        file_content = file_path.read_bytes()
        filename = file_path.name
        content_type = _CONTENT_TYPES.get(file_path.suffix.lower(), "application/octet-stream")
    else:
        file_content = _make_sample_resume(args.from_address)
        filename = "resume.txt"
        content_type = "text/plain"
    print(f"Attachment: {filename} ({len(file_content):,} bytes)")

    fields = {
        "from": args.from_address,
        "to": args.to,
        "subject": args.subject,
        "text": "Please find my resume attached.",
        "envelope": json.dumps({"from": args.from_address, "to": [args.to]}),
    }
    headers = {}
    secret = args.secret or os.getenv("INBOUND_WEBHOOK_SECRET")
    if secret:
        headers["X-Webhook-Secret"] = secret

    endpoint = f"{args.url.rstrip('/')}/api/webhooks/sendgrid/inbound"
    print(f"Endpoint  : {endpoint}")
    return httpx.post(
        endpoint,
        data=fields,
        files={"attachment1": (filename, file_content, content_type)},
        headers=headers,
        timeout=120,
    )


def _send_text(args) -> httpx.Response:
    whatsapp = args.mode == "whatsapp"
    marker = "whatsapp:" if whatsapp else ""
    form = {
        "From": f"{marker}{args.from_address}",
        "To": f"{marker}{args.to}",
        "Body": args.body,
        "MessageSid": f"SM{uuid.uuid4().hex}",
    }
    endpoint = f"{args.url.rstrip('/')}/api/webhooks/twilio/{args.mode}"
    print(f"Endpoint  : {endpoint}")
    return httpx.post(endpoint, data=form, timeout=30)


def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_webhook.py",
        description="Send a test inbound webhook to the CRM backend.",
    )
    parser.add_argument("mode", nargs="?", default="email", choices=["email", "sms", "whatsapp"])
    parser.add_argument("--url", default="http://localhost:8000", help="Backend base URL")
    parser.add_argument(
        "--from",
        dest="from_address",
        default=None,
        help="Sender address or number (default depends on mode)",
    )
    parser.add_argument("--to", default=None, help="Recipient address or number")
    parser.add_argument("--subject", default="Application: Backend Engineer")
    parser.add_argument("--body", default="Hello, I'd like to know more.")
    parser.add_argument("--file", default=None, metavar="PATH", help="Resume to attach (email mode)")
    parser.add_argument("--secret", default=None, help="Override INBOUND_WEBHOOK_SECRET")
    args = parser.parse_args()

    if args.mode == "email":
        args.from_address = args.from_address or "jane.doe@example.com"
        args.to = args.to or "jobs@example.com"
    else:
        args.from_address = args.from_address or "+447700900123"
        args.to = args.to or "+447700900000"

    try:
        response = _send_email(args) if args.mode == "email" else _send_text(args)
    except FileNotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {args.url}\n"
            "Is the backend running? Start it with:\n"
            "  cd backend && uvicorn crm.main:app --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
