from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import aiohttp

# Allow running without installation:
#   python cli.py --base-url http://localhost:8000 signin me@example.com
sys.path.insert(0, str(Path(__file__).resolve().parent))

from studymate_client.api.client import StudyMateClient  # noqa: E402
from studymate_client.api.resources import NOTE_STYLES, QUIZ_DIFFICULTIES  # noqa: E402
from studymate_client.api.upload import load_upload_files  # noqa: E402
from studymate_client.config import ClientConfig  # noqa: E402
from studymate_client.types import StudyMateError, ValidationError  # noqa: E402


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="studymate", description="StudyMate AI command-line client")
    p.add_argument("--base-url", default=None, help="Backend URL (default: $STUDYMATE_API_URL)")
    p.add_argument("--storage", type=Path, default=None, help="Credential store file")
    p.add_argument("--debug", action="store_true", help="Print debug diagnostics")
    sub = p.add_subparsers(dest="cmd", required=True)

    signin = sub.add_parser("signin", help="Sign in and store credentials")
    signin.add_argument("email", nargs="?", default=None, help="Defaults to the remembered email")
    signin.add_argument("--password", default=None, help="Prompted when omitted")
    signin.add_argument("--remember", action="store_true", help="Remember the email address")

    signup = sub.add_parser("signup", help="Create an account and store credentials")
    signup.add_argument("email")
    signup.add_argument("username")
    signup.add_argument("--password", default=None, help="Prompted when omitted")
    signup.add_argument("--first-name", default=None)
    signup.add_argument("--last-name", default=None)

    sub.add_parser("signout", help="Forget stored credentials")
    sub.add_parser("me", help="Show the signed-in user")
    sub.add_parser("documents", help="List uploaded documents")
    sub.add_parser("health", help="Check backend health")

    upload = sub.add_parser("upload", help="Upload PDF documents")
    upload.add_argument("paths", nargs="+", type=Path)

    ask = sub.add_parser("ask", help="Ask a question and stream the answer")
    ask.add_argument("question")
    ask.add_argument("-s", "--session", default=None, help="Chat session id")
    ask.add_argument("--new-chat", action="store_true")

    notes = sub.add_parser("notes", help="Generate notes from documents")
    notes.add_argument("-d", "--doc", action="append", required=True, help="Document id (repeatable)")
    notes.add_argument("--style", default="moderate", choices=NOTE_STYLES)
    notes.add_argument("--prompt", default=None)
    notes.add_argument("--title", default=None)

    flashcards = sub.add_parser("flashcards", help="Generate flashcards")
    flashcards.add_argument("--topic", default=None)
    flashcards.add_argument("-d", "--doc", action="append", default=None, help="Document id (repeatable)")
    flashcards.add_argument("-n", "--count", type=int, default=10)

    quiz = sub.add_parser("quiz", help="Generate a quiz")
    quiz.add_argument("-d", "--doc", action="append", required=True, help="Document id (repeatable)")
    quiz.add_argument("-n", "--questions", type=int, default=10)
    quiz.add_argument("--minutes", type=int, default=30)
    quiz.add_argument("--difficulty", default="medium", choices=QUIZ_DIFFICULTIES)
    quiz.add_argument("--title", default=None)

    return p


def _print_json(value: object) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2))


def _password(value: Optional[str]) -> str:
    return value if value is not None else getpass.getpass("Password: ")


_ANONYMOUS_COMMANDS = ("signin", "signup", "signout", "health")


def _on_session_expired(sign_in_path: str) -> None:
    print(f"Session expired. Run `studymate signin` ({sign_in_path}) again.", file=sys.stderr)


async def _dispatch(args: argparse.Namespace, client: StudyMateClient) -> int:
    if args.cmd not in _ANONYMOUS_COMMANDS and not client.session.has_credentials():
        print("ERROR: Not signed in. Run `studymate signin` first.")
        return 1

    if args.cmd == "signin":
        email = args.email or client.auth.remembered_email()
        if not email:
            print("ERROR: email: Email is required")
            return 1
        remember = args.remember or args.email is None
        auth = await client.auth.sign_in(email, _password(args.password), remember=remember)
        print(f"Signed in as {auth.user.username}")
        return 0

    if args.cmd == "signup":
        auth = await client.auth.sign_up(
            email=args.email,
            password=_password(args.password),
            username=args.username,
            first_name=args.first_name,
            last_name=args.last_name,
        )
        print(f"Signed up as {auth.user.username}")
        return 0

    if args.cmd == "signout":
        client.sign_out()
        print("Signed out")
        return 0

    if args.cmd == "me":
        _print_json((await client.auth.get_current_user()).to_dict())
        return 0

    if args.cmd == "documents":
        for doc in await client.documents.list():
            print(f"{doc.get('id')}  {doc.get('embedding_status', '?'):<10}  {doc.get('original_filename') or doc.get('filename')}")
        return 0

    if args.cmd == "health":
        _print_json(await client.health.check())
        return 0

    if args.cmd == "upload":
        _print_json(await client.documents.upload(load_upload_files(args.paths)))
        return 0

    if args.cmd == "ask":
        had_output = False

        def _on_chunk(chunk: str) -> None:
            nonlocal had_output
            had_output = True
            print(chunk, end="", flush=True)

        response = await client.query.query_stream(
            args.question,
            session_id=args.session,
            new_chat=True if args.new_chat else None,
            on_chunk=_on_chunk,
        )
        if not had_output:
            print(response.answer, end="")
        print()
        if response.session_id:
            print(f"[session {response.session_id}]", file=sys.stderr)
        return 0

    if args.cmd == "notes":
        _print_json(
            await client.notes.generate(
                args.doc, note_style=args.style, user_prompt=args.prompt, title=args.title
            )
        )
        return 0

    if args.cmd == "flashcards":
        cards = await client.flashcards.generate_stream(
            topic=args.topic,
            document_ids=args.doc,
            num_flashcards=args.count,
            on_progress=lambda status, message: print(f"[{status}] {message}", file=sys.stderr),
        )
        _print_json(cards)
        return 0

    if args.cmd == "quiz":
        quiz = await client.quizzes.generate_stream(
            args.doc,
            num_questions=args.questions,
            time_limit_minutes=args.minutes,
            difficulty=args.difficulty,
            title=args.title,
            on_event=lambda event: print(f"[{event.get('status')}] {event.get('message') or ''}", file=sys.stderr),
        )
        print(f"Quiz {quiz.get('id')} ready: {quiz.get('title')}")
        return 0

    return 2


async def _run(args: argparse.Namespace) -> int:
    config = ClientConfig.from_env(base_url=args.base_url, storage_path=args.storage)
    try:
        async with StudyMateClient(config=config, on_session_expired=_on_session_expired) as client:
            return await _dispatch(args, client)
    except ValidationError as e:
        for field, message in e.errors.items():
            print(f"ERROR: {field}: {message}")
        return 1
    except (StudyMateError, aiohttp.ClientError, OSError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1


def main() -> None:
    args = _build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
