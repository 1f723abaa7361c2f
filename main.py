"""
Booking receptionist entry point.

Runs the turn API for the telephony layer, or a console loop that talks
to the configured backends one typed utterance at a time.

Usage:
    HTTP API:     python main.py serve
    Console mode: python main.py console --business-id <id>
"""

import argparse
import asyncio
import logging
import uuid

from receptionist.config import settings

logger = logging.getLogger(__name__)

BLUE = "\033[94m"
GREEN = "\033[92m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"


def _run_api() -> None:
    """Serve the turn API with uvicorn."""
    import uvicorn

    from receptionist.api import create_app

    uvicorn.run(create_app(), host=settings.api.host, port=settings.api.port)


async def _console_loop(business_id: str) -> None:
    from receptionist.api import build_orchestrator
    from receptionist.conversation.orchestrator import TurnInputError
    from receptionist.schemas.conversation_schema import TurnRequest
    from receptionist.tools.business_context import BusinessNotFoundError

    orchestrator = build_orchestrator()
    call_id = f"CONSOLE-{uuid.uuid4().hex[:8]}"
    client_state = None

    print()
    print(f"{BOLD}{'=' * 60}{RESET}")
    print(f"{BOLD}  BOOKING RECEPTIONIST - Console{RESET}")
    print(f"{BOLD}  Business: {business_id}  Call: {call_id}{RESET}")
    print(f"{BOLD}  Type 'quit' to exit{RESET}")
    print(f"{BOLD}{'=' * 60}{RESET}")

    while True:
        utterance = input(f"\n{BLUE}[Caller] {RESET}").strip()
        if not utterance:
            continue
        if utterance.lower() in ("quit", "exit", "q"):
            print(f"\n{DIM}Session ended.{RESET}")
            return

        request = TurnRequest(
            utterance_text=utterance,
            client_state=client_state,
            business_id=business_id,
            call_id=call_id,
        )
        try:
            response = await orchestrator.handle_turn(request)
        except (TurnInputError, BusinessNotFoundError) as e:
            print(f"{RED}{e}{RESET}")
            return

        client_state = response.client_state
        print(f"{GREEN}{BOLD}[Agent]{RESET} {GREEN}{response.reply_text}{RESET}")
        flags = []
        if response.has_appointment:
            flags.append("appointment booked")
        if response.needs_message:
            flags.append("message taken")
        if response.suggested_alternatives:
            flags.append(f"alternatives: {', '.join(response.suggested_alternatives)}")
        if flags:
            print(f"{DIM}  >> {'; '.join(flags)}{RESET}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Booking receptionist")
    commands = parser.add_subparsers(dest="command")
    commands.add_parser("serve", help="Run the HTTP turn API")
    console = commands.add_parser("console", help="Chat with the receptionist in the terminal")
    console.add_argument("--business-id", required=True, help="Business to answer calls for")
    args = parser.parse_args()

    if args.command == "console":
        asyncio.run(_console_loop(args.business_id))
    else:
        _run_api()


if __name__ == "__main__":
    main()
