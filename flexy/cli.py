"""Interactive terminal chat for a Flexy workspace.

Prints prose and a one-line summary per chart; it does not render charts.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TextIO

from flexy.config import get_settings
from flexy.models import ChartRecord, Message
from flexy.services.api_client import APIClient, ChatAPI
from flexy.services.auth_service import TokenStore
from flexy.services.chat_service import ChatService

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "quit", "q")


def format_chart(index: int, chart: ChartRecord) -> str:
    series = ", ".join(ds.label or "series" for ds in chart.data.datasets) or "no series"
    return f"  [chart {index}] {chart.type}: {chart.title} ({len(chart.data.labels)} labels; {series})"


def format_message(message: Message) -> str:
    speaker = "you" if message.role == "user" else "assistant"
    lines = [f"{speaker}> {message.display_text}" if message.display_text else f"{speaker}>"]
    for index, chart in enumerate(message.charts, start=1):
        lines.append(format_chart(index, chart))
        lines.extend(f"    - {insight}" for insight in chart.insights)
    if message.metadata is not None and message.metadata.insight_id is not None:
        lines.append(f"  (generated insight #{message.metadata.insight_id})")
    return "\n".join(lines) + "\n"


class FlexyChatCLI:
    """Line-oriented chat loop over a ``ChatService``."""

    def __init__(
        self,
        service: ChatService,
        input_stream: TextIO = sys.stdin,
        output_stream: TextIO = sys.stdout,
    ) -> None:
        self.service = service
        self.input_stream = input_stream
        self.output_stream = output_stream

    def show(self, message: Message) -> None:
        # Local user messages are already on screen
        if message.role == "assistant":
            self._print(format_message(message))

    async def run(self) -> None:
        try:
            await self.service.start()
            self._print_welcome()
            for message in self.service.messages:
                self._print(format_message(message))

            while True:
                line = await asyncio.to_thread(self.input_stream.readline)
                if not line:
                    break
                query = line.strip()
                if not query:
                    continue
                if query.lower() in EXIT_COMMANDS:
                    break
                if query == "/reconnect":
                    self.service.reconnect()
                    continue
                if query == "/status":
                    self._print(f"status: {self.service.connection_status.value}\n")
                    continue
                self.service.send_message(query)
        finally:
            await self.service.close()
            self._print("Goodbye!\n")

    def _print_welcome(self) -> None:
        mode = " (offline)" if self.service.is_provisional else ""
        self._print(f"Flexy chat - session {self.service.session_id}{mode}\n")
        self._print("Type a question and press Enter. '/status', '/reconnect', 'exit'.\n\n")

    def _print(self, text: str) -> None:
        self.output_stream.write(text)
        self.output_stream.flush()


async def main(
    workspace_id: str | None = None,
    session_id: str | None = None,
    debug: bool = False,
) -> None:
    log_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s", stream=sys.stderr)

    settings = get_settings()
    token_store = TokenStore.from_settings(settings)
    client = APIClient.from_settings(settings, token_store=token_store)
    cli: FlexyChatCLI | None = None

    def _show(message: Message) -> None:
        if cli is not None:
            cli.show(message)

    service = ChatService(
        ChatAPI(client),
        workspace_id=workspace_id,
        session_id=session_id,
        settings=settings,
        token_store=token_store,
        on_message=_show,
    )
    cli = FlexyChatCLI(service)
    try:
        await cli.run()
    finally:
        await client.aclose()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with a Flexy BI workspace")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--workspace", dest="workspace_id", help="Workspace id; a new session is created")
    group.add_argument("--session", dest="session_id", help="Resume an existing chat session")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def cli_entry() -> None:
    args = parse_args()
    try:
        asyncio.run(main(workspace_id=args.workspace_id, session_id=args.session_id, debug=args.debug))
    except KeyboardInterrupt:
        sys.exit(0)
