"""Tests for the terminal chat front end."""

from __future__ import annotations

import io
import json
from unittest.mock import AsyncMock

import pytest

from flexy.cli import FlexyChatCLI, format_message, parse_args
from flexy.config import Settings
from flexy.exceptions import APIError
from flexy.models import ChartRecord, Message, MessageMetadata
from flexy.services.api_client import ChatAPI
from flexy.services.auth_service import TokenStore
from flexy.services.chat_service import OFFLINE_REPLY, ChatService

from .fakes import make_chart


class TestFormatMessage:
    def test_user_message(self):
        message = Message(id="1", session_id="s", role="user", content="hi", display_text="hi")
        assert format_message(message) == "you> hi\n"

    def test_chart_summary_and_insights(self):
        chart = ChartRecord.model_validate(make_chart(insights=["North leads"]))
        message = Message(
            id="1",
            session_id="s",
            role="assistant",
            content="See chart",
            display_text="See chart",
            chart_data=chart,
            metadata=MessageMetadata(insight_id=3),
        )
        assert format_message(message).splitlines() == [
            "assistant> See chart",
            "  [chart 1] bar: Revenue by region (2 labels; Revenue)",
            "    - North leads",
            "  (generated insight #3)",
        ]

    def test_chart_only_reply(self):
        chart = ChartRecord.model_validate(make_chart(type="pie"))
        message = Message(id="1", session_id="s", role="assistant", embedded_charts=(chart,))
        assert format_message(message).splitlines()[0] == "assistant>"


class TestParseArgs:
    def test_workspace(self):
        args = parse_args(["--workspace", "42"])
        assert args.workspace_id == "42"
        assert args.session_id is None
        assert not args.debug

    def test_session_and_debug(self):
        args = parse_args(["--session", "abc", "--debug"])
        assert args.session_id == "abc"
        assert args.debug

    def test_workspace_and_session_exclusive(self):
        with pytest.raises(SystemExit):
            parse_args(["--workspace", "1", "--session", "abc"])

    def test_one_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestChatLoop:
    async def test_offline_session_round_trip(self):
        chat_api = AsyncMock(spec=ChatAPI)
        chat_api.create_chat_session.side_effect = APIError("down", status=503)
        output = io.StringIO()
        cli: FlexyChatCLI | None = None

        service = ChatService(
            chat_api,
            workspace_id=42,
            settings=Settings(_env_file=None, offline_reply_delay=0.0),
            token_store=TokenStore("tok"),
            on_message=lambda message: cli.show(message),
        )
        # "/status" is handled locally; "exit" ends the loop
        cli = FlexyChatCLI(service, io.StringIO("How are sales?\n/status\nexit\n"), output)

        await cli.run()

        text = output.getvalue()
        assert "(offline)" in text
        assert "status: disconnected" in text
        assert text.rstrip().endswith("Goodbye!")
        assert [m.role for m in service.messages][0] == "user"
        assert service.messages[0].content == "How are sales?"

    async def test_history_printed_on_start(self):
        chat_api = AsyncMock(spec=ChatAPI)
        chat_api.get_chat_messages.return_value = [
            {
                "id": 1,
                "session_id": "abc",
                "message_type": "assistant",
                "content": "Earlier answer " + json.dumps(make_chart(type="line")),
            }
        ]
        output = io.StringIO()
        service = ChatService(
            chat_api,
            session_id="abc",
            settings=Settings(_env_file=None, ws_base_url=""),
            token_store=TokenStore("tok"),
        )

        await FlexyChatCLI(service, io.StringIO(""), output).run()

        text = output.getvalue()
        assert "assistant> Earlier answer" in text
        assert "[chart 1] line: Revenue by region" in text
        assert OFFLINE_REPLY not in text
