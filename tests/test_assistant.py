"""
Assistant chat and WhatsApp bot simulator tests.
The Gemini client is replaced by a mock.
"""

import pytest
from datetime import datetime
from unittest.mock import Mock

from fluxo.assistant.bot import QR_CODE_URL, BotSimulator, build_system_instruction
from fluxo.assistant.chat import ERROR_REPLY, MISSING_KEY_REPLY, AssistantChat, build_assistant_instruction
from fluxo.assistant.gemini import GeminiClient
from fluxo.config import AssistantConfig
from fluxo.database.models import BotConfig, BotConnectionStatus, PlanType, TransactionType
from fluxo.errors import BackendUnavailableError, PermissionDeniedError, ValidationError
from fluxo.session import Session


def _client(reply: str = "Feito!", available: bool = True) -> Mock:
    client = Mock(spec=GeminiClient)
    client.is_available = available
    client.config = AssistantConfig(api_key="test-key")
    client.chat.return_value = reply
    return client


@pytest.fixture
def session_for(store, make_user):
    def _make(plan: PlanType) -> Session:
        return Session(store, make_user(plan=plan, email=f"{plan.value.lower()}@example.com"))

    return _make


class TestAssistantChat:
    """Test the in-app assistant."""

    def test_requires_ai_feature(self, session_for):
        with pytest.raises(PermissionDeniedError):
            AssistantChat(session_for(PlanType.BASIC), _client())

    def test_reply_and_history(self, session_for, now):
        client = _client("Olá!")
        chat = AssistantChat(session_for(PlanType.ADVANCED), client, clock=lambda: now)

        assert chat.send("oi") == "Olá!"
        assert chat.send("tudo bem?") == "Olá!"

        assert [turn.text for turn in chat.history] == ["oi", "Olá!", "tudo bem?", "Olá!"]
        second_call = client.chat.call_args_list[1]
        assert [turn.text for turn in second_call.args[0]] == ["oi", "Olá!"]
        assert "20/05/2024" in second_call.kwargs["system_instruction"]

    def test_tool_calls_reach_the_store(self, session_for, store):
        session = session_for(PlanType.ADVANCED)
        client = _client()

        def fake_chat(history, message, system_instruction=None, tools=None, on_tool_call=None, model=None):
            return on_tool_call("create_expense", {"description": "Almoço", "amount": "50"})

        client.chat.side_effect = fake_chat
        reply = AssistantChat(session, client).send("gastei 50 no almoço")

        assert reply.startswith("✅ Despesa registrada")
        expenses = store.expenses.list_for_user(session.user_id, TransactionType.EXPENSE)
        assert expenses[0].amount == 50.0

    def test_missing_key(self, session_for):
        client = _client(available=False)
        chat = AssistantChat(session_for(PlanType.ADVANCED), client)

        assert chat.send("oi") == MISSING_KEY_REPLY
        client.chat.assert_not_called()

    def test_backend_error_becomes_apology(self, session_for):
        client = _client()
        client.chat.side_effect = BackendUnavailableError("down")

        assert AssistantChat(session_for(PlanType.ADVANCED), client).send("oi") == ERROR_REPLY

    def test_empty_message(self, session_for):
        with pytest.raises(ValidationError):
            AssistantChat(session_for(PlanType.ADVANCED), _client()).send("   ")

    def test_speaker_only_with_voice_commands(self, session_for):
        speaker = Mock()
        AssistantChat(session_for(PlanType.ADVANCED), _client(), speaker=speaker).send("oi")
        speaker.assert_not_called()

        AssistantChat(session_for(PlanType.EXPERT), _client("Pronto"), speaker=speaker).send("oi")
        speaker.assert_called_once_with("Pronto")

    def test_instruction_lists_tools(self, now):
        instruction = build_assistant_instruction(now)
        for tool in ("navigate", "create_expense", "create_income"):
            assert tool in instruction


class TestBotSimulator:
    """Test the WhatsApp bot flow."""

    @pytest.fixture
    def bot(self, session_for, now) -> BotSimulator:
        return BotSimulator(session_for(PlanType.EXPERT), _client("Temos bolos!"), clock=lambda: now)

    def test_requires_expert_plan(self, session_for):
        with pytest.raises(PermissionDeniedError):
            BotSimulator(session_for(PlanType.ADVANCED), _client())

    def test_instruction_defaults(self):
        instruction = build_system_instruction(BotConfig(user_id="u", bot_name="Fluxinho"))

        assert instruction.startswith("Você é Fluxinho")
        assert "Não informado." in instruction
        assert "Consulte o atendimento." in instruction
        assert "Segunda a Sexta, horário comercial." in instruction

    def test_save_config_rebuilds_instruction(self, bot: BotSimulator):
        config = bot.save_config(bot_name="Fluxinho", products_and_prices="Bolo: R$ 50")

        assert "Bolo: R$ 50" in config.system_instructions
        assert bot.config.bot_name == "Fluxinho"

    def test_save_config_rejects_unknown_field(self, bot: BotSimulator):
        with pytest.raises(ValidationError):
            bot.save_config(is_connected=True)

    def test_pairing_flow(self, bot: BotSimulator, now):
        bot.save_config(bot_name="Fluxinho")

        url = bot.begin_pairing()
        assert url.startswith(QR_CODE_URL.split("{")[0])
        assert bot.config.connection_status == BotConnectionStatus.CONNECTING

        greeting = bot.complete_pairing()
        config = bot.config
        assert greeting == "Olá! Eu sou o Fluxinho. Bot conectado e pronto para atender."
        assert config.is_connected is True
        assert config.last_connection == now
        assert config.connection_status == BotConnectionStatus.CONNECTED

        bot.disconnect()
        assert bot.config.is_connected is False

    def test_complete_without_begin(self, bot: BotSimulator):
        with pytest.raises(ValidationError):
            bot.complete_pairing()

    def test_send_requires_connection(self, bot: BotSimulator):
        with pytest.raises(ValidationError):
            bot.send("oi")

    def test_send_uses_bot_model_and_lead_tool(self, bot: BotSimulator):
        bot.begin_pairing()
        bot.complete_pairing()

        assert bot.send("Quanto custa o bolo?") == "Temos bolos!"

        kwargs = bot.client.chat.call_args.kwargs
        assert kwargs["model"] == "gemini-3-pro-preview"
        assert [tool["name"] for tool in kwargs["tools"]] == ["create_lead"]
        assert len(bot.history) == 2

    def test_lead_tool_creates_records(self, bot: BotSimulator, store):
        bot.begin_pairing()
        bot.complete_pairing()

        reply = bot.router.dispatch("create_lead", {"name": "Joana", "interest": "Bolo de pote"})

        assert "Joana" in reply
        assert len(store.opportunities.list_for_user(bot.session.user_id)) == 1
        assert bot.router.dispatch("create_expense", {"description": "x", "amount": 1}) == "Ferramenta desconhecida."
