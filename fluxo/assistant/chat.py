"""
In-app assistant conversation.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from fluxo.access import Feature
from fluxo.assistant.gemini import ChatTurn, GeminiClient
from fluxo.assistant.tools import ASSISTANT_TOOLS, ToolRouter
from fluxo.errors import FluxoError, ValidationError
from fluxo.session import Session

logger = logging.getLogger(__name__)

GREETING = (
    "Olá! Sou seu assistente financeiro e operacional. Posso ajudar a registrar "
    'despesas ("Gastei 50 no almoço"), criar receitas ("Recebi 500 de consultoria") '
    "ou navegar pelo sistema."
)
MISSING_KEY_REPLY = (
    "Erro: Chave de API não configurada. Adicione sua chave nas configurações."
)
ERROR_REPLY = "Desculpe, ocorreu um erro ao processar sua solicitação."


def build_assistant_instruction(today: datetime) -> str:
    """System instruction for the CRM assistant, dated ``today``."""
    return f"""Você é um assistente de CRM inteligente.
Data de hoje: {today.strftime("%d/%m/%Y")}.

SUAS FERRAMENTAS:
1. 'navigate': Use para ir para telas (dashboard, contacts, expenses, opportunities).
2. 'create_expense': Use quando o usuário disser "gastei", "paguei", "comprei", "despesa de X".
3. 'create_income': Use quando o usuário disser "recebi", "ganhei", "vendi", "faturei", "entrada de X".

REGRAS:
- Se o usuário falar valores monetários, tente extrair o número e a descrição.
- Responda de forma curta e prestativa.
- Se usar uma ferramenta, sua resposta final deve confirmar o que foi feito com base no retorno da ferramenta.
"""


class AssistantChat:
    """One assistant conversation bound to a signed-in session."""

    def __init__(
        self,
        session: Session,
        client: GeminiClient,
        navigator: Optional[Callable[[str], None]] = None,
        speaker: Optional[Callable[[str], None]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            session: Signed-in session; its plan must include the assistant
            client: Gemini client to talk through
            navigator: Receives page names from the navigate tool
            speaker: Reads replies aloud when the plan has voice commands

        Raises:
            PermissionDeniedError: If the plan lacks the assistant feature
        """
        session.require(Feature.AI_ASSISTANT)
        self.session = session
        self.client = client
        self.speaker = speaker
        self.clock = clock
        self.router = ToolRouter(
            session.store,
            session.user,
            navigator=navigator,
            allowed_tools=[tool["name"] for tool in ASSISTANT_TOOLS],
        )
        self.history: list[ChatTurn] = []

    def send(self, text: str) -> str:
        """Send a user message and return the reply shown to the user."""
        text = (text or "").strip()
        if not text:
            raise ValidationError("message is empty")

        if not self.client.is_available:
            reply = MISSING_KEY_REPLY
        else:
            try:
                reply = self.client.chat(
                    list(self.history),
                    text,
                    system_instruction=build_assistant_instruction(self.clock()),
                    tools=ASSISTANT_TOOLS,
                    on_tool_call=self.router.dispatch,
                )
            except FluxoError as e:
                logger.error(f"Assistant request failed: {e}")
                reply = ERROR_REPLY

        self.history.append(ChatTurn(role="user", text=text))
        self.history.append(ChatTurn(role="model", text=reply))

        if self.speaker is not None and self.session.can(Feature.VOICE_COMMANDS):
            self.speaker(reply)
        return reply
