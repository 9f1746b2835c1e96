"""
WhatsApp bot configuration and conversation simulator.

Pairing is simulated: a QR payload is produced and confirmation is a
direct call, no real WhatsApp session is opened.
"""

import logging
from datetime import datetime
from typing import Callable

from fluxo.access import Feature
from fluxo.assistant.gemini import ChatTurn, GeminiClient
from fluxo.assistant.tools import BOT_TOOLS, ToolRouter
from fluxo.database.models import BotConfig, BotConnectionStatus
from fluxo.errors import FluxoError, ValidationError
from fluxo.session import Session

logger = logging.getLogger(__name__)

QR_CODE_URL = "https://api.qrserver.com/v1/create-qr-code/?size=220x220&data=FluxoCRM-Auth-{token}"

MISSING_KEY_REPLY = "ERRO: Chave de API não encontrada. Configure em Configurações."
ERROR_REPLY = "Erro na conexão com o servidor de IA. Verifique sua chave em Configurações."

# Fields a user may edit through save_config.
EDITABLE_FIELDS = (
    "whatsapp_number",
    "bot_name",
    "business_description",
    "products_and_prices",
    "operating_hours",
    "communication_tone",
)


def build_system_instruction(config: BotConfig) -> str:
    """Persona prompt for the bot built from the business profile."""
    return f"""Você é {config.bot_name}, um assistente virtual no WhatsApp para o negócio descrito abaixo.

SOBRE O NEGÓCIO:
{config.business_description or 'Não informado.'}

PRODUTOS E PREÇOS:
{config.products_and_prices or 'Consulte o atendimento.'}

HORÁRIO DE ATENDIMENTO:
{config.operating_hours or 'Segunda a Sexta, horário comercial.'}

TOM DE VOZ:
{config.communication_tone or 'Profissional'}

DIRETRIZES:
1. Responda de forma curta e natural, como no WhatsApp.
2. Use emojis moderadamente se o tom permitir.
3. Jamais invente preços ou produtos não listados.
4. Se não souber a resposta, peça gentilmente para o cliente aguardar um humano.
5. Quando um cliente demonstrar interesse em um produto, registre-o com a ferramenta 'create_lead'.
"""


def greeting(config: BotConfig) -> str:
    return f"Olá! Eu sou o {config.bot_name}. Bot conectado e pronto para atender."


class BotSimulator:
    """Expert-plan WhatsApp bot: business profile, pairing and test chat."""

    def __init__(
        self,
        session: Session,
        client: GeminiClient,
        clock: Callable[[], datetime] = datetime.now,
    ):
        session.require(Feature.EXPERT_TOOLS)
        self.session = session
        self.client = client
        self.clock = clock
        self.router = ToolRouter(
            session.store,
            session.user,
            allowed_tools=[tool["name"] for tool in BOT_TOOLS],
        )
        self.history: list[ChatTurn] = []

    @property
    def config(self) -> BotConfig:
        return self.session.store.get_bot_config(self.session.user_id)

    def save_config(self, **changes) -> BotConfig:
        """Update the business profile and rebuild the bot's instructions."""
        config = self.config
        for name, value in changes.items():
            if name not in EDITABLE_FIELDS:
                raise ValidationError(f"Field cannot be edited: {name}")
            setattr(config, name, value)
        config.system_instructions = build_system_instruction(config)
        self.session.store.save_bot_config(config)

        # A connected bot starts over with the new persona.
        self.history = []
        logger.info(f"Bot profile saved for user {config.user_id}")
        return config

    def begin_pairing(self) -> str:
        """Start pairing and return the URL of the QR code to scan."""
        config = self.config
        if config.is_connected:
            raise ValidationError("Bot is already connected")
        config.connection_status = BotConnectionStatus.CONNECTING
        self.session.store.save_bot_config(config)
        return QR_CODE_URL.format(token=int(self.clock().timestamp() * 1000))

    def complete_pairing(self) -> str:
        """
        Confirm the scan and mark the bot connected.

        Returns:
            The bot's greeting message
        """
        config = self.config
        if config.connection_status != BotConnectionStatus.CONNECTING:
            raise ValidationError("Pairing was not started")
        config.is_connected = True
        config.last_connection = self.clock()
        config.connection_status = BotConnectionStatus.CONNECTED
        if not config.system_instructions:
            config.system_instructions = build_system_instruction(config)
        self.session.store.save_bot_config(config)
        self.history = []
        logger.info(f"Bot connected for user {config.user_id}")
        return greeting(config)

    def disconnect(self) -> None:
        config = self.config
        config.is_connected = False
        config.connection_status = BotConnectionStatus.DISCONNECTED
        self.session.store.save_bot_config(config)
        self.history = []
        logger.info(f"Bot disconnected for user {config.user_id}")

    def send(self, message: str) -> str:
        """
        Send a simulated customer message and return the bot's reply.

        Raises:
            ValidationError: If the message is empty or the bot is not connected
        """
        message = (message or "").strip()
        if not message:
            raise ValidationError("message is empty")
        config = self.config
        if not config.is_connected:
            raise ValidationError("Conecte seu WhatsApp primeiro para testar o bot.")

        if not self.client.is_available:
            return MISSING_KEY_REPLY

        try:
            reply = self.client.chat(
                list(self.history),
                message,
                system_instruction=config.system_instructions or build_system_instruction(config),
                tools=BOT_TOOLS,
                on_tool_call=self.router.dispatch,
                model=self.client.config.bot_model,
            )
        except FluxoError as e:
            logger.error(f"Bot request failed: {e}")
            return ERROR_REPLY

        self.history.append(ChatTurn(role="user", text=message))
        self.history.append(ChatTurn(role="model", text=reply))
        return reply
