"""
Tool calls the hosted model may request, and the router that executes them.

Tool calls are parsed into a closed set of frozen variants before anything
touches storage; unknown names are rejected at parse time.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

from fluxo.database.models import Expense, TransactionType, User
from fluxo.errors import FluxoError, UnknownToolError, ValidationError
from fluxo.store import RecordStore, WON_INCOME_CATEGORY, coerce_amount

logger = logging.getLogger(__name__)

NAVIGABLE_PAGES = ("dashboard", "contacts", "opportunities", "expenses", "activities", "admin")

UNKNOWN_TOOL_REPLY = "Ferramenta desconhecida."
NO_USER_REPLY = "Erro: Usuário não identificado."
STORAGE_ERROR_REPLY = "Ocorreu um erro ao processar essa ação no banco de dados."


@dataclass(frozen=True)
class Navigate:
    page: str


@dataclass(frozen=True)
class CreateExpense:
    description: str
    amount: float
    category: str = "Geral"


@dataclass(frozen=True)
class CreateIncome:
    description: str
    amount: float
    category: str = WON_INCOME_CATEGORY


@dataclass(frozen=True)
class CreateLead:
    name: str
    interest: str
    phone: Optional[str] = None


ToolCall = Union[Navigate, CreateExpense, CreateIncome, CreateLead]


# Function declarations sent to the model.
NAVIGATE_DECLARATION = {
    "name": "navigate",
    "description": "Navigate to a specific page in the application",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "page": {
                "type": "STRING",
                "description": (
                    'The page to navigate to. Options: "dashboard", "contacts", '
                    '"opportunities", "expenses", "activities"'
                ),
            },
        },
        "required": ["page"],
    },
}

CREATE_EXPENSE_DECLARATION = {
    "name": "create_expense",
    "description": "Record a new personal expense",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "description": {"type": "STRING", "description": 'What was purchased (e.g., "Lunch")'},
            "amount": {"type": "NUMBER", "description": "The numeric cost amount"},
            "category": {"type": "STRING", "description": "Category (e.g., Food, Transport, Office)"},
        },
        "required": ["description", "amount"],
    },
}

CREATE_INCOME_DECLARATION = {
    "name": "create_income",
    "description": "Record a new income entry such as a sale or a received payment",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "description": {"type": "STRING", "description": 'Where the money came from (e.g., "Consulting")'},
            "amount": {"type": "NUMBER", "description": "The numeric amount received"},
            "category": {"type": "STRING", "description": "Category (e.g., Sales, Services)"},
        },
        "required": ["description", "amount"],
    },
}

CREATE_LEAD_DECLARATION = {
    "name": "create_lead",
    "description": "Register a customer interested in a product as a new lead",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "name": {"type": "STRING", "description": "Customer name"},
            "phone": {"type": "STRING", "description": "Customer phone number, if given"},
            "interest": {"type": "STRING", "description": "Product or service the customer wants"},
        },
        "required": ["name", "interest"],
    },
}

ASSISTANT_TOOLS = [NAVIGATE_DECLARATION, CREATE_EXPENSE_DECLARATION, CREATE_INCOME_DECLARATION]
BOT_TOOLS = [CREATE_LEAD_DECLARATION]


def _text_arg(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    return str(value).strip() if value is not None else ""


def parse_tool_call(name: str, args: Optional[dict[str, Any]]) -> ToolCall:
    """
    Build the tool variant for a model function call.

    Raises:
        UnknownToolError: If the name is not a known tool
        ValidationError: If required arguments are missing or malformed
    """
    args = args or {}

    if name == "navigate":
        return Navigate(page=_text_arg(args, "page").lower())

    elif name == "create_expense":
        return CreateExpense(
            description=_text_arg(args, "description") or "Despesa sem nome",
            amount=coerce_amount(args.get("amount")),
            category=_text_arg(args, "category") or "Geral",
        )

    elif name == "create_income":
        return CreateIncome(
            description=_text_arg(args, "description") or "Receita sem nome",
            amount=coerce_amount(args.get("amount")),
            category=_text_arg(args, "category") or WON_INCOME_CATEGORY,
        )

    elif name == "create_lead":
        lead_name = _text_arg(args, "name")
        interest = _text_arg(args, "interest")
        if not lead_name or not interest:
            raise ValidationError("create_lead requires name and interest")
        return CreateLead(name=lead_name, interest=interest, phone=_text_arg(args, "phone") or None)

    raise UnknownToolError(name)


def _brl(amount: float) -> str:
    return f"R$ {amount:.2f}".replace(".", ",")


class ToolRouter:
    """Executes parsed tool calls against the record store for one user."""

    def __init__(
        self,
        store: RecordStore,
        user: Optional[User],
        navigator: Optional[Callable[[str], None]] = None,
        allowed_tools: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            store: Record store to write through
            user: Signed-in user; None makes every write tool decline
            navigator: Called with the page name on successful navigation
            allowed_tools: Tool names this router answers; defaults to all
        """
        self.store = store
        self.user = user
        self.navigator = navigator
        self.allowed_tools = set(allowed_tools) if allowed_tools is not None else None

    def dispatch(self, name: str, args: Optional[dict[str, Any]] = None) -> str:
        """Run one tool call and return the text the model should see."""
        logger.info(f"Running tool {name} with {args}")
        try:
            if self.allowed_tools is not None and name not in self.allowed_tools:
                raise UnknownToolError(name)
            call = parse_tool_call(name, args)
        except UnknownToolError as e:
            logger.warning(str(e))
            return UNKNOWN_TOOL_REPLY
        except ValidationError as e:
            logger.warning(f"Rejected arguments for tool {name}: {e}")
            return f"Não foi possível executar {name}: {e}"

        try:
            return self.execute(call)
        except FluxoError as e:
            logger.error(f"Tool {name} failed: {e}")
            return STORAGE_ERROR_REPLY

    def execute(self, call: ToolCall) -> str:
        if isinstance(call, Navigate):
            return self._navigate(call)
        elif isinstance(call, CreateExpense):
            return self._record(call, TransactionType.EXPENSE)
        elif isinstance(call, CreateIncome):
            return self._record(call, TransactionType.INCOME)
        elif isinstance(call, CreateLead):
            return self._create_lead(call)
        raise UnknownToolError(type(call).__name__)

    def _navigate(self, call: Navigate) -> str:
        if call.page not in NAVIGABLE_PAGES:
            return f"Página {call.page} não encontrada. Tente: dashboard, contatos, financeiro."
        if self.navigator is not None:
            self.navigator(call.page)
        return f"Navegando para a página {call.page}..."

    def _record(self, call: Union[CreateExpense, CreateIncome], type: TransactionType) -> str:
        if self.user is None:
            return NO_USER_REPLY
        self.store.save_expense(
            Expense(
                user_id=self.user.id,
                description=call.description,
                amount=call.amount,
                category=call.category,
                type=type,
            )
        )
        if type == TransactionType.INCOME:
            return f'💰 Receita registrada: "{call.description}" no valor de {_brl(call.amount)}.'
        return f'✅ Despesa registrada: "{call.description}" no valor de {_brl(call.amount)}.'

    def _create_lead(self, call: CreateLead) -> str:
        if self.user is None:
            return NO_USER_REPLY
        contact, _ = self.store.create_lead(
            self.user.id, call.name, call.interest, phone=call.phone
        )
        return f"✅ Lead registrado: {contact.name}, interessado em {call.interest}."
