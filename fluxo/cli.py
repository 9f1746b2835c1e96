"""
CLI commands for Fluxo.
"""

import argparse
import base64
import getpass
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from fluxo.access import Feature
from fluxo.assistant.bot import BotSimulator
from fluxo.assistant.chat import GREETING, AssistantChat
from fluxo.assistant.gemini import client_for_user
from fluxo.config import AppConfig, load_config
from fluxo.database.connection import Database
from fluxo.database.models import PlanType, UserRole
from fluxo.errors import FluxoError
from fluxo.session import AuthService, Session
from fluxo.store import RecordStore


def open_store(config: AppConfig) -> RecordStore:
    """Open the database, create the schema and seed the plans."""
    if config.database.path != ":memory:":
        Path(config.database.path).parent.mkdir(parents=True, exist_ok=True)
    db = Database(config.database.path)
    db.initialize()
    store = RecordStore(db, notification_limit=config.notifications.retention_limit)
    store.seed_defaults()
    return store


def add_user(
    auth: AuthService,
    name: str,
    email: str,
    password: str,
    plan: str = "BASIC",
    role: str = "USER",
):
    """Register a user account."""
    return auth.sign_up(name, email, password, plan=PlanType(plan), role=UserRole(role))


def set_plan_limits(
    store: RecordStore,
    plan: str,
    price: Optional[float] = None,
    max_contacts: Optional[int] = None,
    max_opportunities: Optional[int] = None,
):
    """Change the price or limits of one plan."""
    plans = store.get_plans()
    config = plans[PlanType(plan)]
    if price is not None:
        config.price = price
    if max_contacts is not None:
        config.max_contacts = max_contacts
    if max_opportunities is not None:
        config.max_opportunities = max_opportunities
    store.save_plan_configs({config.type: config})
    return config


def sign_in(auth: AuthService, email: str, password: Optional[str]) -> Session:
    """Open a session without starting reminders."""
    if password is None:
        password = getpass.getpass("Senha: ")
    return auth.sign_in(email, password, start_reminders=False)


def run_assistant(session: Session, config: AppConfig) -> None:
    """Interactive assistant chat on stdin."""
    client = client_for_user(config.assistant, session.settings())
    chat = AssistantChat(session, client, navigator=lambda page: print(f"-> /{page}"))
    print(GREETING)
    while True:
        try:
            text = input("> ").strip()
        except EOFError:
            break
        if text in ("sair", "exit", "quit"):
            break
        if not text:
            continue
        print(chat.send(text))


def run_bot(session: Session, config: AppConfig) -> None:
    """Pair the simulated WhatsApp bot and chat with it on stdin."""
    client = client_for_user(config.assistant, session.settings())
    bot = BotSimulator(session, client)
    if not bot.config.is_connected:
        print(f"QR Code: {bot.begin_pairing()}")
        print(bot.complete_pairing())
    while True:
        try:
            text = input("cliente> ").strip()
        except EOFError:
            break
        if text in ("sair", "exit", "quit"):
            break
        if text:
            print(bot.send(text))


def generate_image(
    session: Session,
    config: AppConfig,
    prompt: str,
    output: str,
    aspect_ratio: str = "1:1",
    image_size: str = "1K",
) -> bool:
    """
    Generate an image and write it to ``output``.

    Returns:
        True when the fallback model was used
    """
    session.require(Feature.EXPERT_TOOLS)
    client = client_for_user(config.assistant, session.settings())
    result = client.generate_image(prompt, aspect_ratio=aspect_ratio, image_size=image_size)
    encoded = result.data_url.split(",", 1)[1]
    Path(output).write_bytes(base64.b64decode(encoded))
    return result.used_fallback


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Fluxo CRM CLI")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # User commands
    user_parser = subparsers.add_parser("user", help="User management")
    user_subparsers = user_parser.add_subparsers(dest="action")

    add_user_parser = user_subparsers.add_parser("add", help="Add user")
    add_user_parser.add_argument("--name", required=True, help="Display name")
    add_user_parser.add_argument("--email", required=True, help="User email")
    add_user_parser.add_argument("--password", help="Password (prompted if omitted)")
    add_user_parser.add_argument("--plan", default="BASIC", choices=[p.value for p in PlanType])
    add_user_parser.add_argument("--role", default="USER", choices=[r.value for r in UserRole])

    user_subparsers.add_parser("list", help="List users")

    delete_user_parser = user_subparsers.add_parser("delete", help="Delete user and all data")
    delete_user_parser.add_argument("user_id", help="User ID")

    set_plan_parser = user_subparsers.add_parser("set-plan", help="Change a user's plan")
    set_plan_parser.add_argument("user_id", help="User ID")
    set_plan_parser.add_argument("plan", choices=[p.value for p in PlanType])

    set_role_parser = user_subparsers.add_parser("set-role", help="Change a user's role")
    set_role_parser.add_argument("user_id", help="User ID")
    set_role_parser.add_argument("role", choices=[r.value for r in UserRole])

    for action, help_text in (("enable", "Enable account"), ("disable", "Disable account")):
        toggle_parser = user_subparsers.add_parser(action, help=help_text)
        toggle_parser.add_argument("user_id", help="User ID")

    # Plan commands
    plans_parser = subparsers.add_parser("plans", help="Plan management")
    plans_subparsers = plans_parser.add_subparsers(dest="action")
    plans_subparsers.add_parser("list", help="List plans")
    plan_set_parser = plans_subparsers.add_parser("set", help="Change plan price or limits")
    plan_set_parser.add_argument("plan", choices=[p.value for p in PlanType])
    plan_set_parser.add_argument("--price", type=float)
    plan_set_parser.add_argument("--max-contacts", type=int, help="-1 for unlimited")
    plan_set_parser.add_argument("--max-opportunities", type=int, help="-1 for unlimited")

    # Notification and dashboard commands
    notif_parser = subparsers.add_parser("notifications", help="Show a user's notifications")
    notif_parser.add_argument("--user", required=True, help="User ID")
    notif_parser.add_argument("--mark-read", action="store_true", help="Mark all as read")

    summary_parser = subparsers.add_parser("summary", help="Show a user's dashboard figures")
    summary_parser.add_argument("--user", required=True, help="User ID")

    # Assistant commands
    for name, help_text in (("assistant", "Chat with the assistant"), ("bot", "Test the WhatsApp bot")):
        chat_parser = subparsers.add_parser(name, help=help_text)
        chat_parser.add_argument("--email", required=True)
        chat_parser.add_argument("--password")

    image_parser = subparsers.add_parser("image", help="Generate an image")
    image_parser.add_argument("--email", required=True)
    image_parser.add_argument("--password")
    image_parser.add_argument("--prompt", required=True)
    image_parser.add_argument("--output", default="image.png")
    image_parser.add_argument("--aspect-ratio", default="1:1", choices=["1:1", "3:4", "4:3", "9:16", "16:9"])
    image_parser.add_argument("--size", default="1K", choices=["1K", "2K", "4K"])

    # DB commands
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="action")
    db_subparsers.add_parser("stats", help="Row counts and size")
    db_subparsers.add_parser("migrate", help="Create missing tables")
    export_parser = db_subparsers.add_parser("export", help="Export to JSON")
    export_parser.add_argument("file")
    import_parser = db_subparsers.add_parser("import", help="Import from JSON")
    import_parser.add_argument("file")
    import_parser.add_argument("--mode", default="replace", choices=["replace", "upsert"])
    reset_parser = db_subparsers.add_parser("reset", help="Delete every record")
    reset_parser.add_argument("--yes", action="store_true", help="Confirm reset")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config(args.config) if Path(args.config).exists() else AppConfig()
    if args.db:
        config.database.path = args.db

    store = open_store(config)
    auth = AuthService(store, default_alert_minutes=config.notifications.default_alert_minutes)
    if config.advanced.admin_password:
        auth.ensure_admin(config.advanced.admin_email, config.advanced.admin_password)

    try:
        _dispatch(args, config, store, auth)
    except FluxoError as e:
        print(f"Error: {e}")
        raise SystemExit(1)
    finally:
        store.db.close()


def _dispatch(args, config: AppConfig, store: RecordStore, auth: AuthService) -> None:
    if args.command == "user":
        if args.action == "add":
            password = args.password or getpass.getpass("Senha: ")
            user = add_user(auth, args.name, args.email, password, args.plan, args.role)
            print(f"Created user with ID: {user.id}")
        elif args.action == "list":
            for user in store.users.list_all():
                status = "active" if user.is_active else "disabled"
                print(f"ID: {user.id}, Email: {user.email}, Role: {user.role.value}, "
                      f"Plan: {user.plan.value}, {status}")
        elif args.action == "delete":
            store.delete_user(args.user_id)
            print(f"Deleted user {args.user_id}")
        elif args.action in ("set-plan", "set-role", "enable", "disable"):
            user = store.get_user(args.user_id)
            if args.action == "set-plan":
                user.plan = PlanType(args.plan)
            elif args.action == "set-role":
                user.role = UserRole(args.role)
            else:
                user.is_active = args.action == "enable"
            store.save_user(user)
            print(f"Updated user {user.id}")

    elif args.command == "plans":
        if args.action == "list":
            for plan in store.get_plans().values():
                features = [name for name, on in vars(plan.features).items() if on]
                print(f"{plan.type.value}: {plan.name} R$ {plan.price:.2f}, "
                      f"contacts {plan.max_contacts}, opportunities {plan.max_opportunities}, "
                      f"features {features}")
        elif args.action == "set":
            plan = set_plan_limits(
                store, args.plan, args.price, args.max_contacts, args.max_opportunities
            )
            print(f"Updated plan {plan.type.value}")

    elif args.command == "notifications":
        for n in store.list_notifications(args.user):
            marker = " " if n.read else "*"
            print(f"{marker} [{n.timestamp:%d/%m %H:%M}] {n.title}: {n.message}")
        if args.mark_read:
            store.notifications.mark_all_read(args.user)

    elif args.command == "summary":
        summary = store.dashboard_summary(args.user)
        print(f"Won: R$ {summary.won_total:.2f}")
        print(f"Pipeline: R$ {summary.pipeline_total:.2f}")
        print(f"Income: R$ {summary.income_total:.2f}  Expenses: R$ {summary.expense_total:.2f}  "
              f"Balance: R$ {summary.balance:.2f}")
        for status, count in summary.status_counts.items():
            print(f"  {status.label}: {count}")
        for activity in summary.upcoming_activities:
            print(f"  {activity.date:%d/%m %H:%M} {activity.title}")

    elif args.command in ("assistant", "bot"):
        session = sign_in(auth, args.email, args.password)
        try:
            if args.command == "assistant":
                run_assistant(session, config)
            else:
                run_bot(session, config)
        finally:
            auth.sign_out(session)

    elif args.command == "image":
        session = sign_in(auth, args.email, args.password)
        try:
            used_fallback = generate_image(
                session, config, args.prompt, args.output, args.aspect_ratio, args.size
            )
        finally:
            auth.sign_out(session)
        suffix = " (fallback model)" if used_fallback else ""
        print(f"Saved image to {args.output}{suffix}")

    elif args.command == "db":
        if args.action == "stats":
            for key, value in store.database_stats().items():
                print(f"{key}: {value}")
        elif args.action == "migrate":
            store.db.initialize()
            print("Migrations applied")
        elif args.action == "export":
            Path(args.file).write_text(store.export_database(), encoding="utf-8")
            print(f"Exported to {args.file}")
        elif args.action == "import":
            counts = store.import_database(
                Path(args.file).read_text(encoding="utf-8"), mode=args.mode
            )
            print(f"Imported: {counts}")
        elif args.action == "reset":
            if not args.yes:
                print("Refusing to reset without --yes")
                return
            store.reset_database()
            print("Database reset")


if __name__ == "__main__":
    main()
