"""
Terminal front end: a small REPL over the conversation engine.

Plain text is sent to the model; lines starting with "/" are commands.
"""
import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional

from localchat.core.config import settings
from localchat.core.i18n import SUPPORTED_LANGUAGES, get_translations
from localchat.schemas.chat import Role, SessionRecord
from localchat.services.conversation import ConversationEngine
from localchat.services.llm_client import LLMClient
from localchat.services.persistence import HttpPersistenceGateway, get_persistence_gateway
from localchat.services.session_store import SessionStore
from localchat.services.user_settings import UserSettingsStore

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /help            Show this help
  /new             Start a new chat
  /list            List chats, most recent first
  /open N          Open chat number N from /list
  /delete [N]      Delete chat N (default: the open chat)
  /search TEXT     List chats whose title contains TEXT
  /retry           Retry the last failed reply
  /regenerate      Regenerate the last reply
  /system TEXT     Set the system instruction (empty to clear)
  /lang en|zh      Switch the interface language
  /quit            Exit"""


class StreamPrinter:
    """Prints only the newly added suffix of each cumulative chunk."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self._printed: Dict[str, str] = {}

    def __call__(self, message_id: str, text: str) -> None:
        shown = self._printed.get(message_id, "")
        if text.startswith(shown):
            self.out.write(text[len(shown):])
        else:
            # Replaced rather than extended (error text)
            self.out.write("\n" + text)
        self.out.flush()
        self._printed[message_id] = text

    def reset(self, message_id: str) -> None:
        self._printed.pop(message_id, None)


class ChatConsole:
    def __init__(
        self,
        engine: ConversationEngine,
        settings_store: UserSettingsStore,
        printer: StreamPrinter,
        out=None,
    ):
        self.engine = engine
        self.settings_store = settings_store
        self.printer = printer
        self.out = out or sys.stdout
        # Numbering shown by the last /list or /search
        self._listed: List[SessionRecord] = []

    @property
    def strings(self) -> Dict[str, str]:
        return get_translations(self.engine.config.language)

    def echo(self, text: str = "") -> None:
        print(text, file=self.out)

    # =========================================================================
    # Rendering
    # =========================================================================

    def show_history(self) -> None:
        session = self.engine.active_session
        if session is None:
            return
        self.echo(f"== {session.title} ==")
        messages = self.engine.messages
        if not messages:
            self.echo(self.strings["welcome_title"])
            return
        for msg in messages:
            self.show_message(msg.role, msg.content, msg.is_error)

    def show_message(self, role: Role, content: str, is_error: bool = False) -> None:
        speaker = self.strings["you"] if role == Role.USER else self.strings["model"]
        self.echo(f"{speaker}: {content}")
        if is_error:
            self.echo(self.strings["retry_hint"])

    def show_sessions(self, sessions: List[SessionRecord]) -> None:
        self._listed = sessions
        if not sessions:
            self.echo(self.strings["no_chats"])
            return
        active_id = self.engine.store.active_id
        for number, session in enumerate(sessions, start=1):
            marker = "*" if session.id == active_id else " "
            self.echo(f"{marker}{number:>3}. {session.title} - {session.preview}")

    def _pick(self, arg: str) -> Optional[SessionRecord]:
        try:
            index = int(arg) - 1
        except ValueError:
            self.echo(f"Not a chat number: {arg}")
            return None
        listed = self._listed or self.engine.store.list()
        if not 0 <= index < len(listed):
            self.echo(f"No chat number {arg}; use /list")
            return None
        return listed[index]

    # =========================================================================
    # Input handling
    # =========================================================================

    async def send(self, text: str) -> None:
        self.out.write(f"{self.strings['model']}: ")
        self.out.flush()
        await self.engine.send(text)
        self.echo()
        self._hint_if_failed()

    async def regenerate(self, only_failed: bool) -> None:
        target = next(
            (m for m in reversed(self.engine.messages) if m.role == Role.MODEL), None
        )
        if target is None or (only_failed and not target.is_error):
            self.echo("Nothing to retry." if only_failed else "Nothing to regenerate.")
            return
        self.printer.reset(target.id)
        self.out.write(f"{self.strings['model']}: ")
        self.out.flush()
        await self.engine.regenerate(target.id)
        self.echo()
        self._hint_if_failed()

    def _hint_if_failed(self) -> None:
        messages = self.engine.messages
        if messages and messages[-1].is_error:
            self.echo(self.strings["retry_hint"])

    async def handle_command(self, line: str) -> bool:
        """Run a slash command. Returns False when the console should exit."""
        name, _, arg = line[1:].partition(" ")
        name = name.lower()
        arg = arg.strip()

        if name in ("quit", "exit"):
            return False
        if name == "help":
            self.echo(HELP_TEXT)
        elif name == "new":
            await self.engine.new_session()
            self.show_history()
        elif name == "list":
            self.show_sessions(self.engine.store.list())
        elif name == "search":
            self.show_sessions(self.engine.search_sessions(arg))
        elif name == "open":
            session = self._pick(arg)
            if session is not None and await self.engine.select_session(session.id):
                self.show_history()
        elif name == "delete":
            session = self._pick(arg) if arg else self.engine.active_session
            if session is not None:
                if not await self.engine.delete_session(session.id):
                    return True
                self._listed = []
                self.echo(f"Deleted: {session.title}")
                self.show_history()
        elif name == "retry":
            await self.regenerate(only_failed=True)
        elif name == "regenerate":
            await self.regenerate(only_failed=False)
        elif name == "system":
            self.update_settings(system_instruction=arg)
            self.echo("System instruction cleared." if not arg else "System instruction set.")
        elif name == "lang":
            if arg not in SUPPORTED_LANGUAGES:
                self.echo(f"Supported languages: {', '.join(SUPPORTED_LANGUAGES)}")
            else:
                self.update_settings(language=arg)
                self.echo(f"Language: {arg}")
        else:
            self.echo(f"Unknown command: /{name}. Type /help for available commands.")
        return True

    def update_settings(self, **changes) -> None:
        new_settings = self.engine.update_config(**changes)
        try:
            self.settings_store.save(new_settings)
        except OSError as e:
            logger.warning(f"Could not save settings: {e}")

    async def run(self) -> None:
        await self.engine.start()
        self.echo(f"{settings.PROJECT_NAME} (model: {self.engine.llm_client.model})")
        self.echo("Commands: /help for all commands")
        self.echo(self.strings["disclaimer"])
        self.echo()
        self.show_history()

        while True:
            try:
                line = (await asyncio.to_thread(input, "\n> ")).strip()
            except (EOFError, KeyboardInterrupt):
                self.echo()
                break

            if not line:
                continue
            if line.startswith("/"):
                if not await self.handle_command(line):
                    break
                continue
            await self.send(line)

        await self.engine.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="local-chat", description="Local Chat - terminal client")
    parser.add_argument(
        "--remote",
        nargs="?",
        const=settings.REMOTE_API_BASE,
        default=None,
        help="Store chats through a running backend (default: %(const)s)",
    )
    parser.add_argument("--lang", choices=SUPPORTED_LANGUAGES, help="Interface language")
    parser.add_argument("--model", default=None, help="Model name (default: LLM_MODEL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")
    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_console(args: argparse.Namespace) -> ChatConsole:
    settings_store = UserSettingsStore()
    user_settings = settings_store.load()
    if args.lang:
        user_settings = user_settings.with_changes(language=args.lang)

    if args.remote:
        gateway = HttpPersistenceGateway(api_base=args.remote)
    else:
        gateway = get_persistence_gateway()

    printer = StreamPrinter()
    engine = ConversationEngine(
        store=SessionStore(gateway, language=user_settings.language),
        gateway=gateway,
        llm_client=LLMClient(model=args.model),
        config=user_settings,
        listener=printer,
    )
    return ChatConsole(engine, settings_store, printer)


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    console = build_console(args)
    try:
        asyncio.run(console.run())
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
