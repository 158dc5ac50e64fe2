"""
devlink interactive client.

A line-oriented console that drives the client session the way the phone
UI does: pairing, connect/disconnect, background/foreground transitions,
repository selection and prompts. Observable state is printed as it changes.

Commands:
    /pair <payload>        store pairing details (QR JSON or bare id) and connect
    /server <url> <id>     enter server url and pairing id manually
    /connect, /disconnect
    /repos                 request the repository list
    /select <n|path>       select a repository by list number or path
    /commands              show the merged slash command list
    /bg, /fg               simulate app background / foreground
    /status, /log
    /quit
Anything else is sent as a prompt to the selected repository.
"""

import argparse
import asyncio
from typing import Optional

from devlink.config import ClientConfig, Config, setup_logging
from devlink.database import close_database
from devlink.managers import ChatMessage
from devlink.session import ConnectionManager, SessionEvent, SessionState


CONSOLE_COMMANDS = (
    "/pair", "/server", "/connect", "/disconnect", "/repos", "/select",
    "/commands", "/bg", "/fg", "/status", "/log", "/help", "/quit",
)


class ConsoleClient:
    """Maps console lines onto ``ConnectionManager`` calls."""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self._printed_chat = 0
        self._last_status: Optional[str] = None

        manager.state.subscribe(self._on_state)
        manager.state.on(SessionEvent.SERVER_RESTART_DETECTED, self._on_server_restart)

    async def handle_line(self, line: str) -> bool:
        """
        Run one console line.

        Returns:
            False when the console should exit
        """
        line = line.strip()
        if not line:
            return True

        command, _, arg = line.partition(" ")
        arg = arg.strip()

        if command not in CONSOLE_COMMANDS:
            await self.manager.send_prompt(line)
        elif command == "/quit":
            return False
        elif command == "/help":
            print(__doc__)
        elif command == "/pair":
            if not await self.manager.pair(arg):
                print("Pairing payload has no pairing id")
        elif command == "/server":
            url, _, auth_id = arg.partition(" ")
            await self.manager.update_credentials(url, auth_id.strip(), connect=True)
        elif command == "/connect":
            await self.manager.connect()
        elif command == "/disconnect":
            await self.manager.disconnect()
        elif command == "/repos":
            await self.manager.request_repositories()
        elif command == "/select":
            await self._select(arg)
        elif command == "/commands":
            for cmd in self.manager.state.commands.commands:
                print(f"  {cmd.name:16} {cmd.description}")
        elif command == "/bg":
            await self.manager.enter_background()
        elif command == "/fg":
            await self.manager.enter_foreground()
        elif command == "/status":
            self._print_status()
        elif command == "/log":
            for entry in self.manager.state.events.entries[-20:]:
                print(f"  [{entry.category.value}] {entry.level.value}: {entry.message}")

        self.flush_chat()
        return True

    async def _select(self, arg: str) -> None:
        repos = self.manager.state.repositories.repositories
        if arg.isdigit() and 1 <= int(arg) <= len(repos):
            await self.manager.select_repository(repos[int(arg) - 1])
        elif arg:
            await self.manager.select_repository(arg)
        else:
            for i, repo in enumerate(repos, start=1):
                print(f"  {i}. {repo.name}  ({repo.path})")

    def _print_status(self) -> None:
        state = self.manager.state
        selected = state.repositories.selected
        print(f"  Status:     {state.status_text}")
        print(f"  Server:     {state.credentials.server_url or '-'}")
        print(f"  Client id:  {state.credentials.client_id or '-'}")
        print(f"  Repository: {selected.name if selected else '-'}")

    def flush_chat(self) -> None:
        messages = self.manager.state.chat.messages
        for message in messages[self._printed_chat:]:
            print(self._format_chat(message))
        self._printed_chat = len(messages)

    @staticmethod
    def _format_chat(message: ChatMessage) -> str:
        who = "server" if message.is_from_server else "you"
        return f"[{message.timestamp:%H:%M:%S}] {who}: {message.text}"

    async def _on_state(self, state: SessionState) -> None:
        if state.status_text != self._last_status:
            self._last_status = state.status_text
            print(f"● {state.status_text}")

    async def _on_server_restart(self) -> None:
        print("Server was restarted. Scan the pairing code again (/pair <payload>).")


async def run_console(config: ClientConfig) -> None:
    manager = ConnectionManager(config)
    console = ConsoleClient(manager)
    await manager.start()

    loop = asyncio.get_running_loop()
    try:
        while True:
            console.flush_chat()
            try:
                line = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                break
            if not await console.handle_line(line):
                break
    finally:
        await manager.app_will_terminate()
        await manager.stop()
        await close_database()


def main(argv: Optional[list[str]] = None) -> None:
    config = Config.from_env()

    parser = argparse.ArgumentParser(prog="devlink-client", description="devlink interactive client")
    parser.add_argument("--database", default=config.client.database_path,
                        help="SQLite file holding the stored credentials")
    parser.add_argument("--log-level", default=config.log_level)
    args = parser.parse_args(argv)

    config.client.database_path = args.database
    setup_logging(args.log_level)

    try:
        asyncio.run(run_console(config.client))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
