"""
Main application entry point - interactive terminal playground with graceful shutdown handling.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
import mimetypes
import signal
import sys
import uuid
from collections.abc import Awaitable, Coroutine
from pathlib import Path
from typing import Any

from playground.chat import ConversationStore, Direction, StoreEvent, VersionHistory
from playground.chat.logging_utils import set_module_features
from playground.clients import GenerationQueue, ImageClient, LLMClient
from playground.config import Configuration
from playground.errors import PlaygroundError
from playground.history import SessionRepository, create_repository

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /new                      start a new chat
  /sessions                 list chats (most recent first)
  /select N                 switch to chat N from /sessions
  /delete N                 delete chat N from /sessions
  /model NAME               set the chat model
  /models                   list chat and image models
  /attach PATH              attach an image to the next message
  /edit N TEXT              edit user message N and regenerate
  /back, /forward           move through edit versions
  /image PROMPT             text-to-image
  /img2img PATH[,PATH] PROMPT
                            image-to-image with reference images
  /improve [image] PROMPT   rewrite a prompt with the improver model
  Ctrl-C                    abort the streaming reply
  /quit                     exit
Anything else is sent as a chat message."""


def _configure_advanced_logging(logging_config: dict[str, Any]) -> None:
    """
    Logging configuration with hierarchical loggers and feature control.

    Levels are set on the package loggers so child modules inherit them;
    feature flags are stored for runtime checks in ``logging_utils``.
    """
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    # Set global level
    global_level = logging_config.get("level", "WARNING")
    logging.getLogger().setLevel(level_map.get(global_level, logging.WARNING))

    # Module-to-logger mapping
    module_logger_map: dict[str, dict[str, Any]] = {
        "chat": {"loggers": ["playground.chat"], "default_level": "INFO"},
        "clients": {"loggers": ["playground.clients", "httpx"], "default_level": "INFO"},
        "history": {"loggers": ["playground.history"], "default_level": "WARNING"},
    }

    for module_name, module_config in logging_config.get("modules", {}).items():
        if not isinstance(module_config, dict):
            continue

        known = module_logger_map.get(module_name, {})
        module_level = module_config.get("level", known.get("default_level", global_level))
        level_value = level_map.get(module_level, logging.WARNING)

        for logger_name in known.get("loggers", []):
            logging.getLogger(logger_name).setLevel(level_value)

        set_module_features(module_name, module_config.get("enable_features", {}))


def _on_logging_config_change(new_config: dict[str, Any]) -> None:
    """Reconfigure logging whenever the override configuration file changes."""
    try:
        logging_config = new_config.get("logging", {})
        if logging_config:
            _configure_advanced_logging(logging_config)
            logger.info("Logging configuration updated in real-time")
    except Exception as e:
        logger.error(f"Failed to update logging configuration: {e}")


def _image_data_url(path: str) -> str:
    mime, _ = mimetypes.guess_type(path)
    data = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return f"data:{mime or 'image/png'};base64,{data}"


def _save_image(data: str, stem: str) -> Path:
    if data.startswith("data:"):
        data = data.split(",", 1)[1]
    path = Path(f"{stem}.png")
    path.write_bytes(base64.b64decode(data))
    return path


class TerminalPlayground:
    """Line-oriented front end over ConversationStore and GenerationQueue."""

    def __init__(
        self,
        store: ConversationStore,
        llm_client: LLMClient,
        queue: GenerationQueue,
    ) -> None:
        self.store = store
        self.llm_client = llm_client
        self.queue = queue
        self.attachments: list[str] = []
        self._printed = 0
        self._streaming = False
        self._listing: list[str] = []
        self._background: set[asyncio.Task[Any]] = set()
        store.subscribe(self._on_store_event)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _on_store_event(self, event: StoreEvent) -> None:
        if event.kind == "attachments_consumed":
            self.attachments.clear()
        elif event.kind == "messages" and self._streaming and event.messages[-1:]:
            if event.messages[-1].role != "assistant":
                return
            # Print only what was appended since the last update
            text = event.messages[-1].text
            if len(text) < self._printed:
                self._printed = 0
            print(text[self._printed :], end="", flush=True)
            self._printed = len(text)

    def _show_transcript(self) -> None:
        for index, message in enumerate(self.store.messages):
            images = f" [{len(message.images)} image(s)]" if message.images else ""
            print(f"[{index}] {message.role}:{images} {message.text}")
        versions = ""
        if self.store.can_go_back:
            versions += " /back"
        if self.store.can_go_forward:
            versions += " /forward"
        if versions:
            print(f"(versions:{versions})")

    async def _stream(self, operation: Awaitable[Any]) -> None:
        self._printed = 0
        self._streaming = True
        try:
            await operation
        finally:
            self._streaming = False
            print()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def handle(self, line: str) -> bool:
        """Handle one input line. Returns False when the user quits."""
        line = line.strip()
        if not line:
            return True
        if not line.startswith("/"):
            images, self.attachments = self.attachments, []
            await self._stream(self.store.send(line, images))
            return True

        command, _, rest = line.partition(" ")
        rest = rest.strip()

        if command == "/quit":
            return False
        if command == "/help":
            print(HELP_TEXT)
        elif command == "/new":
            session = await self.store.new_session()
            print(f"Started {session.name}")
        elif command == "/sessions":
            sessions = await self.store.list_sessions()
            self._listing = [s.id for s in sessions]
            active = self.store.session.id if self.store.session else None
            for number, session in enumerate(sessions, 1):
                marker = "*" if session.id == active else " "
                print(f"{marker}{number}. {session.name} ({len(session.messages)} messages)")
        elif command in ("/select", "/delete"):
            session_id = self._listed_session(rest)
            if command == "/select":
                if await self.store.select_session(session_id):
                    self._show_transcript()
            elif await self.store.delete_session(session_id):
                print("Deleted")
        elif command == "/model":
            self.store.model = rest
            print(f"Model: {rest}")
        elif command == "/models":
            chat_models, image_models = await asyncio.gather(
                self.llm_client.get_chat_models(), self.llm_client.get_image_models()
            )
            for title, models in (("Chat models", chat_models), ("Image models", image_models)):
                print(f"{title}:")
                for model in models:
                    print(f"  {model.get('id')}")
        elif command == "/attach":
            self.attachments.append(_image_data_url(rest))
            print(f"{len(self.attachments)} attachment(s) pending")
        elif command == "/edit":
            index, _, text = rest.partition(" ")
            await self._stream(self.store.edit(int(index), text))
        elif command in ("/back", "/forward"):
            direction = Direction.BACK if command == "/back" else Direction.FORWARD
            if await self.store.navigate(direction):
                self._show_transcript()
            else:
                print("No more versions in that direction")
        elif command == "/image":
            self._spawn(self._generate(rest, "txt2img", []))
        elif command == "/img2img":
            paths, _, prompt = rest.partition(" ")
            images = [_image_data_url(p) for p in paths.split(",") if p]
            self._spawn(self._generate(prompt, "img2img", images))
        elif command == "/improve":
            kind = "chat"
            if rest.startswith("image "):
                kind, rest = "image", rest[len("image ") :]
            print(await self.llm_client.improve_prompt(rest, kind))
        else:
            print(f"Unknown command {command}; /help lists commands")
        return True

    def _listed_session(self, number: str) -> str:
        if not self._listing:
            raise PlaygroundError("Run /sessions first")
        try:
            return self._listing[int(number) - 1]
        except (ValueError, IndexError) as e:
            raise PlaygroundError(f"No session numbered {number!r}") from e

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _generate(self, prompt: str, mode: Any, images: list[str]) -> None:
        try:
            result = await self.queue.submit(prompt, mode=mode, reference_images=images)
        except PlaygroundError as e:
            print(f"\nImage error: {e}")
            return
        if result.first is None:
            print("\nNo image was generated")
            return
        path = _save_image(result.first, f"image_{uuid.uuid4().hex[:8]}")
        print(f"\nImage saved to {path}")

    async def cancel_background(self) -> None:
        for task in list(self._background):
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


async def _stdin_lines() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


async def _repl(playground: TerminalPlayground) -> None:
    reader = await _stdin_lines()
    print("Proxy playground. /help lists commands.")
    while True:
        print("> ", end="", flush=True)
        raw = await reader.readline()
        if not raw:
            break
        try:
            if not await playground.handle(raw.decode("utf-8", errors="replace")):
                break
        except PlaygroundError as e:
            print(f"Error: {e}")
        except (ValueError, OSError) as e:
            print(f"Invalid input: {e}")


async def main() -> None:
    """Main entry point - terminal playground with graceful shutdown handling."""
    config = Configuration()

    logging_config = config.get_logging_config()
    logging.basicConfig(
        level=logging.WARNING,
        format=logging_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
    )
    _configure_advanced_logging(logging_config)
    config.subscribe_to_changes(_on_logging_config_change)

    repo: SessionRepository = create_repository(config.get_storage_config())
    chat_defaults = config.get_chat_defaults()
    image_client = ImageClient(config)
    queue = GenerationQueue(image_client, config.get_image_config()["max_reference_images"])

    shutdown_event = asyncio.Event()

    async with LLMClient(config) as llm_client:
        store = ConversationStore(
            llm_client,
            repo,
            VersionHistory(config.get_history_config()["max_versions"]),
            default_model=chat_defaults["model"],
            default_params=chat_defaults["params"],
            title_max_length=chat_defaults["title_max_length"],
        )
        playground = TerminalPlayground(store, llm_client, queue)

        def signal_handler() -> None:
            """Ctrl-C stops a streaming reply; otherwise it shuts down."""
            if not store.can_mutate:
                store.abort()
                return
            logger.info("Received shutdown signal, initiating graceful shutdown...")
            shutdown_event.set()

        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, signal_handler)

        try:
            await config.start_watching()
            await store.load()

            repl_task = asyncio.create_task(_repl(playground))
            shutdown_task = asyncio.create_task(shutdown_event.wait())
            done, pending = await asyncio.wait([repl_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED)

            for task in pending:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            exception = repl_task.exception() if repl_task in done else None
            if exception is not None:
                raise exception

        except Exception as e:
            logger.error(f"Application error: {e}")
            raise
        finally:
            store.abort()
            await playground.cancel_background()
            await image_client.close()
            await repo.close()
            await config.stop_watching()
            logger.info("Application shutdown complete")


def cli_main() -> None:
    """Synchronous CLI entrypoint that runs the async main."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
