"""
campus_companion/cli.py

Interactive terminal chat against a running Campus Companion server.

Answers stream into a live panel; the panel is redrawn with the final text and
the routing metadata once the reply completes.

Environment:
  CAMPUS_COMPANION_URL    server root (default ``http://localhost:8300``)
  CAMPUS_COMPANION_TOKEN  optional bearer credential
"""

from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt

from campus_companion.client import ChatReply, CompanionClient

logger = logging.getLogger("campus-companion.cli")

console = Console()

_EXIT_WORDS = {"exit", "quit", "q"}


def _subtitle(reply: ChatReply) -> str:
    routing = reply.routing or {}
    agent = routing.get("selected_agent", "unknown")
    confidence = routing.get("confidence")
    score = f" ({confidence:.2f})" if isinstance(confidence, (int, float)) else ""
    return f"[dim]{agent}{score} · {reply.processing_type}[/dim]"


async def _chat_loop(client: CompanionClient) -> None:
    history: list[dict[str, str]] = []
    while True:
        user_input = Prompt.ask("[bold green]You[/bold green]").strip()
        if user_input.lower() in _EXIT_WORDS:
            console.print("[dim]Goodbye.[/dim]")
            break
        if user_input == "/clear":
            history.clear()
            console.print("[dim]Conversation cleared.[/dim]")
            continue
        if not user_input:
            continue

        with Live(
            Panel("[dim]Thinking...[/dim]", title="Campus Companion", border_style="cyan"),
            console=console,
            refresh_per_second=12,
        ) as live:

            def _on_partial(text: str) -> None:
                live.update(Panel(Markdown(text), title="Campus Companion", border_style="cyan"))

            reply = await client.ask(user_input, history=history, on_partial=_on_partial)
            live.update(
                Panel(
                    Markdown(reply.text),
                    title="Campus Companion",
                    subtitle=_subtitle(reply),
                    border_style="green",
                )
            )

        history.append({"role": "user", "content": user_input})
        history.append({"role": "assistant", "content": reply.text})


def run() -> None:
    """Interactive REPL entry point (used by the ``campus-companion`` script)."""
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    base_url = os.getenv("CAMPUS_COMPANION_URL", "http://localhost:8300")
    token = os.getenv("CAMPUS_COMPANION_TOKEN") or None

    console.print(
        Panel(
            "[bold cyan]Campus Companion[/bold cyan]\n"
            f"[dim]Connected to {base_url}. Type '/clear' to reset, 'exit' to quit.[/dim]",
            border_style="cyan",
        )
    )

    async def _main() -> None:
        async with CompanionClient(base_url, token=token) as client:
            await _chat_loop(client)

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        console.print("\n[dim]Goodbye.[/dim]")


if __name__ == "__main__":
    run()
