#!/usr/bin/env python3
"""Interactive chat CLI for trying the Nova copilot against a running service."""

import json
import sys

import httpx
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt


class ChatCLI:
    """Interactive chat interface that renders the copilot's event stream."""

    def __init__(self, base_url: str = "http://localhost:8000"):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.ticket_id: str | None = None
        self.history: list[dict] = []
        self.console = Console()
        self.client = httpx.Client(timeout=180.0)

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Nova Copilot - Interactive Chat[/bold blue]\n"
                "Ask Nova to look up customers, work tickets or search the knowledge base.\n"
                "Commands: /help, /ticket <id>, /clear, /quit",
                border_style="blue",
            )
        )

        capabilities = self._fetch_capabilities()
        if capabilities is None:
            self.console.print("[red]Cannot connect to the service. Make sure it's running.[/red]")
            return

        self.console.print(f"[green]Connected. Tools: {', '.join(capabilities)}[/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")
                command = user_input.strip().lower()

                if command in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif command == "/help":
                    self._show_help()
                    continue
                elif command == "/clear":
                    self.history = []
                    self.ticket_id = None
                    self.console.print("[yellow]Conversation cleared[/yellow]")
                    continue
                elif command.startswith("/ticket"):
                    parts = user_input.split(maxsplit=1)
                    self.ticket_id = parts[1].strip() if len(parts) > 1 else None
                    self.console.print(f"[yellow]Current ticket: {self.ticket_id or 'none'}[/yellow]")
                    continue
                elif command == "":
                    continue

                reply = self._stream_message(user_input)
                if reply is not None:
                    self.history.append({"role": "user", "content": user_input})
                    if reply:
                        self.history.append({"role": "assistant", "content": reply})

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            self.client.close()

    def _fetch_capabilities(self) -> list[str] | None:
        try:
            response = self.client.get(f"{self.base_url}/copilot")
            if response.status_code != 200:
                return None
            return response.json().get("capabilities", [])
        except httpx.HTTPError:
            return None

    def _stream_message(self, message: str) -> str | None:
        """Send a message and render events as they arrive; returns the assistant text."""
        payload = {"message": message, "conversation_history": self.history}
        if self.ticket_id:
            payload["ticket_id"] = self.ticket_id

        text_parts: list[str] = []
        try:
            with self.client.stream(
                "POST", f"{self.base_url}/copilot", json=payload, headers={"X-Operator-Name": "CLI"}
            ) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
                    return None

                for line in response.iter_lines():
                    if not line.startswith("data: "):
                        continue
                    event = json.loads(line[len("data: ") :])
                    self._render_event(event, text_parts)

        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return None

        reply = "".join(text_parts)
        if reply:
            self.console.print(
                Panel(
                    Markdown(reply),
                    title="[bold green]Nova[/bold green]",
                    border_style="green",
                    padding=(1, 2),
                )
            )
        return reply

    def _render_event(self, event: dict, text_parts: list[str]) -> None:
        event_type = event.get("type")
        if event_type == "text":
            text_parts.append(event["content"])
        elif event_type == "tool_start":
            tool = event["tool"]
            self.console.print(f"[dim]-> {tool['name']} {json.dumps(tool['input'])}[/dim]")
        elif event_type == "tool_result":
            tool = event["tool"]
            result = tool["result"]
            if result.get("success"):
                self.console.print(f"[dim green]<- {tool['name']} ok[/dim green]")
            else:
                self.console.print(f"[dim red]<- {tool['name']} failed: {result.get('error')}[/dim red]")
        elif event_type == "error":
            self.console.print(f"[red]Error: {event['error']}[/red]")

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /ticket <id> - Set the ticket you are working (e.g., /ticket TKT_001)
• /ticket - Clear the current ticket
• /clear - Clear conversation history and ticket
• /quit or /exit - Exit the chat

[bold]Try:[/bold]
1. "Who is the customer on this ticket?"
2. "Summarize the ticket and check how the customer feels"
3. "Draft an apologetic reply using the knowledge base"
4. "Escalate this to billing, they were charged twice"

[bold]Demo data:[/bold]
• Tickets TKT_001 to TKT_003, customers CUS_001 and CUS_002
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

    chat = ChatCLI(base_url)
    chat.start()


if __name__ == "__main__":
    main()
