from __future__ import annotations
import asyncio
from pathlib import Path
from importlib.metadata import version as pkg_version, PackageNotFoundError
from typing import Any, Dict, Optional
import typer
import yaml
from rich.console import Console

from .bootstrap import build_app, build_client
from .config_loader import load_config, redacted, resolve_model_key
from .core.errors import ConfigurationError
from .core.orchestrator import ConversationOrchestrator
from .ui.console_view import ConsoleView

app = typer.Typer(add_completion=False)

WELCOME_TITLE = "Welcome to Ask AI"
WELCOME_SUBTITLE = "Type your question below and press Enter"
HELP_TEXT = "Commands: /help, /id, /model [name], /exit, /quit"


def _version() -> str:
    try:
        return pkg_version("ask-ai")
    except PackageNotFoundError:
        return "unknown"


def _model_key_for(cfg: Dict[str, Any], model_name: Optional[str]) -> Optional[str]:
    # history stores the provider's model name, not the config key
    for key, entry in (cfg.get("models") or {}).items():
        if entry.get("model_name") == model_name:
            return key
    return None


def _pick_conversation(store, resume_last: bool, conv_id: Optional[int]) -> Optional[int]:
    if conv_id is not None:
        if conv_id not in store.conversation_ids():
            raise ConfigurationError(f"Conversation {conv_id} not found in {store.path}")
        return conv_id
    if resume_last:
        return store.last_conversation_id()
    return None


def _request_overrides(max_tokens: Optional[int], temperature: Optional[float]) -> Optional[Dict[str, Any]]:
    # applied per request on top of the model's configured defaults
    overrides: Dict[str, Any] = {}
    if max_tokens is not None:
        overrides["max_tokens"] = max_tokens
    if temperature is not None:
        overrides["temperature"] = temperature
    return overrides or None


@app.callback(invoke_without_command=True)
def chat(
    config: Path = typer.Option(Path("config/default.yaml"), "--config", help="YAML config file."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model key or alias."),
    resume_last: bool = typer.Option(False, "--continue", "-c", help="Continue the last conversation."),
    conv_id: Optional[int] = typer.Option(None, "--id", help="Continue conversation N."),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", "-M", min=1, help="Reply token limit for this session."),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t", min=0.0, max=2.0, help="Sampling temperature for this session."),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="Role from the config; sets the system prompt."),
    dump_config: bool = typer.Option(False, "--dump-config", "-d", help="Print the loaded config (keys masked) and exit."),
    version: bool = typer.Option(False, "--version", help="Show the version and exit."),
):
    if version:
        typer.echo(f"ask-ai {_version()}")
        raise typer.Exit()

    if dump_config:
        try:
            loaded = load_config(config)
        except ConfigurationError as e:
            typer.echo(f"Configuration error: {e}", err=True)
            raise typer.Exit(code=1)
        typer.echo(yaml.safe_dump(redacted(loaded), sort_keys=False), nl=False)
        raise typer.Exit()

    try:
        ctx = build_app(config, model=model, role=role)
        cfg = ctx["cfg"]
        conversation_id = _pick_conversation(ctx["store"], resume_last, conv_id)
        client = ctx["client"]
        if conversation_id is not None and model is None:
            # keep the model the conversation was started with
            key = _model_key_for(cfg, ctx["store"].conversation_model(conversation_id))
            if key and key != ctx["model"]:
                client = build_client(cfg, key, ctx["secrets"])
                ctx["model"] = key
    except (ConfigurationError, OSError) as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=1)

    # user and model text is printed verbatim, never as rich markup
    view = ConsoleView(Console(markup=False, highlight=False))
    display = cfg.get("display") or {}
    orchestrator = ConversationOrchestrator(
        client,
        ctx["store"],
        view,
        context_length=cfg["history"]["context_length"],
        border_allowance=display.get("border_allowance", 4),
        min_flush=display.get("min_flush_chars", 30),
        max_width=display.get("max_width"),
        system_prompt=ctx["system_prompt"],
        conversation_id=conversation_id,
        request_config=_request_overrides(max_tokens, temperature),
        logger=ctx["logger"],
    )
    try:
        asyncio.run(_repl(ctx, orchestrator, view))
    except KeyboardInterrupt:
        # Ctrl-C while a reply streams lands here, outside the event loop
        typer.echo("\nBye.")


async def _repl(ctx: Dict[str, Any], orchestrator: ConversationOrchestrator, view: ConsoleView) -> None:
    log = ctx["logger"]
    view.welcome(WELCOME_TITLE, WELCOME_SUBTITLE)
    orchestrator.start()
    view.print_status()

    while True:
        try:
            user_input = view.console.input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            view.console.print("\nBye.")
            return

        if not user_input:
            continue

        if user_input in ("/exit", "/quit"):
            view.console.print("Bye.")
            return

        if user_input == "/help":
            view.console.print(HELP_TEXT)
            continue

        if user_input == "/id":
            cid = orchestrator.conversation_id
            view.console.print(str(cid) if cid is not None else "new")
            continue

        if user_input == "/model" or user_input.startswith("/model "):
            _model_command(ctx, orchestrator, user_input[len("/model"):].strip())
            view.print_status()
            continue

        try:
            with view.live():
                await orchestrator.submit(user_input)
        except OSError as e:
            # history file could not be written for the user turn
            log.error("Turn aborted: %s", e)
            view.console.print(f"Error saving conversation: {e}")
            view.set_status(orchestrator.idle_status())
        view.print_status()


def _model_command(ctx: Dict[str, Any], orchestrator: ConversationOrchestrator, name: str) -> None:
    console = orchestrator.view.console
    cfg = ctx["cfg"]
    if not name:
        console.print(f"Current model: {ctx['model']} ({orchestrator.model})")
        console.print("Available: " + ", ".join(sorted(cfg["models"])))
        return
    key = resolve_model_key(cfg, name)
    try:
        if key is None:
            raise ConfigurationError(
                f"Unknown model '{name}'. Valid models are: {', '.join(sorted(cfg['models']))}"
            )
        client = build_client(cfg, key, ctx["secrets"])
    except ConfigurationError as e:
        console.print(str(e))
        return
    orchestrator.switch_client(client)
    ctx["model"] = key
    ctx["logger"].info("Switched model to %s", key)
    console.print(f"Switched to {key}; the next message starts a new conversation.")


if __name__ == "__main__":
    app()
