from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.pretty import Pretty
from rich.syntax import Syntax
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from safe_code_runner import ExecutionService, SandboxConfig, SecurityFilter, build_engine
from safe_code_runner.execution.languages import DEFAULT_LANGUAGE_SPECS
from safe_code_runner.templates import get_templates

_CONSOLE = Console(no_color=False)

_SYNTAX_LEXERS = {"cpp": "cpp", "csharp": "csharp", "javascript": "javascript"}


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m scr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running code and inspecting the sandbox.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m scr",
        description=(
            "safe-code-runner CLI\n"
            "Run short programs in any configured language with time, memory\n"
            "and output limits, locally or through a remote execution API."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m scr run hello.py\n"
            "  python -m scr run main.cpp --input-file input.txt\n"
            "  python -m scr run Main.java --language java --input 'Alice\\n25'\n"
            "  python -m scr languages\n"
            "  python -m scr health\n"
            "  python -m scr templates python\n\n"
            "Remote Examples:\n"
            "  python -m scr --backend remote run hello.rb --language ruby\n"
            "  python -m scr --backend remote --remote-url http://localhost:2000/api/v2 health"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to a TOML config file.\n"
            "Defaults to the bundled configuration."
        ),
    )
    parser.add_argument(
        "--backend",
        choices=("local", "remote"),
        help="Override the configured backend.",
    )
    parser.add_argument(
        "--remote-url",
        help=(
            "Base URL of the remote execution API.\n"
            "Example: https://emkc.org/api/v2/piston"
        ),
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log discovery, spawning and cleanup details to stderr.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute a source file.",
        description=(
            "Execute one source file and report its outcome.\n"
            "The language is inferred from the file extension unless given."
        ),
        epilog=(
            "Examples:\n"
            "  python -m scr run hello.py\n"
            "  python -m scr run solution.go --input-file cases/1.txt --json"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("source_file")
    run_cmd.add_argument(
        "--language",
        help="Language id, e.g. python, java, cpp (default: from extension).",
    )
    input_group = run_cmd.add_mutually_exclusive_group()
    input_group.add_argument(
        "--input",
        help="Standard input text. Escaped newlines (\\n) separate lines.",
    )
    input_group.add_argument(
        "--input-file",
        help="Read standard input from a file.",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the response as JSON instead of panels.",
    )

    sub.add_parser(
        "languages",
        help="List supported languages.",
        description="List the languages the configured backend can execute.",
        formatter_class=_HELP_FORMATTER,
    )
    sub.add_parser(
        "health",
        help="Check whether the backend is usable.",
        description=(
            "Report backend health.\n"
            "Exits with status 1 when the backend is unavailable."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    templates_cmd = sub.add_parser(
        "templates",
        help="Show starter programs for a language.",
        description="Show the bundled starter programs for one language.",
        epilog=(
            "Examples:\n"
            "  python -m scr templates java\n"
            "  python -m scr templates python --name input > main.py"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    templates_cmd.add_argument("language")
    templates_cmd.add_argument(
        "--name",
        help="Print only one template (hello, function, input) as plain text.",
    )

    return parser


def _configure_logging(verbose: bool) -> None:
    """Route library logging through Rich on stderr.

    Example:
        ```python
        _configure_logging(verbose=True)
        ```
    """
    package_logger = logging.getLogger("safe_code_runner")
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(isinstance(handler, RichHandler) for handler in package_logger.handlers):
        package_logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))


def load_config(args: argparse.Namespace) -> SandboxConfig:
    """Resolve configuration from the config file and global flags.

    Example:
        ```python
        config = load_config(build_parser().parse_args(["--backend", "remote", "health"]))
        ```
    """
    config = SandboxConfig.from_file(args.config) if args.config else SandboxConfig()
    overrides: dict[str, Any] = {}
    if args.backend:
        overrides["backend"] = args.backend
    if args.remote_url:
        overrides["remote_url"] = args.remote_url
    return dataclasses.replace(config, **overrides) if overrides else config


def build_service(config: SandboxConfig) -> ExecutionService:
    """Create the execution service the CLI commands talk to.

    Example:
        ```python
        service = build_service(SandboxConfig())
        ```
    """
    return ExecutionService(
        build_engine(config),
        security_filter=SecurityFilter(enabled=config.security_filter),
        max_concurrent=config.max_concurrent,
    )


def _guess_language(path: Path) -> str | None:
    """Map a file extension to a language id.

    Example:
        ```python
        assert _guess_language(Path("main.py")) == "python"
        ```
    """
    suffix = path.suffix.lower()
    for spec in DEFAULT_LANGUAGE_SPECS:
        if spec.extension == suffix:
            return spec.id
    return None


def _read_stdin_arg(args: argparse.Namespace) -> str:
    """Return program input from `--input` or `--input-file`.

    Example:
        ```python
        text = _read_stdin_arg(argparse.Namespace(input="a\\\\nb", input_file=None))
        ```
    """
    if args.input_file:
        return Path(args.input_file).read_text(encoding="utf-8")
    if args.input:
        return args.input.replace("\\n", "\n")
    return ""


def _print_response(payload: dict[str, Any]) -> None:
    """Render an execution response as Rich panels.

    Example:
        ```python
        _print_response({"success": True, "output": "hi\\n", "status": "Success"})
        ```
    """
    style = "green" if payload["success"] else "red"
    summary = (
        f"[bold]{payload['status']}[/bold]  language={payload['language']}  "
        f"exit={payload['exitCode']}  time={payload['executionTime']}"
    )
    if payload.get("truncated"):
        summary += "  [yellow](output truncated)[/yellow]"
    _CONSOLE.print(Panel.fit(summary, title="Result", border_style=style))
    if payload["output"]:
        _CONSOLE.print(Panel(payload["output"].rstrip("\n"), title="Output", border_style="cyan"))
    if payload.get("error"):
        _CONSOLE.print(Panel(payload["error"].rstrip("\n"), title="Error", border_style=style))


def _print_languages(rows: list[dict[str, Any]]) -> None:
    """Render the language catalog in a rich table.

    Example:
        ```python
        _print_languages([{"name": "python", "extension": ".py", "timeoutMs": 15000, "memoryLimitBytes": 268435456}])
        ```
    """
    table = Table(title="Supported Languages")
    table.add_column("Name", style="cyan")
    table.add_column("Extension", style="magenta")
    table.add_column("Timeout")
    table.add_column("Memory")
    table.add_column("Version")
    for row in rows:
        memory = row["memoryLimitBytes"]
        table.add_row(
            row["name"],
            row["extension"],
            f"{row['timeoutMs']}ms",
            f"{memory // (1024 * 1024)}MB" if memory > 0 else "remote",
            str(row.get("version", "")),
        )
    _CONSOLE.print(table)


def _run(service: ExecutionService, args: argparse.Namespace) -> int:
    """Handle the `run` command.

    Example:
        ```python
        code = _run(service, build_parser().parse_args(["run", "main.py"]))
        ```
    """
    path = Path(args.source_file)
    language = args.language or _guess_language(path)
    if language is None:
        _CONSOLE.print(
            Panel.fit(
                f"Cannot infer language from '{path.name}'; pass --language.",
                style="bold red",
            )
        )
        return 2
    try:
        code = path.read_text(encoding="utf-8")
        stdin = _read_stdin_arg(args)
    except OSError as exc:
        _CONSOLE.print(Panel.fit(f"Cannot read input: {exc}", style="bold red"))
        return 2
    payload = service.execute(code, language, input=stdin).to_dict()
    if args.json:
        _CONSOLE.print_json(json.dumps(payload))
    else:
        _print_response(payload)
    return 0 if payload["success"] else 1


def _templates(args: argparse.Namespace) -> int:
    """Handle the `templates` command.

    Example:
        ```python
        code = _templates(build_parser().parse_args(["templates", "python"]))
        ```
    """
    try:
        templates = get_templates(args.language)
    except KeyError as exc:
        _CONSOLE.print(Panel.fit(str(exc.args[0]), style="bold red"))
        return 1
    if args.name:
        if args.name not in templates:
            available = ", ".join(templates)
            _CONSOLE.print(
                Panel.fit(f"No template '{args.name}' (available: {available})", style="bold red")
            )
            return 1
        print(templates[args.name], end="")
        return 0
    lexer = _SYNTAX_LEXERS.get(args.language.lower(), args.language.lower())
    for name, source in templates.items():
        _CONSOLE.print(Panel(Syntax(source.rstrip("\n"), lexer), title=name, border_style="cyan"))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `scr` CLI command handler.

    Example:
        ```python
        code = main(["languages"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    if args.command == "templates":
        return _templates(args)

    try:
        config = load_config(args)
    except ValueError as exc:
        _CONSOLE.print(Panel.fit(f"Invalid configuration: {exc}", style="bold red"))
        return 2
    service = build_service(config)

    if args.command == "run":
        return _run(service, args)
    if args.command == "languages":
        _print_languages(service.list_supported_languages())
        return 0
    if args.command == "health":
        report = service.check_health()
        style = "green" if report.available else "red"
        title = "Healthy" if report.available else "Unavailable"
        _CONSOLE.print(Panel.fit(Pretty(report.details), title=title, border_style=style))
        return 0 if report.available else 1

    parser.error("Unhandled command")
    return 2
