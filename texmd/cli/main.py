"""texmd command line — convert files and report diagnostics.

Usage:
    texmd convert IN [-o OUT] [--reverse] [--yes]
    texmd check IN [--reverse]
    texmd config [set KEY VALUE | get KEY]
"""

from __future__ import annotations

import sys
from pathlib import Path

import questionary
from rich.console import Console

from texmd.cli._report import print_config, print_diagnostics
from texmd.config import Direction
from texmd.pipeline import transform
from texmd.settings import (
    env_path,
    get_key,
    get_service_url,
    load_pipeline_config,
    validate_setting,
    write_key,
)

SUBCOMMANDS = {
    "convert": "Convert IN and write the result (-o OUT, --reverse, --yes)",
    "check": "Convert IN in memory and list diagnostics (--reverse)",
    "config": "Show the configuration, or change it (set KEY VALUE, get KEY)",
}

_TARGET_SUFFIX = {Direction.FORWARD: ".md", Direction.REVERSE: ".tex"}


def _usage(console: Console) -> None:
    console.print("Usage: texmd SUBCOMMAND [ARGS]")
    console.print()
    console.print("Subcommands:")
    for name, desc in SUBCOMMANDS.items():
        console.print(f"  {name:<10} {desc}")


def _parse(argv: list[str]) -> tuple[list[str], dict[str, object]]:
    """Split arguments into positionals and the known flags."""
    positionals: list[str] = []
    flags: dict[str, object] = {"reverse": False, "yes": False, "output": None}
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--reverse":
            flags["reverse"] = True
        elif arg in ("-y", "--yes"):
            flags["yes"] = True
        elif arg in ("-o", "--output"):
            if i + 1 >= len(argv):
                raise ValueError(f"{arg} needs a path")
            flags["output"] = argv[i + 1]
            i += 1
        elif arg.startswith("-"):
            raise ValueError(f"Unknown option: {arg}")
        else:
            positionals.append(arg)
        i += 1
    return positionals, flags


def default_output(source: Path, direction: Direction) -> Path:
    """Sibling path with the target dialect's suffix, never the source itself."""
    suffix = _TARGET_SUFFIX[direction]
    target = source.with_suffix(suffix)
    if target == source:
        target = source.with_name(f"{source.stem}.converted{suffix}")
    return target


def _read_source(path: str, console: Console) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        console.print(f"[red]Cannot read {path}: {e}[/]")
        sys.exit(1)


def _convert(positionals: list[str], flags: dict[str, object], console: Console) -> int:
    source_path = Path(positionals[0])
    source = _read_source(positionals[0], console)
    direction = Direction.REVERSE if flags["reverse"] else Direction.FORWARD

    result, diagnostics = transform(source, load_pipeline_config(), direction)
    print_diagnostics(diagnostics, console, source)

    output = Path(str(flags["output"])) if flags["output"] else default_output(source_path, direction)
    if not flags["yes"] and (diagnostics or output.exists()):
        reason = f"{len(diagnostics)} diagnostic(s)" if diagnostics else "file exists"
        confirm = questionary.confirm(f"Write {output} ({reason})?", default=False).ask()
        if confirm is None:
            console.print("[bold red]Cancelled.[/]")
            return 1
        if not confirm:
            console.print(f"  [yellow]skip[/] {output} — not written")
            return 0

    output.write_text(result, encoding="utf-8")
    console.print(f"  [green]ok[/] wrote {output}")
    return 0


def _check(positionals: list[str], flags: dict[str, object], console: Console) -> int:
    source = _read_source(positionals[0], console)
    direction = Direction.REVERSE if flags["reverse"] else Direction.FORWARD
    _, diagnostics = transform(source, load_pipeline_config(), direction)
    print_diagnostics(diagnostics, console, source, title=f"Diagnostics: {positionals[0]}")
    return 2 if diagnostics else 0


def _config(positionals: list[str], console: Console) -> int:
    if not positionals:
        print_config(load_pipeline_config(), console, str(env_path()), get_service_url())
        return 0

    action, args = positionals[0], positionals[1:]
    if action == "set" and len(args) == 2:
        key, value = args[0].upper(), args[1]
        error = validate_setting(key, value)
        if error:
            console.print(f"[red]{error}[/]")
            return 1
        write_key(key, value)
        console.print(f"  [green]ok[/] {key}={value} saved to {env_path()}")
        return 0
    if action == "get" and len(args) == 1:
        key = args[0].upper()
        value = get_key(key)
        if value is None:
            console.print(f"  [dim]{key} is not set[/]")
            return 1
        console.print(f"{key}={value}")
        return 0

    console.print("[red]Usage: texmd config (set KEY VALUE | get KEY)[/]")
    return 1


def main(args: list[str] | None = None) -> None:
    """CLI entry point."""
    console = Console()
    argv = args if args is not None else sys.argv[1:]

    if not argv or argv[0] in ("-h", "--help"):
        _usage(console)
        return

    subcmd, rest = argv[0], argv[1:]
    if subcmd not in SUBCOMMANDS:
        console.print(
            f"[red]Unknown subcommand: {subcmd}[/]  "
            f"(available: {', '.join(SUBCOMMANDS)})"
        )
        sys.exit(1)

    try:
        positionals, flags = _parse(rest)
    except ValueError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)

    if subcmd == "config":
        code = _config(positionals, console)
        if code:
            sys.exit(code)
        return

    if len(positionals) != 1:
        console.print(f"[red]{subcmd} takes exactly one input file[/]")
        sys.exit(1)

    handler = _convert if subcmd == "convert" else _check
    code = handler(positionals, flags, console)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
