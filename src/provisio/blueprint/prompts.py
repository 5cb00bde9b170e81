"""Interactive questions for blueprint parameters."""

from __future__ import annotations

import re
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from .models import VarField, Variable, VariableType

console = Console()


def _matches(var: Variable, answer: str) -> bool:
    if not var.pattern.value or not answer:
        return True
    if re.fullmatch(var.pattern.value, answer):
        return True
    console.print(f"[red]Value should match pattern {escape(var.pattern.value)}[/red]")
    return False


def _ask_select(var: Variable, question: str, default: str, options: list[VarField]) -> str:
    console.print(f"[bold]{escape(question)}[/bold]")
    for i, option in enumerate(options, start=1):
        marker = "[cyan]>[/cyan]" if option.value == default else " "
        console.print(f" {marker} {i}. {escape(option.display())}")

    while True:
        answer = typer.prompt("Choice", default=default or None, show_default=bool(default))
        answer = str(answer).strip()
        if answer.isdigit() and 1 <= int(answer) <= len(options):
            return options[int(answer) - 1].value
        for option in options:
            if answer in (option.value, option.label):
                return option.value
        console.print(f"[red]{escape(answer)} is not a valid option[/red]")


def _ask_file(question: str, default: str) -> str:
    while True:
        path = typer.prompt(question, default=default or None)
        file = Path(path).expanduser()
        if file.is_file():
            return file.read_text()
        console.print(f"[red]File {escape(str(file))} does not exist[/red]")


def ask_question(var: Variable, default: str, options: list[VarField]) -> object:
    """Default ask function: one blocking question per parameter."""
    question = var.question()
    vtype = var.variable_type

    if vtype == VariableType.CONFIRM:
        return typer.confirm(question, default=default == "true")

    if vtype == VariableType.SELECT:
        return _ask_select(var, question, default, options)

    if vtype in (VariableType.EDITOR, VariableType.SECRET_EDITOR):
        console.print(f"[bold]{escape(question)}[/bold] [dim](opening editor)[/dim]")
        edited = typer.edit(default or "")
        return (edited or default or "").rstrip("\n")

    if vtype in (VariableType.FILE, VariableType.SECRET_FILE):
        return _ask_file(question, default)

    secret = vtype == VariableType.SECRET_INPUT
    while True:
        answer = typer.prompt(
            question,
            default=default or "",
            hide_input=secret,
            show_default=not secret and bool(default),
        )
        if _matches(var, str(answer)):
            return answer
