"""Command template rendering shared by CLI agent capabilities."""

from __future__ import annotations

import os
import shlex
import string
import subprocess


class CommandTemplateError(ValueError):
    """Command template is empty, malformed, or renders to nothing."""


def render_command(
    command_template: str,
    *,
    values: dict[str, str],
    os_name: str | None = None,
) -> tuple[str | list[str], str]:
    """Render `command_template` into subprocess args and the command head.

    Placeholders are quoted for the target shell: POSIX templates are rendered
    with `shlex.quote` and split back into argv, Windows templates stay a
    command line built with `subprocess.list2cmdline` rules.
    """

    stripped = command_template.strip()
    if not stripped:
        raise CommandTemplateError("Command template is empty.")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise CommandTemplateError("Command template must include {prompt} or {prompt_file}.")

    current_os_name = os_name or os.name
    try:
        if current_os_name == "nt":
            rendered = _render_windows_command_template(template=stripped, values=values).strip()
            if not rendered:
                raise CommandTemplateError("Command template rendered empty command.")
            return rendered, rendered.split(maxsplit=1)[0]

        rendered = stripped.format(**{key: shlex.quote(value) for key, value in values.items()})
    except (KeyError, IndexError) as error:
        raise CommandTemplateError(
            f"Unsupported command template placeholder: {error}",
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise CommandTemplateError("Command template rendered empty command.")
    return argv, argv[0]


def _render_windows_command_template(*, template: str, values: dict[str, str]) -> str:
    rendered_parts: list[str] = []
    in_double_quotes = False

    for literal_text, field_name, _format_spec, _conversion in string.Formatter().parse(
        template,
    ):
        rendered_parts.append(literal_text)
        in_double_quotes = _advance_windows_quote_state(literal_text, in_double_quotes)
        if field_name is None:
            continue
        value = values[field_name]
        if in_double_quotes:
            rendered_parts.append(value.replace('"', '\\"'))
            continue
        rendered_parts.append(subprocess.list2cmdline([value]))

    return "".join(rendered_parts)


def _advance_windows_quote_state(literal_text: str, in_double_quotes: bool) -> bool:
    for index, char in enumerate(literal_text):
        if char != '"':
            continue
        backslashes = 0
        scan_index = index - 1
        while scan_index >= 0 and literal_text[scan_index] == "\\":
            backslashes += 1
            scan_index -= 1
        if backslashes % 2 == 0:
            in_double_quotes = not in_double_quotes
    return in_double_quotes
