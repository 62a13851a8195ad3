"""Interactive prompts that collect values for template variables."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TextIO

log = logging.getLogger(__name__)

Validator = Callable[[str], None]


class PromptError(Exception):
    """Raised when a prompt cannot produce a value."""


class PromptAborted(PromptError):
    """Raised when input ends before an answer was given."""


@dataclass
class BuilderVar:
    """A variable a template asks the user for."""

    name: str
    description: str = ""
    var_type: str = ""
    is_prompt_disabled: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BuilderVar":
        if not isinstance(data, Mapping):
            raise TypeError(f"variable must be a mapping, got {type(data).__name__}")
        return cls(
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            var_type=str(data.get("type", "")),
            is_prompt_disabled=bool(data.get("disablePrompt", False)),
        )


@dataclass
class BuilderVarDefault:
    """A default for a variable, either literal or taken from another variable."""

    name: str
    value: str = ""
    reference_var: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BuilderVarDefault":
        if not isinstance(data, Mapping):
            raise TypeError(f"variable default must be a mapping, got {type(data).__name__}")
        return cls(
            name=str(data.get("name", "")),
            value=str(data.get("value", "")),
            reference_var=str(data.get("referenceVar", "")),
        )


@dataclass
class DraftConfig:
    """The variables of a template and their defaults."""

    variables: List[BuilderVar] = field(default_factory=list)
    variable_defaults: List[BuilderVarDefault] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "DraftConfig":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise TypeError(f"config must be a mapping, got {type(data).__name__}")
        return cls(
            variables=[BuilderVar.from_dict(v) for v in data.get("variables") or []],
            variable_defaults=[
                BuilderVarDefault.from_dict(d) for d in data.get("variableDefaults") or []
            ],
        )


def allow_all_string_validator(value: str) -> None:
    """Accept any string, blank ones included."""
    if not isinstance(value, str):
        raise TypeError(f"input must be a string, got {type(value).__name__}")


def no_blank_string_validator(value: str) -> None:
    """Reject the empty string."""
    if len(value) <= 0:
        raise ValueError("input must be greater than 0")


def _read_line(stdin: TextIO) -> str:
    line = stdin.readline()
    if line == "":
        raise PromptAborted("input ended before an answer was given")
    return line.rstrip("\r\n")


def _ask(label: str, validate: Validator, stdin: TextIO, stdout: TextIO) -> str:
    """Ask until an answer passes ``validate``."""
    while True:
        stdout.write(f"? {label}: ")
        stdout.flush()
        answer = _read_line(stdin)
        try:
            validate(answer)
        except ValueError as err:
            stdout.write(f"\u2717 {err}\n")
            continue
        return answer


def run_select_prompt(
    label: str,
    items: Sequence[Any],
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> str:
    """Let the user pick one of ``items`` by number or text; an empty answer picks the first."""
    if not items:
        raise PromptError("no items to select from")
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout
    labels = [_format_item(item) for item in items]
    while True:
        stdout.write(f"? {label}\n")
        for number, text in enumerate(labels, start=1):
            stdout.write(f"  {number}) {text}\n")
        stdout.write("Choice: ")
        stdout.flush()
        answer = _read_line(stdin).strip()
        if answer == "":
            return labels[0]
        if answer in labels:
            return answer
        if answer.isdigit() and 1 <= int(answer) <= len(labels):
            return labels[int(answer) - 1]
        stdout.write(f"\u2717 invalid choice: {answer}\n")


def _format_item(item: Any) -> str:
    if isinstance(item, bool):
        return "true" if item else "false"
    return str(item)


def run_bool_prompt(
    custom_prompt: BuilderVar,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> str:
    """Ask a yes/no question, answering ``"true"`` or ``"false"``."""
    return run_select_prompt(
        "Please select " + custom_prompt.description, [True, False], stdin, stdout
    )


def run_defaultable_string_prompt(
    custom_prompt: BuilderVar,
    default_value: str,
    validate: Optional[Validator] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> str:
    """Ask for a string; with a default, any answer is allowed and blank means the default."""
    validator = validate if validate is not None else no_blank_string_validator
    default_string = ""
    if default_value != "":
        validator = allow_all_string_validator
        default_string = f" (default: {default_value})"

    answer = _ask(
        "Please enter " + custom_prompt.description + default_string,
        validator,
        stdin if stdin is not None else sys.stdin,
        stdout if stdout is not None else sys.stdout,
    )
    # Substitute here so later references in the same run can resolve.
    if answer == "" and default_string != "":
        answer = default_value
    return answer


def get_variable_default_value(
    variable_name: str,
    variable_defaults: Iterable[BuilderVarDefault],
    inputs: Mapping[str, str],
) -> str:
    """Return a variable's default: a filled-in reference variable wins over the literal value."""
    default_value = ""
    for variable_default in variable_defaults:
        if variable_default.name != variable_name:
            continue
        default_value = variable_default.value
        log.debug(
            "setting default value for %s to %s from variable default rule",
            variable_name,
            default_value,
        )
        reference = variable_default.reference_var
        if reference and inputs.get(reference, ""):
            default_value = inputs[reference]
            log.debug(
                "setting default value for %s to %s from referenceVar %s",
                variable_name,
                default_value,
                reference,
            )
    return default_value


def run_prompts_from_config_with_skips_io(
    config: DraftConfig,
    vars_to_skip: Optional[Iterable[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> Dict[str, str]:
    """Prompt for every variable of ``config`` except skipped or prompt-disabled ones."""
    skip = set(vars_to_skip or ())
    inputs: Dict[str, str] = {}

    for variable in config.variables:
        name = variable.name
        if name in skip:
            log.debug("Skipping prompt for %s", name)
            continue
        if variable.is_prompt_disabled:
            log.debug("Skipping prompt for %s as it has IsPromptDisabled=true", name)
            value = get_variable_default_value(name, config.variable_defaults, inputs)
            if value == "":
                raise PromptError(
                    f"IsPromptDisabled is true for {name} but no default value was found"
                )
            log.debug("Using default value %s for %s", value, name)
            inputs[name] = value
            continue

        log.debug("constructing prompt for: %s", name)
        if variable.var_type == "bool":
            inputs[name] = run_bool_prompt(variable, stdin, stdout)
        else:
            default = get_variable_default_value(name, config.variable_defaults, inputs)
            inputs[name] = run_defaultable_string_prompt(variable, default, None, stdin, stdout)

    for variable_default in config.variable_defaults:
        if inputs.get(variable_default.name, "") == "":
            inputs[variable_default.name] = variable_default.value

    return inputs


def run_prompts_from_config_with_skips(
    config: DraftConfig, vars_to_skip: Optional[Iterable[str]] = None
) -> Dict[str, str]:
    """Prompt on the terminal, skipping the named variables."""
    return run_prompts_from_config_with_skips_io(config, vars_to_skip, None, None)


def run_prompts_from_config(config: DraftConfig) -> Dict[str, str]:
    """Prompt on the terminal for every variable of ``config``."""
    return run_prompts_from_config_with_skips(config, [])


def get_input_from_prompt(desired_input: str) -> str:
    """Ask on the terminal for a non-blank value."""
    return _ask(
        "Please enter " + desired_input, no_blank_string_validator, sys.stdin, sys.stdout
    )