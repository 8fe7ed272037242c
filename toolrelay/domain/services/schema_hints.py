"""
Schema hints - corrective guidance built from a tool's JSON schema.

The texts are fed back to the model after failed calls, getting more
detailed with each consecutive failure.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from jsonschema import Draft202012Validator

from ..models.tool import ToolDescriptor

MAX_ENUM_VALUES = 20
MAX_PARAM_LINES = 80
MAX_OPTIONAL_SUGGESTIONS = 3
MAX_ALTERNATIVE_TOOLS = 20


@dataclass
class ArgumentIssues:
    """Differences between provided arguments and the schema."""
    missing_required: List[str] = field(default_factory=list)
    unknown_keys: List[str] = field(default_factory=list)
    type_mismatches: List[Dict[str, str]] = field(default_factory=list)
    enum_violations: List[Dict[str, Any]] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.missing_required or self.unknown_keys or self.type_mismatches or self.enum_violations)

    def lines(self) -> List[str]:
        out = []
        if self.missing_required:
            out.append(f"Missing required: {', '.join(self.missing_required)}")
        if self.unknown_keys:
            out.append(f"Unknown keys: {', '.join(self.unknown_keys)}")
        if self.type_mismatches:
            out.append("Type mismatches: " + "; ".join(
                f"{m['key']} (expected: {m['expected']}, actual: {m['actual']})" for m in self.type_mismatches
            ))
        if self.enum_violations:
            out.append("Enum violations: " + "; ".join(
                f"{v['key']} (allowed: {'|'.join(str(x) for x in v['expected'][:MAX_ENUM_VALUES])}, "
                f"actual: {json.dumps(v['actual'], ensure_ascii=False, default=str)})"
                for v in self.enum_violations
            ))
        return out


@dataclass
class DetailedGuide:
    """Long-form guide text plus the structured diagnosis behind it."""
    text: str
    issues: ArgumentIssues = field(default_factory=ArgumentIssues)
    suggested_arguments: Dict[str, Any] = field(default_factory=dict)
    has_schema: bool = False


def find_tool(tools: Sequence[ToolDescriptor], tool: str) -> Optional[ToolDescriptor]:
    """Case-insensitive lookup by tool name."""
    wanted = str(tool).lower()
    for descriptor in tools or []:
        if descriptor.name.lower() == wanted:
            return descriptor
    return None


def _types_of(prop: Dict[str, Any]) -> List[str]:
    kind = prop.get("type")
    if isinstance(kind, list):
        return [str(t) for t in kind]
    return [str(kind)] if kind else []


def _primary_type(prop: Dict[str, Any]) -> str:
    types = _types_of(prop)
    if types:
        return types[0]
    for key in ("anyOf", "oneOf"):
        options = prop.get(key)
        if isinstance(options, list) and options and isinstance(options[0], dict) and options[0].get("type"):
            return str(options[0]["type"])
    return "string"


def build_example_for_type(primary_type: str, prop: Dict[str, Any]) -> Any:
    """Copy-pasteable sample value for one schema property."""
    has_default = "default" in prop
    default = prop.get("default")
    if primary_type in ("number", "integer"):
        return default if has_default else 0
    if primary_type == "boolean":
        return default if has_default else False
    if primary_type == "array":
        items = prop.get("items") if isinstance(prop.get("items"), dict) else {}
        if isinstance(default, list):
            return default
        return [build_example_for_type(items.get("type") or "string", items)]
    if primary_type == "object":
        return default if isinstance(default, dict) else {}
    enum = prop.get("enum")
    if isinstance(enum, list) and enum:
        return enum[0]
    return default if has_default else ""


def _param_line(name: str, prop: Dict[str, Any], required: bool) -> str:
    types = _types_of(prop)
    if types:
        type_str = "|".join(types)
    else:
        type_str = "anyOf/oneOf" if ("anyOf" in prop or "oneOf" in prop) else "unknown"
    line = f"- {name} ({type_str})"
    if required:
        line += " [required]"
    if isinstance(prop.get("enum"), list):
        line += " enum: " + ", ".join(str(v) for v in prop["enum"][:MAX_ENUM_VALUES])
    if "default" in prop:
        line += f" default: {json.dumps(prop['default'], ensure_ascii=False, default=str)}"
    if prop.get("description"):
        line += f" - {prop['description']}"
    return line


def _schema_parts(descriptor: Optional[ToolDescriptor]):
    schema = descriptor.input_schema if descriptor else None
    if not isinstance(schema, dict):
        return None, {}, []
    props = schema.get("properties") if isinstance(schema.get("properties"), dict) else {}
    required = [r for r in schema.get("required", []) if isinstance(r, str)] if isinstance(schema.get("required"), list) else []
    return schema, props, required


def build_schema_hint(server: str, tool: str, tools: Sequence[ToolDescriptor]) -> str:
    """Parameter list, required fields and an example arguments object."""
    descriptor = find_tool(tools, tool)
    description = descriptor.description if descriptor else ""
    schema, props, required = _schema_parts(descriptor)
    header = f'Parameters for tool "{server}.{tool}":'
    if schema is None:
        lines = [header]
        if description:
            lines.append(f"Description: {description}")
        lines.append("This tool publishes no parameter schema. Pass arguments as a JSON object based on the description.")
        return "\n".join(lines)

    param_lines = []
    example: Dict[str, Any] = {}
    for name, prop in props.items():
        prop = prop if isinstance(prop, dict) else {}
        param_lines.append(_param_line(name, prop, name in required))
        example[name] = build_example_for_type(_primary_type(prop), prop)

    parts = [
        header,
        f"Description: {description}" if description else "",
        f"Parameters ({len(props)}):",
        "\n".join(param_lines),
        f"Required: {', '.join(required)}" if required else "No explicitly required parameters",
        "Example arguments:",
        json.dumps(example, indent=2, ensure_ascii=False, default=str),
        "Follow the parameter definitions and required fields above and pass arguments as JSON.",
    ]
    return "\n".join(p for p in parts if p)


def diagnose_arguments(schema: Dict[str, Any], args: Optional[Dict[str, Any]]) -> ArgumentIssues:
    """Compare provided arguments against a tool schema."""
    props = schema.get("properties") if isinstance(schema.get("properties"), dict) else {}
    required = schema.get("required") if isinstance(schema.get("required"), list) else []
    provided = args if isinstance(args, dict) else {}
    issues = ArgumentIssues(
        missing_required=[k for k in required if k not in provided],
        unknown_keys=[k for k in provided if k not in props],
    )
    for key, value in provided.items():
        prop = props.get(key)
        if not isinstance(prop, dict):
            continue
        types = _types_of(prop)
        if types and not Draft202012Validator({"type": types}).is_valid(value):
            issues.type_mismatches.append({"key": key, "expected": "|".join(types), "actual": _detect_type(value)})
        enum = prop.get("enum")
        if isinstance(enum, list) and enum and not Draft202012Validator({"enum": enum}).is_valid(value):
            issues.enum_violations.append({"key": key, "expected": enum[:50], "actual": value})
    return issues


def _detect_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "integer" if value.is_integer() else "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def suggest_arguments(props: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    """All required fields plus a few optional ones, with sample values."""
    suggested: Dict[str, Any] = {}
    for name, prop in props.items():
        if name in required:
            prop = prop if isinstance(prop, dict) else {}
            suggested[name] = build_example_for_type(_primary_type(prop), prop)
    optional = [n for n in props if n not in required][:MAX_OPTIONAL_SUGGESTIONS]
    for name in optional:
        prop = props[name] if isinstance(props[name], dict) else {}
        suggested[name] = build_example_for_type(_primary_type(prop), prop)
    return suggested


def build_detailed_tool_guide(
    server: str,
    tool: str,
    tools: Sequence[ToolDescriptor],
    provided_args: Optional[Dict[str, Any]] = None
) -> DetailedGuide:
    """Full parameter listing with a diagnosis of the provided arguments."""
    descriptor = find_tool(tools, tool)
    description = descriptor.description if descriptor else ""
    schema, props, required = _schema_parts(descriptor)
    header = f'Detailed guide for tool "{server}.{tool}":'
    if schema is None:
        text = "\n".join(p for p in [
            header,
            f"Description: {description}" if description else "",
            "This tool publishes no parameter schema. Pass arguments as a JSON object based on the description and the error.",
        ] if p)
        return DetailedGuide(text=text)

    issues = diagnose_arguments(schema, provided_args)
    suggested = suggest_arguments(props, required)
    param_lines = [
        _param_line(name, prop if isinstance(prop, dict) else {}, name in required)
        for name, prop in props.items()
    ]
    shown = param_lines[:MAX_PARAM_LINES]
    if len(param_lines) > MAX_PARAM_LINES:
        shown.append(f"... {len(param_lines) - MAX_PARAM_LINES} more omitted")

    issue_lines = issues.lines()
    text = "\n".join(p for p in [
        header,
        f"Description: {description}" if description else "",
        "Parameter definitions:",
        "\n".join(shown),
        f"Required: {', '.join(required)}" if required else "No explicitly required parameters",
        "Argument diagnosis:",
        "\n".join(issue_lines) if issue_lines else "No obvious argument problems found, or no arguments were provided.",
        "Suggested minimal arguments:",
        json.dumps(suggested, indent=2, ensure_ascii=False, default=str),
    ] if p)
    return DetailedGuide(text=text, issues=issues, suggested_arguments=suggested, has_schema=True)


def build_concise_guide_text(guide: Optional[DetailedGuide]) -> str:
    """Diff-style issue summary plus the suggested arguments."""
    if guide is None or not guide.has_schema:
        return ""
    lines = guide.issues.lines()
    if guide.suggested_arguments:
        lines.append("Suggested minimal arguments:\n" + json.dumps(
            guide.suggested_arguments, indent=2, ensure_ascii=False, default=str
        ))
    return "\n".join(lines)


def build_escalated_hint(
    stage: int,
    server: str,
    tool: str,
    tools: Sequence[ToolDescriptor],
    provided_args: Optional[Dict[str, Any]] = None
) -> str:
    """Hint text whose detail grows with the consecutive failure count."""
    schema_hint = build_schema_hint(server, tool, tools)
    if stage <= 1:
        return "\n".join(p for p in [
            "Parameter hint (concise):",
            schema_hint,
            "Fix the arguments to match the example and required fields, then retry this tool.",
        ] if p)
    guide = build_detailed_tool_guide(server, tool, tools, provided_args)
    if stage == 2:
        return "\n".join(p for p in [
            "Argument corrections (focused):",
            build_concise_guide_text(guide) or schema_hint,
            "Fill in missing required fields and fix types/enums before retrying.",
        ] if p)
    alternatives = [
        f"{t.name} - {t.description}" if t.description else t.name
        for t in (tools or []) if t.name
    ][:MAX_ALTERNATIVE_TOOLS]
    suggest = "If it still fails consider:\n" + "\n".join(alternatives) if alternatives else ""
    return "\n".join(p for p in ["Detailed guide:", guide.text or schema_hint, suggest] if p)
