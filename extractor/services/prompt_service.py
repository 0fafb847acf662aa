import json
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from extractor.logging_config import get_logger
from extractor.models import ContextualRule, LocationConfig, StopTrigger
from extractor.services.field_catalog import CatalogField, FieldCatalog, load_catalog

logger = get_logger("prompt")

RULE_EMPLOYEE_NAMES = "EMPLOYEE_NAMES"
RULE_BUSINESS_CONTEXT = "BUSINESS_CONTEXT"
RULE_PROMPT_RULES = "PROMPT_RULES"

CONFIDENCE_KEY = "extraction_confidence"
NOTES_KEY = "notes"

NO_FIELDS_NOTICE = "- No extraction fields have been configured yet. Please configure fields in the system."

CLOSING_INSTRUCTIONS = [
    "Scan the entire conversation history to extract missing fields.",
    "If details are spread across multiple messages, combine them appropriately.",
    "Use context to determine if names mentioned are actually the customer's name vs. referrals or business owners.",
    "Only extract information that is clearly stated or strongly implied.",
    "For each field, use the exact field key shown above in your JSON response.",
    "Use null for any field the conversation does not answer.",
    "Ensure the response is VALID JSON ONLY, with no explanations or markdown.",
]


@dataclass
class RenderedPrompt:
    document: str
    catalog: FieldCatalog
    location_id: str
    business_name: str
    rule_count: int = 0
    stop_trigger_count: int = 0
    manifest: List[dict] = field(default_factory=list)

    @property
    def has_fields(self) -> bool:
        return len(self.catalog) > 0


def _option_label(option) -> str:
    if isinstance(option, dict):
        value = option.get("value") or option.get("label") or option.get("key") or json.dumps(option)
        description = (option.get("description") or "").strip()
        if description:
            return f"'{value}' ({description})"
        return f"'{value}'"
    return f"'{option}'"


def format_guidance(entry: CatalogField) -> str:
    """Type-specific formatting hints appended to a field's line."""
    description = entry.description or ""
    hints = []
    field_type = entry.field_type

    if field_type == "DATE" and "YYYY-MM-DD" not in description:
        hints.append("Format as YYYY-MM-DD.")
    elif field_type == "EMAIL" and "valid email address" not in description:
        hints.append("Must be a valid email address.")
    elif field_type == "PHONE" and "Include area code" not in description:
        hints.append("Include area code and formatting as provided.")
    elif field_type == "NUMERICAL" and "Extract numbers only" not in description:
        hints.append("Extract numbers only.")
    elif field_type in ("SINGLE_OPTIONS", "MULTIPLE_OPTIONS") and entry.options:
        options = ", ".join(_option_label(option) for option in entry.options)
        if field_type == "SINGLE_OPTIONS":
            hints.append(f"Choose from: {options}. Use one of these values exactly.")
        else:
            hints.append(f"Select one or more from: {options}. Use comma separation for multiple selections.")

    if entry.is_required and "REQUIRED FIELD" not in description:
        hints.append("**REQUIRED FIELD**.")
    return " ".join(hints)


def _context_section(config: LocationConfig, rules: List[ContextualRule]) -> str:
    lines = []
    if config.business_description or config.services_offered or config.business_context:
        lines.append("Business Context:")
        if config.business_description:
            lines.append(f"- Business: {config.business_description}")
        if config.services_offered:
            lines.append(f"- Services: {config.services_offered}")
        if config.target_audience:
            lines.append(f"- Audience: {config.target_audience}")
        if config.business_context:
            lines.append(f"- Context: {config.business_context}")

    context_rules = [rule for rule in rules if rule.rule_type == RULE_EMPLOYEE_NAMES] + [
        rule for rule in rules if rule.rule_type == RULE_BUSINESS_CONTEXT
    ]
    if context_rules:
        if not lines:
            lines.append("Additional Context:")
        for rule in context_rules:
            line = f"- {rule.rule_description}"
            if rule.rule_value:
                line += f" ({rule.rule_value})"
            lines.append(line)
    return "\n".join(lines)


def _output_contract(catalog: FieldCatalog) -> str:
    example = {entry.target_key: None for entry in catalog}
    example[CONFIDENCE_KEY] = "high | medium | low"
    example[NOTES_KEY] = "short free-text notes, or null"
    return json.dumps(example, indent=2)


def render_prompt(
    config: LocationConfig,
    catalog: FieldCatalog,
    rules: Optional[List[ContextualRule]] = None,
    stop_triggers: Optional[List[StopTrigger]] = None,
) -> RenderedPrompt:
    rules = rules or []
    stop_triggers = stop_triggers or []
    location_id = config.ghl_account_id
    business_name = config.business_name or f"Location {location_id}"

    sections = [
        f"You are analyzing a conversation between a customer and {business_name}. "
        "Your goal is to extract structured data from the entire conversation history, "
        "ensuring all necessary fields are populated. Infer missing details based on context. "
        "If a customer provides details across multiple messages, combine them correctly. "
        "Ensure extracted data is accurate and complete."
    ]

    context = _context_section(config, rules)
    if context:
        sections.append(context)

    prompt_rules = [rule for rule in rules if rule.rule_type == RULE_PROMPT_RULES]
    if prompt_rules:
        lines = ["Special Instructions:"]
        for rule in prompt_rules:
            line = f"- {rule.rule_description}"
            if rule.rule_value:
                line += f" {rule.rule_value}"
            lines.append(line)
        sections.append("\n".join(lines))

    field_lines = ["Extract and return the following structured data:"]
    if len(catalog):
        for entry in catalog:
            line = f"- **{entry.target_key}** ({entry.name}): {entry.description}".rstrip()
            guidance = format_guidance(entry)
            if guidance:
                line += f" {guidance}"
            field_lines.append(line)
    else:
        field_lines.append(NO_FIELDS_NOTICE)
    sections.append("\n".join(field_lines))

    if stop_triggers:
        lines = ["**STOP TRIGGERS** - Escalate to human if:"]
        for trigger in stop_triggers:
            line = f"- {trigger.scenario_description}"
            if trigger.handoff_message:
                line += f' Respond with exactly: "{trigger.handoff_message}"'
            lines.append(line)
        sections.append("\n".join(lines))

    if len(catalog):
        sections.append("Respond with a JSON object shaped like this:\n" + _output_contract(catalog))

    sections.append(
        "**IMPORTANT INSTRUCTIONS:**\n" + "\n".join(f"- {instruction}" for instruction in CLOSING_INSTRUCTIONS)
    )

    return RenderedPrompt(
        document="\n\n".join(sections),
        catalog=catalog,
        location_id=location_id,
        business_name=business_name,
        rule_count=len(rules),
        stop_trigger_count=len(stop_triggers),
        manifest=catalog.manifest(),
    )


def build_prompt(db: Session, config: LocationConfig) -> RenderedPrompt:
    """Load the location's catalog, rules and stop triggers and render the instructions."""
    catalog = load_catalog(db, config.id)
    rules = (
        db.query(ContextualRule)
        .filter(ContextualRule.config_id == config.id, ContextualRule.is_active.is_(True))
        .all()
    )
    stop_triggers = (
        db.query(StopTrigger)
        .filter(StopTrigger.config_id == config.id, StopTrigger.is_active.is_(True))
        .order_by(StopTrigger.sort_order.asc())
        .all()
    )
    rendered = render_prompt(config, catalog, rules, stop_triggers)
    logger.info(
        "Prompt built",
        extra={
            "context": {
                "location_id": rendered.location_id,
                "fields": len(catalog),
                "unresolvable_fields": len(catalog.unresolvable),
                "rules": rendered.rule_count,
                "stop_triggers": rendered.stop_trigger_count,
            }
        },
    )
    return rendered
