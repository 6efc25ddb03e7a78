"""
Node Catalog
Known n8n node types, the type predicates the repair and validation passes
rely on, and the per-type default parameters applied to model output.
"""

import copy
import re
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
from enum import Enum

class NodeCategory(str, Enum):
    TRIGGER = "trigger"
    COMMUNICATION = "communication"
    DATA = "data"
    DATABASE = "database"
    LOGIC = "logic"
    PROCESSING = "processing"
    FILES = "files"
    INTEGRATION = "integration"

@dataclass
class NodeDefinition:
    type: str
    category: NodeCategory
    description: str
    common_names: List[str] = field(default_factory=list)
    outputs: int = 1

def _node(type_name: str, category: NodeCategory, description: str, common_names: List[str], outputs: int = 1) -> NodeDefinition:
    return NodeDefinition(
        type=f"n8n-nodes-base.{type_name}",
        category=category,
        description=description,
        common_names=common_names,
        outputs=outputs,
    )

_DEFINITIONS = [
    # Triggers
    _node("webhook", NodeCategory.TRIGGER, "Triggers workflow via HTTP webhook", ["webhook", "http trigger", "api trigger"]),
    _node("scheduleTrigger", NodeCategory.TRIGGER, "Triggers workflow on schedule", ["schedule", "cron", "timer"]),
    _node("errorTrigger", NodeCategory.TRIGGER, "Catches errors from other workflows", ["error trigger", "error handler"]),
    _node("manualTrigger", NodeCategory.TRIGGER, "Manual workflow trigger", ["manual", "test trigger"]),
    _node("cron", NodeCategory.TRIGGER, "Legacy cron trigger", ["cron"]),

    # Communication
    _node("emailSend", NodeCategory.COMMUNICATION, "Send emails", ["email", "send email", "mail"]),
    _node("slack", NodeCategory.COMMUNICATION, "Slack integration", ["slack", "slack message"]),
    _node("telegram", NodeCategory.COMMUNICATION, "Telegram messages", ["telegram"]),
    _node("discord", NodeCategory.COMMUNICATION, "Discord messages", ["discord"]),
    _node("twilio", NodeCategory.COMMUNICATION, "SMS and calls via Twilio", ["sms", "twilio"]),

    # Data transformation
    _node("set", NodeCategory.DATA, "Set or rename fields", ["set", "set fields", "map data"]),
    _node("code", NodeCategory.PROCESSING, "Run custom code", ["code", "script", "transform"]),
    _node("function", NodeCategory.PROCESSING, "Legacy function node", ["function"]),
    _node("dateTime", NodeCategory.DATA, "Date and time operations", ["date", "time"]),
    _node("crypto", NodeCategory.DATA, "Hashing and encryption", ["hash", "encrypt"]),
    _node("html", NodeCategory.DATA, "Extract or generate HTML", ["html", "scrape"]),

    # Logic
    _node("if", NodeCategory.LOGIC, "Binary condition", ["if", "condition", "check"], outputs=2),
    _node("switch", NodeCategory.LOGIC, "Multi-way routing", ["switch", "router", "route"], outputs=4),
    _node("merge", NodeCategory.LOGIC, "Combine parallel branches", ["merge", "combine", "join"]),
    _node("splitInBatches", NodeCategory.LOGIC, "Loop over items in batches", ["loop", "batch", "split"], outputs=2),
    _node("wait", NodeCategory.LOGIC, "Pause execution", ["wait", "delay"]),
    _node("respondToWebhook", NodeCategory.LOGIC, "Respond to the webhook caller", ["respond", "response"]),

    # Databases
    _node("postgres", NodeCategory.DATABASE, "PostgreSQL queries", ["postgres", "postgresql", "database"]),
    _node("mysql", NodeCategory.DATABASE, "MySQL queries", ["mysql"]),
    _node("mongoDb", NodeCategory.DATABASE, "MongoDB operations", ["mongodb", "mongo"]),
    _node("redis", NodeCategory.DATABASE, "Redis operations", ["redis", "cache"]),

    # Integrations
    _node("httpRequest", NodeCategory.INTEGRATION, "Call any HTTP API", ["http", "api", "request"]),
    _node("graphql", NodeCategory.INTEGRATION, "GraphQL queries", ["graphql"]),
    _node("github", NodeCategory.INTEGRATION, "GitHub integration", ["github"]),
    _node("gitlab", NodeCategory.INTEGRATION, "GitLab integration", ["gitlab"]),
    _node("jira", NodeCategory.INTEGRATION, "Jira integration", ["jira", "ticket"]),
    _node("notion", NodeCategory.INTEGRATION, "Notion integration", ["notion"]),
    _node("googleSheets", NodeCategory.INTEGRATION, "Google Sheets", ["sheet", "spreadsheet"]),
    _node("googleDrive", NodeCategory.INTEGRATION, "Google Drive", ["drive"]),
    _node("aws", NodeCategory.INTEGRATION, "AWS services", ["aws", "s3"]),

    # Files
    _node("readBinaryFile", NodeCategory.FILES, "Read a file from disk", ["read file"]),
    _node("writeBinaryFile", NodeCategory.FILES, "Write a file to disk", ["write file"]),
    _node("spreadsheetFile", NodeCategory.FILES, "Read or write spreadsheet files", ["csv", "xlsx"]),
]

NODE_CATALOG: Dict[str, NodeDefinition] = {d.type: d for d in _DEFINITIONS}

VALID_TYPE_PATTERNS = [
    re.compile(r"^n8n-nodes-base\."),
    re.compile(r"^n8n-nodes-"),
    re.compile(r"^@[^/]+/n8n-nodes-"),
]

MERGE_TYPE = "n8n-nodes-base.merge"
ERROR_TRIGGER_TYPE = "n8n-nodes-base.errorTrigger"
DECISION_TYPES = {"n8n-nodes-base.if", "n8n-nodes-base.switch"}

COMMON_TYPE_MISTAKES: Dict[str, str] = {
    # Error handling
    "errorWorkflow": "n8n-nodes-base.errorTrigger",
    "errorTrigger": "n8n-nodes-base.errorTrigger",
    "n8n-nodes-base.errorWorkflow": "n8n-nodes-base.errorTrigger",

    # Email
    "emailSend": "n8n-nodes-base.emailSend",
    "emailSendSmtp": "n8n-nodes-base.emailSend",
    "sendEmail": "n8n-nodes-base.emailSend",

    # Databases
    "mongoDb": "n8n-nodes-base.mongoDb",
    "mongodb": "n8n-nodes-base.mongoDb",

    # HTTP
    "httpGet": "n8n-nodes-base.httpRequest",
    "httpPost": "n8n-nodes-base.httpRequest",
    "apiRequest": "n8n-nodes-base.httpRequest",

    # WhatsApp
    "whatsApp": "n8n-nodes-base.whatsApp",
    "whatsapp": "n8n-nodes-base.whatsApp",
}


def is_valid_node_type(node_type: Optional[str]) -> bool:
    """Known catalog entry or a recognised n8n namespace."""
    if not node_type:
        return False
    if node_type in NODE_CATALOG:
        return True
    return any(pattern.search(node_type) for pattern in VALID_TYPE_PATTERNS)


def is_trigger_type(node_type: Optional[str]) -> bool:
    if not node_type:
        return False
    return any(marker in node_type for marker in ("Trigger", "trigger", "cron", "webhook", "schedule"))


def is_merge_type(node_type: Optional[str]) -> bool:
    return node_type == MERGE_TYPE


def is_decision_type(node_type: Optional[str]) -> bool:
    return node_type in DECISION_TYPES


def is_error_trigger_type(node_type: Optional[str]) -> bool:
    return node_type == ERROR_TRIGGER_TYPE


def suggest_node_type(invalid_type: Optional[str], node_name: Optional[str] = None) -> Optional[str]:
    """
    Suggest a correction for an unrecognised node type.

    The exact mistake table wins; otherwise keywords in the node name are
    used. Returns None when nothing plausible is found.
    """
    if invalid_type and invalid_type in COMMON_TYPE_MISTAKES:
        return COMMON_TYPE_MISTAKES[invalid_type]

    if node_name:
        name_lower = node_name.lower()

        if "error" in name_lower and "trigger" in name_lower:
            return ERROR_TRIGGER_TYPE

        if "email" in name_lower or "mail" in name_lower:
            return "n8n-nodes-base.emailSend"

        if any(word in name_lower for word in ("record", "log", "store", "save")):
            return "n8n-nodes-base.httpRequest"

    return None


# ---------- Parameter completion ----------

_CONDITION_TEMPLATE = {
    "leftValue": "={{ $json.field }}",
    "rightValue": "value",
    "operator": {"type": "string", "operation": "equals"},
}

DEFAULT_PARAMETERS: Dict[str, Dict[str, Any]] = {
    "n8n-nodes-base.set": {"mode": "manual", "values": {"values": []}},
    "n8n-nodes-base.code": {"language": "javaScript", "jsCode": "return items;"},
    "n8n-nodes-base.httpRequest": {"method": "GET", "url": "https://api.example.com", "options": {}},
    "n8n-nodes-base.if": {
        "conditions": {"options": {"version": 2}, "conditions": [_CONDITION_TEMPLATE]},
    },
    "n8n-nodes-base.switch": {
        "rules": {"rules": [{"conditions": {"conditions": [_CONDITION_TEMPLATE]}, "output": 0}]},
    },
    "n8n-nodes-base.merge": {"mode": "combine", "combinationMode": "mergeByPosition"},
    "n8n-nodes-base.emailSend": {
        "fromEmail": "noreply@example.com",
        "toEmail": "={{ $json.email }}",
        "subject": "Notification",
        "text": "Email content here",
    },
    "n8n-nodes-base.webhook": {"path": "webhook", "httpMethod": "POST", "responseMode": "lastNode"},
    "n8n-nodes-base.cron": {"cronTimes": {"item": [{"mode": "everyMinute"}]}},
}


def complete_parameters(node_type: str, parameters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Fill required fields the model left out; existing values always win."""
    completed = dict(parameters or {})
    for key, value in DEFAULT_PARAMETERS.get(node_type, {}).items():
        if key not in completed or completed[key] in (None, ""):
            completed[key] = copy.deepcopy(value)
    return sanitize_parameters(node_type, completed)


def sanitize_parameters(node_type: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
    """Fix parameter shapes that n8n rejects at import time."""
    sanitized = dict(parameters)

    if node_type in ("n8n-nodes-base.httpRequest", "n8n-nodes-base.webhook"):
        for key in ("headers", "queryParameters"):
            if isinstance(sanitized.get(key), list):
                sanitized.pop(key)

    elif node_type in ("n8n-nodes-base.function", "n8n-nodes-base.functionItem"):
        if not isinstance(sanitized.get("functionCode"), str):
            sanitized["functionCode"] = "return items;"

    elif node_type == "n8n-nodes-base.set":
        values = sanitized.get("values")
        if values is not None and not (isinstance(values, dict) and "values" in values):
            sanitized["values"] = {"values": values if isinstance(values, list) else []}

    elif node_type == "n8n-nodes-base.if":
        conditions = sanitized.get("conditions")
        if conditions is not None and not (isinstance(conditions, dict) and "conditions" in conditions):
            sanitized["conditions"] = {"conditions": conditions if isinstance(conditions, list) else []}

    elif node_type == "n8n-nodes-base.switch":
        rules = sanitized.get("rules")
        if rules is not None and not (isinstance(rules, dict) and "rules" in rules):
            sanitized["rules"] = {"rules": rules if isinstance(rules, list) else []}

    return sanitized
