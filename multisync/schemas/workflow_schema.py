"""
JSON Schema for declarative agent workflows
"""
STEP_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "type": {"type": "string"},
        "agentRef": {"type": "string"},
        "proposalAgentRef": {"type": "string"},
        "reviewerAgentRef": {"type": "string"},
        "passCondition": {"type": "string"},
        "maxTurns": {"type": "integer", "minimum": 1},
        "feedbackInjection": {
            "type": "string",
            "enum": ["as_user", "as_system", "append_only"]
        },
        "io": {
            "type": "object",
            "properties": {
                "carryHistory": {"type": "boolean"}
            }
        }
    },
    "required": ["type"]
}

TOOL_SCHEMA = {
    "type": "object",
    "properties": {
        "kind": {"type": "string"},
        "ref": {"type": "string"},
        "id": {"type": "string"},
        "description": {"type": "string"}
    },
    "required": ["kind"]
}

AGENT_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "instructions": {"type": "string"},
        "outputSchemaRef": {"type": "string"},
        "modelSettings": {"type": "object"},
        "mcpServerRefs": {"type": "array", "items": {"type": "string"}},
        "tools": {"type": "array", "items": TOOL_SCHEMA}
    },
    "required": ["outputSchemaRef"]
}

MCP_SERVER_SCHEMA = {
    "type": "object",
    "properties": {
        "type": {"type": "string"},
        "name": {"type": "string"},
        "fullCommand": {"type": "string"},
        "command": {"type": "string"},
        "args": {"type": "array", "items": {"type": "string"}},
        "url": {"type": "string"}
    }
}

WORKFLOW_SCHEMA = {
    "type": "object",
    "properties": {
        "outputSchemas": {
            "type": "object",
            "additionalProperties": {"type": "object"}
        },
        "agents": {
            "type": "object",
            "additionalProperties": AGENT_SCHEMA
        },
        "mcpServers": {
            "type": "object",
            "additionalProperties": MCP_SERVER_SCHEMA
        },
        "flow": {
            "type": "object",
            "properties": {
                "steps": {"type": "array", "minItems": 1, "items": STEP_SCHEMA}
            },
            "required": ["steps"]
        }
    },
    "required": ["flow"]
}
