import logging
from typing import Any, Dict

import jsonschema

from multisync.core.errors import FlowConfigError
from multisync.schemas.workflow_schema import WORKFLOW_SCHEMA

logger = logging.getLogger(__name__)


def validate_config(config: Dict[str, Any]):
    """Validate a workflow configuration before anything is built.

    Semantic invariants are checked first so their messages name the
    offending entity; the structural schema check runs last.
    """
    if not isinstance(config, dict) or not config.get("flow"):
        raise FlowConfigError('Configuration must contain a "flow" property')

    flow = config["flow"]
    if not isinstance(flow, dict) or not flow.get("steps"):
        raise FlowConfigError("Flow must contain at least one step")

    output_schemas = config.get("outputSchemas") or {}
    for name, schema in output_schemas.items():
        properties = (schema or {}).get("properties") or {}
        if "result" not in properties:
            raise FlowConfigError(f'Output schema "{name}" must have "result" property')
        if "result" not in ((schema or {}).get("required") or []):
            raise FlowConfigError(f'Output schema "{name}" must require "result"')

    for agent_id, agent in (config.get("agents") or {}).items():
        schema_ref = (agent or {}).get("outputSchemaRef")
        if not schema_ref:
            raise FlowConfigError(f'Agent "{agent_id}" must have outputSchemaRef')
        if schema_ref not in output_schemas:
            raise FlowConfigError(
                f'Agent "{agent_id}" references unknown schema "{schema_ref}"'
            )

    try:
        jsonschema.validate(instance=config, schema=WORKFLOW_SCHEMA)
    except jsonschema.ValidationError as e:
        location = "/".join(str(part) for part in e.absolute_path) or "<root>"
        raise FlowConfigError(f"Workflow validation failed at {location}: {e.message}") from e

    logger.debug(f"Configuration validated with {len(flow['steps'])} step(s)")
