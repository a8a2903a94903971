"""
Models for a parsed compose project.
"""
from typing import Dict
from pydantic import BaseModel
from .service_definition import NetworkDefinition, ServiceDefinition


class ComposeProject(BaseModel):
    """
    Everything the compose file declares, before any runtime configuration
    is applied.
    """
    model_config = {"frozen": True}

    name: str
    services: Dict[str, ServiceDefinition] = {}
    networks: Dict[str, NetworkDefinition] = {}
