"""
Models for the services and networks declared in a compose file.
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

EXTERNAL_EXTENSION = "x-incus-external"
REMOTES_EXTENSION = "x-incus-remotes"
TYPE_EXTENSION = "x-incus-type"
UPLINK_EXTENSION = "x-incus-uplink"


class ServiceDefinition(BaseModel):
    """
    A single service, backed by one or more Incus instances.
    """
    model_config = {"frozen": True}

    name: str
    image: str = ""
    container_name: Optional[str] = None
    scale: int = Field(default=1, ge=1)

    # Lifecycle
    depends_on: List[str] = []

    # Networking
    networks: List[str] = []  # network keys, not remote names

    environment: Dict[str, str] = {}

    # x-* keys, kept verbatim
    extensions: Dict[str, Any] = {}

    @property
    def external(self) -> bool:
        return bool(self.extensions.get(EXTERNAL_EXTENSION, False))


class NetworkDefinition(BaseModel):
    """
    A network declared under the top-level ``networks`` key.
    """
    model_config = {"frozen": True}

    key: str
    name: str
    external: bool = False
    extensions: Dict[str, Any] = {}

    def extension(self, key: str) -> Optional[str]:
        """
        Returns a string extension value, or None when absent or empty.
        """
        value = self.extensions.get(key)
        if value is None or value == "":
            return None
        return str(value)
