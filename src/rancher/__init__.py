"""
Rancher control plane access.

Typed HTTP operations against the /v3 API and lookups that turn symbolic
references into remote identifiers.
"""

from rancher.client import RancherClient, basic_auth_header
from rancher.resolver import ReferenceResolver

__all__ = ["RancherClient", "ReferenceResolver", "basic_auth_header"]
