"""
Infrastructure rendering for snowlink projects.
Snowflake DDL, gcloud commands, and the generated provisioning scripts.
"""

from . import ddl, gcloud
from .generator import InfrastructureGenerator

__all__ = ["InfrastructureGenerator", "ddl", "gcloud"]
