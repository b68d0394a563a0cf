"""
Cluster access for backup_utils.

Provides:
- RemoteHost: commands and rsync against the externally reachable entry host
- TopologyResolver: which members carry a role
- TunnelTransport: multi-hop access to internal-only members
"""

from .ssh import CommandResult, RemoteHost, SSHTarget, run_process
from .topology import Node, Role, TopologyResolver
from .tunnel import TunnelConfig, TunnelTransport

__all__ = [
    'CommandResult',
    'RemoteHost',
    'SSHTarget',
    'run_process',
    'Node',
    'Role',
    'TopologyResolver',
    'TunnelConfig',
    'TunnelTransport',
]
