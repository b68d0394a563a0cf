"""
Restore routines, one per (datastore, topology, strategy) combination.

Dumps are streamed to import tools on the entry host. Directory trees are
rsync'd to the entry host (standalone) or fanned out to every member
carrying the datastore's role (cluster).
"""

import logging
from pathlib import Path
from typing import Dict, Optional

from ..cluster.topology import Role
from ..errors import SnapshotError
from ..snapshot.models import Strategy
from . import layout
from .dispatcher import Routine, RoutineKey, StepContext, StepName, Topology

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def _dump_file(context: StepContext, step: StepName, filename: str, required: bool = True) -> Optional[Path]:
    path = context.snapshot.datastore_dir(step.value) / filename
    if path.is_file():
        return path
    if required:
        raise SnapshotError(f"Snapshot {context.snapshot.id} is missing {step.value}/{filename}")
    logger.info("Snapshot has no %s/%s; skipping", step.value, filename)
    return None


def _import_dump(context: StepContext, step: StepName, filename: str, command: str,
                 required: bool = True) -> None:
    path = _dump_file(context, step, filename, required)
    if path is None:
        return
    context.remote.run(command, stdin_path=path)


def _push_tree(context: StepContext, step: StepName, remote_dir: str) -> None:
    if not context.snapshot.has_datastore(step.value):
        logger.info("Snapshot has no %s data; skipping", step.value)
        return
    context.remote.rsync(context.snapshot.datastore_dir(step.value), remote_dir, delete=True)


def _fan_out_tree(context: StepContext, step: StepName, role: str, remote_dir: str) -> bool:
    """Push a datastore tree to every member with role. False if nothing was sent."""
    if not context.snapshot.has_datastore(step.value):
        logger.info("Snapshot has no %s data; skipping", step.value)
        return False
    members = context.resolver.members_with_role(role)
    if not members:
        logger.info("No %s members online; nothing to restore", role)
        return False

    local = context.snapshot.datastore_dir(step.value)
    tunnel = context.tunnel
    config = tunnel.build_tunnel(members)
    with tunnel.with_tunnel(config):
        tunnel.fan_out(
            members,
            lambda member: tunnel.transfer_over_tunnel(config, member, local, remote_dir),
            parallel=context.parallel,
        )
    logger.info("Restored %s to %d %s member(s)", step.value, len(members), role)
    return True


# =============================================================================
# Entry-host routines (any topology)
# =============================================================================

def restore_settings(context: StepContext) -> None:
    _import_dump(context, StepName.SETTINGS, layout.SETTINGS_DUMP, "ghe-import-settings")
    _import_dump(context, StepName.SETTINGS, layout.LICENSE_DUMP, "ghe-import-license", required=False)


def restore_mysql(context: StepContext) -> None:
    _import_dump(context, StepName.MYSQL, layout.MYSQL_DUMP, "gunzip -c | ghe-import-mysql")


def restore_redis(context: StepContext) -> None:
    _import_dump(context, StepName.REDIS, layout.REDIS_DUMP, "ghe-import-redis", required=False)


def restore_authorized_keys(context: StepContext) -> None:
    _import_dump(context, StepName.AUTHORIZED_KEYS, layout.AUTHORIZED_KEYS_DUMP,
                 "ghe-import-authorized-keys", required=False)


def restore_ssh_host_keys(context: StepContext) -> None:
    _import_dump(context, StepName.SSH_HOST_KEYS, layout.SSH_HOST_KEYS_DUMP,
                 "ghe-import-ssh-host-keys", required=False)


# =============================================================================
# Standalone, rsync strategy
# =============================================================================

def restore_repositories_rsync(context: StepContext) -> None:
    _push_tree(context, StepName.REPOSITORIES, layout.REPOSITORIES_DIR)


def restore_pages_rsync(context: StepContext) -> None:
    _push_tree(context, StepName.PAGES, layout.PAGES_DIR)


def restore_assets(context: StepContext) -> None:
    _push_tree(context, StepName.ASSETS, layout.ASSETS_DIR)


def restore_hookshot(context: StepContext) -> None:
    _push_tree(context, StepName.HOOKSHOT, layout.HOOKSHOT_DIR)


def restore_elasticsearch_rsync(context: StepContext) -> None:
    _push_tree(context, StepName.ELASTICSEARCH, layout.ELASTICSEARCH_DIR)


# =============================================================================
# Standalone, tarball strategy
# =============================================================================

def _tarball_routine(step: StepName, command: str) -> Routine:
    def routine(context: StepContext) -> None:
        _import_dump(context, step, layout.tarball_name(step.value), command, required=False)
    routine.__name__ = f"restore_{step.name.lower()}_tarball"
    return routine


restore_repositories_tarball = _tarball_routine(StepName.REPOSITORIES, "ghe-import-repositories")
restore_pages_tarball = _tarball_routine(StepName.PAGES, "ghe-import-pages")
restore_elasticsearch_tarball = _tarball_routine(StepName.ELASTICSEARCH, "ghe-import-es-indices")


# =============================================================================
# Cluster
# =============================================================================

def restore_repositories_cluster(context: StepContext) -> None:
    if _fan_out_tree(context, StepName.REPOSITORIES, Role.GIT_SERVER, layout.REPOSITORIES_DIR):
        context.remote.run("ghe-cluster-rebuild-routes")


def restore_pages_cluster(context: StepContext) -> None:
    _fan_out_tree(context, StepName.PAGES, Role.PAGES_SERVER, layout.PAGES_DIR)


def restore_storage_cluster(context: StepContext) -> None:
    _fan_out_tree(context, StepName.STORAGE, Role.STORAGE_SERVER, layout.STORAGE_DIR)


def restore_hookshot_cluster(context: StepContext) -> None:
    _fan_out_tree(context, StepName.HOOKSHOT, Role.HOOKSHOT_SERVER, layout.HOOKSHOT_DIR)


def restore_elasticsearch_cluster(context: StepContext) -> None:
    # Cluster indices are rebuilt from restored data rather than copied
    context.remote.run("ghe-es-reindex --all")


RESTORE_ROUTINES: Dict[RoutineKey, Routine] = {
    (StepName.SETTINGS, None, None): restore_settings,
    (StepName.MYSQL, None, None): restore_mysql,
    (StepName.REDIS, None, None): restore_redis,
    (StepName.AUTHORIZED_KEYS, None, None): restore_authorized_keys,
    (StepName.SSH_HOST_KEYS, Topology.STANDALONE, None): restore_ssh_host_keys,

    (StepName.REPOSITORIES, Topology.STANDALONE, Strategy.RSYNC): restore_repositories_rsync,
    (StepName.PAGES, Topology.STANDALONE, Strategy.RSYNC): restore_pages_rsync,
    (StepName.ELASTICSEARCH, Topology.STANDALONE, Strategy.RSYNC): restore_elasticsearch_rsync,
    (StepName.ASSETS, Topology.STANDALONE, None): restore_assets,
    (StepName.HOOKSHOT, Topology.STANDALONE, None): restore_hookshot,

    (StepName.REPOSITORIES, Topology.STANDALONE, Strategy.TARBALL): restore_repositories_tarball,
    (StepName.PAGES, Topology.STANDALONE, Strategy.TARBALL): restore_pages_tarball,
    (StepName.ELASTICSEARCH, Topology.STANDALONE, Strategy.TARBALL): restore_elasticsearch_tarball,

    (StepName.REPOSITORIES, Topology.CLUSTER, None): restore_repositories_cluster,
    (StepName.PAGES, Topology.CLUSTER, None): restore_pages_cluster,
    (StepName.STORAGE, Topology.CLUSTER, None): restore_storage_cluster,
    (StepName.HOOKSHOT, Topology.CLUSTER, None): restore_hookshot_cluster,
    (StepName.ELASTICSEARCH, Topology.CLUSTER, None): restore_elasticsearch_cluster,
}
