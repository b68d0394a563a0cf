"""
Backup routines: the pull-side counterparts of the restore routines.

Dumps stream command output into the snapshot; directory trees are pulled
with rsync using the previous snapshot as --link-dest, so unchanged files
are hardlinked instead of copied.
"""

import logging
import shlex
from typing import Dict

from ..cluster.topology import Node, Role
from ..snapshot.models import Strategy
from . import layout
from .dispatcher import Routine, RoutineKey, StepContext, StepName, Topology

logger = logging.getLogger(__name__)


def _export_dump(context: StepContext, step: StepName, filename: str, command: str) -> None:
    directory = context.snapshot.datastore_dir(step.value)
    directory.mkdir(parents=True, exist_ok=True)
    context.remote.run(command, stdout_path=directory / filename)


def _pull_tree(context: StepContext, step: StepName, remote_dir: str) -> None:
    directory = context.snapshot.datastore_dir(step.value)
    directory.mkdir(parents=True, exist_ok=True)
    context.remote.rsync(directory, remote_dir, pull=True, link_dest=context.base_dir(step.value))


def _fan_out_pull(context: StepContext, step: StepName, role: str, remote_dir: str) -> None:
    members = context.resolver.members_with_role(role)
    if not members:
        logger.info("No %s members online; nothing to back up", role)
        return

    directory = context.snapshot.datastore_dir(step.value)
    directory.mkdir(parents=True, exist_ok=True)
    base = context.base_dir(step.value)
    tunnel = context.tunnel
    config = tunnel.build_tunnel(members)
    with tunnel.with_tunnel(config):
        tunnel.fan_out(
            members,
            lambda member: tunnel.transfer_over_tunnel(
                config, member, directory, remote_dir, dedup_base=base, pull=True,
            ),
            parallel=context.parallel,
        )


# =============================================================================
# Entry-host dumps (any topology)
# =============================================================================

def backup_settings(context: StepContext) -> None:
    _export_dump(context, StepName.SETTINGS, layout.SETTINGS_DUMP, "ghe-export-settings")
    _export_dump(context, StepName.SETTINGS, layout.LICENSE_DUMP,
                 f"cat {shlex.quote(layout.LICENSE_FILE)}")


def backup_ssh_host_keys(context: StepContext) -> None:
    _export_dump(context, StepName.SSH_HOST_KEYS, layout.SSH_HOST_KEYS_DUMP, "ghe-export-ssh-host-keys")


def backup_mysql(context: StepContext) -> None:
    _export_dump(context, StepName.MYSQL, layout.MYSQL_DUMP, "ghe-export-mysql | gzip -1")


def backup_redis(context: StepContext) -> None:
    _export_dump(context, StepName.REDIS, layout.REDIS_DUMP, "ghe-export-redis")


def backup_authorized_keys(context: StepContext) -> None:
    _export_dump(context, StepName.AUTHORIZED_KEYS, layout.AUTHORIZED_KEYS_DUMP,
                 "ghe-export-authorized-keys")


# =============================================================================
# Standalone
# =============================================================================

def backup_repositories_rsync(context: StepContext) -> None:
    _pull_tree(context, StepName.REPOSITORIES, layout.REPOSITORIES_DIR)


def backup_pages_rsync(context: StepContext) -> None:
    _pull_tree(context, StepName.PAGES, layout.PAGES_DIR)


def backup_assets(context: StepContext) -> None:
    _pull_tree(context, StepName.ASSETS, layout.ASSETS_DIR)


def backup_hookshot(context: StepContext) -> None:
    _pull_tree(context, StepName.HOOKSHOT, layout.HOOKSHOT_DIR)


def backup_elasticsearch_rsync(context: StepContext) -> None:
    _pull_tree(context, StepName.ELASTICSEARCH, layout.ELASTICSEARCH_DIR)


def _tarball_routine(step: StepName, command: str) -> Routine:
    def routine(context: StepContext) -> None:
        _export_dump(context, step, layout.tarball_name(step.value), command)
    routine.__name__ = f"backup_{step.name.lower()}_tarball"
    return routine


backup_repositories_tarball = _tarball_routine(StepName.REPOSITORIES, "ghe-export-repositories")
backup_pages_tarball = _tarball_routine(StepName.PAGES, "ghe-export-pages")
backup_elasticsearch_tarball = _tarball_routine(StepName.ELASTICSEARCH, "ghe-export-es-indices")


# =============================================================================
# Cluster
# =============================================================================

def backup_repositories_cluster(context: StepContext) -> None:
    _fan_out_pull(context, StepName.REPOSITORIES, Role.GIT_SERVER, layout.REPOSITORIES_DIR)


def backup_pages_cluster(context: StepContext) -> None:
    _fan_out_pull(context, StepName.PAGES, Role.PAGES_SERVER, layout.PAGES_DIR)


def backup_storage_cluster(context: StepContext) -> None:
    _fan_out_pull(context, StepName.STORAGE, Role.STORAGE_SERVER, layout.STORAGE_DIR)


def backup_hookshot_cluster(context: StepContext) -> None:
    """Hookshot data is replicated; copy it from the first member that has it."""
    members = context.resolver.members_with_role(Role.HOOKSHOT_SERVER)
    if not members:
        logger.info("No %s members online; nothing to back up", Role.HOOKSHOT_SERVER)
        return

    directory = context.snapshot.datastore_dir(StepName.HOOKSHOT.value)
    directory.mkdir(parents=True, exist_ok=True)
    base = context.base_dir(StepName.HOOKSHOT.value)
    tunnel = context.tunnel
    config = tunnel.build_tunnel(members)
    probe = f"test -d {shlex.quote(layout.HOOKSHOT_DIR)}"

    def has_data(member: Node) -> bool:
        return tunnel.run_over_tunnel(config, member, probe, check=False).ok

    with tunnel.with_tunnel(config):
        chosen = tunnel.first_success(
            members,
            has_data,
            lambda member: tunnel.transfer_over_tunnel(
                config, member, directory, layout.HOOKSHOT_DIR, dedup_base=base, pull=True,
            ),
        )
    if chosen is not None:
        logger.info("Backed up hookshot from %s", chosen.hostname)


def backup_elasticsearch_cluster(context: StepContext) -> None:
    logger.info("Cluster search indices are rebuilt on restore; not backed up")


BACKUP_ROUTINES: Dict[RoutineKey, Routine] = {
    (StepName.SETTINGS, None, None): backup_settings,
    (StepName.SSH_HOST_KEYS, None, None): backup_ssh_host_keys,
    (StepName.MYSQL, None, None): backup_mysql,
    (StepName.REDIS, None, None): backup_redis,
    (StepName.AUTHORIZED_KEYS, None, None): backup_authorized_keys,

    (StepName.REPOSITORIES, Topology.STANDALONE, Strategy.RSYNC): backup_repositories_rsync,
    (StepName.PAGES, Topology.STANDALONE, Strategy.RSYNC): backup_pages_rsync,
    (StepName.ELASTICSEARCH, Topology.STANDALONE, Strategy.RSYNC): backup_elasticsearch_rsync,
    (StepName.ASSETS, Topology.STANDALONE, None): backup_assets,
    (StepName.HOOKSHOT, Topology.STANDALONE, None): backup_hookshot,

    (StepName.REPOSITORIES, Topology.STANDALONE, Strategy.TARBALL): backup_repositories_tarball,
    (StepName.PAGES, Topology.STANDALONE, Strategy.TARBALL): backup_pages_tarball,
    (StepName.ELASTICSEARCH, Topology.STANDALONE, Strategy.TARBALL): backup_elasticsearch_tarball,

    (StepName.REPOSITORIES, Topology.CLUSTER, None): backup_repositories_cluster,
    (StepName.PAGES, Topology.CLUSTER, None): backup_pages_cluster,
    (StepName.STORAGE, Topology.CLUSTER, None): backup_storage_cluster,
    (StepName.HOOKSHOT, Topology.CLUSTER, None): backup_hookshot_cluster,
    (StepName.ELASTICSEARCH, Topology.CLUSTER, None): backup_elasticsearch_cluster,
}
