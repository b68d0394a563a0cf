"""
Where each datastore lives on the appliance and inside a snapshot.
"""

# Directory trees on the appliance
REPOSITORIES_DIR = "/data/repositories"
PAGES_DIR = "/data/user/pages"
STORAGE_DIR = "/data/user/storage"
ASSETS_DIR = "/data/user/alambic_assets"
HOOKSHOT_DIR = "/data/user/hookshot"
ELASTICSEARCH_DIR = "/data/user/elasticsearch"
LICENSE_FILE = "/data/enterprise/enterprise.ghl"

# Single-file dumps inside a snapshot, relative to the datastore directory
SETTINGS_DUMP = "settings.json"
LICENSE_DUMP = "enterprise.ghl"
MYSQL_DUMP = "mysql.sql.gz"
REDIS_DUMP = "redis.rdb"
AUTHORIZED_KEYS_DUMP = "authorized-keys.json"
SSH_HOST_KEYS_DUMP = "ssh-host-keys.tar"


def tarball_name(datastore: str) -> str:
    """Archive name used by the tarball strategy."""
    return f"{datastore}.tar"
