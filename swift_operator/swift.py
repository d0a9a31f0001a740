"""
Swift storage cluster constants
Port table, label sets and well-known resource names shared by the generators
"""

from typing import Dict

# ===== API =====
SWIFT_GROUP = "swift.openstack.org"
SWIFT_VERSION = "v1beta1"
STORAGE_KIND = "SwiftStorage"
STORAGE_PLURAL = "swiftstorages"

# ===== Ports =====
ACCOUNT_SERVER_PORT = 6202
CONTAINER_SERVER_PORT = 6201
OBJECT_SERVER_PORT = 6200
RSYNC_PORT = 873
MEMCACHED_PORT = 11211

# ===== Names =====
SERVICE_ACCOUNT = "swift-swift"
CLAIM_NAME = "swift"
DEVICE_NAME = "d1"
RING_CONFIGMAP_NAME = "swift-ring-files"
DEVICE_CONFIGMAP_NAME = "swift-storage-config-data"
DEVICE_LIST_KEY = "devices.csv"
RUN_AS_USER = 42445

BYTES_PER_GB = 1000 * 1000 * 1000


def get_labels_storage() -> Dict[str, str]:
    return {"component": "swift-storage"}


def get_labels_proxy() -> Dict[str, str]:
    return {"component": "swift-proxy"}


def claim_name_for_replica(name: str, replica: int) -> str:
    """PVC name the StatefulSet controller gives the claim of one replica."""
    return f"{CLAIM_NAME}-{name}-{replica}"


def replica_hostname(name: str, replica: int) -> str:
    """Stable DNS label of a replica behind the headless service."""
    return f"{name}-{replica}.{name}"
