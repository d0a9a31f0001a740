"""
Storage capacity discovery
Reads the capacity bound to every replica's PersistentVolumeClaim and renders
the device manifest (``host,device,capacity-gb`` per line) used to build rings.
"""

import logging

from kubernetes.utils import parse_quantity

from swift_operator.errors import CapacityDiscoveryError
from swift_operator.models import SwiftStorage
from swift_operator.swift import (
    BYTES_PER_GB,
    DEVICE_NAME,
    claim_name_for_replica,
    replica_hostname,
)

logger = logging.getLogger(__name__)


def parse_capacity_gb(quantity) -> int:
    """Kubernetes quantity to whole gigabytes (10^9 bytes), truncated."""
    return int(parse_quantity(quantity)) // BYTES_PER_GB


def get_device_list(platform, instance: SwiftStorage) -> str:
    """Device manifest for replicas ``0..replicas-1``.

    A missing or unbound claim fails the whole manifest; no replica is ever
    reported with a guessed size.
    """
    devices = []
    for replica in range(instance.spec.replicas):
        claim = claim_name_for_replica(instance.name, replica)
        pvc = platform.get_persistent_volume_claim(instance.namespace, claim)
        if pvc is None:
            raise CapacityDiscoveryError(claim, "claim not found")

        status = pvc.get("status") or {}
        phase = status.get("phase")
        if phase and phase != "Bound":
            raise CapacityDiscoveryError(claim, f"claim is {phase}")
        capacity = (status.get("capacity") or {}).get("storage")
        if not capacity:
            raise CapacityDiscoveryError(claim, "no capacity bound")

        try:
            size = parse_capacity_gb(capacity)
        except ValueError as e:
            raise CapacityDiscoveryError(claim, f"invalid capacity {capacity!r}") from e

        devices.append(f"{replica_hostname(instance.name, replica)},{DEVICE_NAME},{size}\n")

    logger.debug(f"Discovered {len(devices)} devices for {instance.namespace}/{instance.name}")
    return "".join(devices)
