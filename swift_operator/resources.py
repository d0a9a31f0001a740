"""
SwiftStorage Resource Generators
Pure functions mapping a SwiftStorage to the child resources it owns:
config bundle, headless service, network policy and the storage StatefulSet.
"""

from typing import Dict, List

from kubernetes import client

from swift_operator import templates
from swift_operator.models import SwiftStorage
from swift_operator.swift import (
    ACCOUNT_SERVER_PORT,
    CLAIM_NAME,
    CONTAINER_SERVER_PORT,
    DEVICE_CONFIGMAP_NAME,
    DEVICE_LIST_KEY,
    MEMCACHED_PORT,
    OBJECT_SERVER_PORT,
    RING_CONFIGMAP_NAME,
    RSYNC_PORT,
    RUN_AS_USER,
    SERVICE_ACCOUNT,
    get_labels_proxy,
    get_labels_storage,
)

SCRIPTS_MODE = 0o755


# ===== Helpers =====
def _metadata(instance: SwiftStorage, name: str, labels: Dict[str, str] = None) -> client.V1ObjectMeta:
    # Children are only ever garbage collected through this reference
    owner = instance.owner_reference()
    return client.V1ObjectMeta(
        name=name,
        namespace=instance.namespace,
        labels=dict(labels) if labels else None,
        owner_references=[client.V1OwnerReference(
            api_version=owner["apiVersion"],
            kind=owner["kind"],
            name=owner["name"],
            uid=owner["uid"],
            controller=owner["controller"],
            block_owner_deletion=owner["blockOwnerDeletion"],
        )],
    )


def config_data_name(instance: SwiftStorage) -> str:
    return f"{instance.name}-config-data"


def scripts_name(instance: SwiftStorage) -> str:
    return f"{instance.name}-scripts"


def network_policy_name(instance: SwiftStorage) -> str:
    return f"np-{instance.name}"


# ===== Config Bundle =====
def storage_config_maps(instance: SwiftStorage, labels: Dict[str, str]) -> List[client.V1ConfigMap]:
    """Service configuration and helper scripts mounted into every storage pod."""
    return [
        client.V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=_metadata(instance, config_data_name(instance), labels),
            data=templates.render_config_data(templates.StorageConfigOptions()),
        ),
        client.V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=_metadata(instance, scripts_name(instance), labels),
            data=templates.render_scripts(templates.ScriptOptions()),
        ),
    ]


def device_config_map(instance: SwiftStorage, devices: str) -> client.V1ConfigMap:
    """Device manifest consumed by the ring builder."""
    return client.V1ConfigMap(
        api_version="v1",
        kind="ConfigMap",
        metadata=_metadata(instance, DEVICE_CONFIGMAP_NAME, get_labels_storage()),
        data={DEVICE_LIST_KEY: devices},
    )


# ===== Network =====
def storage_service(instance: SwiftStorage) -> client.V1Service:
    """Headless service giving every replica a stable DNS name.

    memcached stays pod-local and is not published here.
    """
    selector = get_labels_storage()
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=_metadata(instance, instance.name, selector),
        spec=client.V1ServiceSpec(
            selector=selector,
            cluster_ip="None",
            ports=[
                client.V1ServicePort(name="account", port=ACCOUNT_SERVER_PORT, protocol="TCP"),
                client.V1ServicePort(name="container", port=CONTAINER_SERVER_PORT, protocol="TCP"),
                client.V1ServicePort(name="object", port=OBJECT_SERVER_PORT, protocol="TCP"),
                client.V1ServicePort(name="rsync", port=RSYNC_PORT, protocol="TCP"),
            ],
        ),
    )


def service_endpoints(instance: SwiftStorage) -> Dict[str, str]:
    host = f"{instance.name}.{instance.namespace}.svc"
    return {
        "account": f"{host}:{ACCOUNT_SERVER_PORT}",
        "container": f"{host}:{CONTAINER_SERVER_PORT}",
        "object": f"{host}:{OBJECT_SERVER_PORT}",
        "rsync": f"{host}:{RSYNC_PORT}",
    }


def storage_network_policy(instance: SwiftStorage) -> client.V1NetworkPolicy:
    """Storage ports open to storage peers; the proxy gets everything but rsync."""
    storage_labels = get_labels_storage()
    server_ports = [
        client.V1NetworkPolicyPort(port=ACCOUNT_SERVER_PORT),
        client.V1NetworkPolicyPort(port=CONTAINER_SERVER_PORT),
        client.V1NetworkPolicyPort(port=OBJECT_SERVER_PORT),
    ]
    return client.V1NetworkPolicy(
        api_version="networking.k8s.io/v1",
        kind="NetworkPolicy",
        metadata=_metadata(instance, network_policy_name(instance), storage_labels),
        spec=client.V1NetworkPolicySpec(
            pod_selector=client.V1LabelSelector(match_labels=storage_labels),
            ingress=[
                client.V1NetworkPolicyIngressRule(
                    ports=server_ports + [client.V1NetworkPolicyPort(port=RSYNC_PORT)],
                    _from=[client.V1NetworkPolicyPeer(
                        pod_selector=client.V1LabelSelector(match_labels=storage_labels))],
                ),
                client.V1NetworkPolicyIngressRule(
                    ports=list(server_ports),
                    _from=[client.V1NetworkPolicyPeer(
                        pod_selector=client.V1LabelSelector(match_labels=get_labels_proxy()))],
                ),
            ],
        ),
    )


# ===== Workload =====
def _security_context() -> client.V1SecurityContext:
    return client.V1SecurityContext(
        run_as_user=RUN_AS_USER,
        allow_privilege_escalation=False,
        capabilities=client.V1Capabilities(drop=["ALL"]),
    )


def storage_volumes(instance: SwiftStorage) -> List[client.V1Volume]:
    return [
        client.V1Volume(
            name=CLAIM_NAME,
            persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(claim_name=CLAIM_NAME),
        ),
        client.V1Volume(
            name="config-data",
            config_map=client.V1ConfigMapVolumeSource(name=config_data_name(instance)),
        ),
        client.V1Volume(
            name="swiftconf",
            secret=client.V1SecretVolumeSource(secret_name=instance.spec.swift_conf_secret),
        ),
        client.V1Volume(
            name="ring-data",
            config_map=client.V1ConfigMapVolumeSource(name=RING_CONFIGMAP_NAME),
        ),
        client.V1Volume(name="config-data-merged", empty_dir=client.V1EmptyDirVolumeSource()),
        client.V1Volume(name="cache", empty_dir=client.V1EmptyDirVolumeSource()),
        client.V1Volume(
            name="scripts",
            config_map=client.V1ConfigMapVolumeSource(name=scripts_name(instance), default_mode=SCRIPTS_MODE),
        ),
    ]


def storage_volume_mounts() -> List[client.V1VolumeMount]:
    return [
        client.V1VolumeMount(name=CLAIM_NAME, mount_path="/srv/node/d1", read_only=False),
        client.V1VolumeMount(name="config-data", mount_path="/var/lib/config-data/default", read_only=True),
        client.V1VolumeMount(name="swiftconf", mount_path="/var/lib/config-data/swiftconf", read_only=True),
        client.V1VolumeMount(name="ring-data", mount_path="/var/lib/config-data/rings", read_only=True),
        client.V1VolumeMount(name="config-data-merged", mount_path="/etc/swift", read_only=False),
        client.V1VolumeMount(name="cache", mount_path="/var/cache/swift", read_only=False),
        client.V1VolumeMount(name="scripts", mount_path="/usr/local/bin/container-scripts", read_only=True),
    ]


def _container(name: str, image: str, command: List[str], port: int = None,
               port_name: str = None, mounts: bool = True) -> client.V1Container:
    return client.V1Container(
        name=name,
        image=image,
        image_pull_policy="IfNotPresent",
        security_context=_security_context(),
        ports=[client.V1ContainerPort(container_port=port, name=port_name)] if port else None,
        volume_mounts=storage_volume_mounts() if mounts else None,
        command=command,
    )


def _swift_daemon(role: str, daemon: str, image: str, port: int = None) -> client.V1Container:
    return _container(
        f"{role}-{daemon}",
        image,
        [f"/usr/bin/swift-{role}-{daemon}", f"/etc/swift/{role}-server.conf", "-v"],
        port=port,
        port_name=role if port else None,
    )


def storage_init_containers(instance: SwiftStorage) -> List[client.V1Container]:
    return [_container(
        "swift-init",
        instance.spec.container_image_account,
        ["/usr/local/bin/container-scripts/swift-init.sh"],
    )]


def storage_containers(instance: SwiftStorage) -> List[client.V1Container]:
    """Every storage role runs its own binary in its own container."""
    spec = instance.spec
    account, container, obj = (
        spec.container_image_account, spec.container_image_container, spec.container_image_object)
    return [
        _swift_daemon("account", "server", account, ACCOUNT_SERVER_PORT),
        _swift_daemon("account", "replicator", account),
        _swift_daemon("account", "auditor", account),
        _swift_daemon("account", "reaper", account),
        _swift_daemon("container", "server", container, CONTAINER_SERVER_PORT),
        _swift_daemon("container", "replicator", container),
        _swift_daemon("container", "auditor", container),
        _swift_daemon("container", "updater", container),
        _swift_daemon("object", "server", obj, OBJECT_SERVER_PORT),
        _swift_daemon("object", "replicator", obj),
        _swift_daemon("object", "auditor", obj),
        _swift_daemon("object", "updater", obj),
        _container(
            "object-expirer",
            spec.container_image_proxy,
            ["/usr/bin/swift-object-expirer", "/etc/swift/object-expirer.conf", "-v"],
        ),
        _container(
            "rsync",
            obj,
            ["/usr/bin/rsync", "--daemon", "--no-detach",
             "--config=/etc/swift/rsyncd.conf", "--log-file=/dev/stdout"],
            port=RSYNC_PORT,
            port_name="rsync",
        ),
        _container(
            "memcached",
            spec.container_image_memcached,
            ["/usr/bin/memcached", "-p", str(MEMCACHED_PORT), "-u", "memcached"],
            port=MEMCACHED_PORT,
            port_name="memcached",
            mounts=False,
        ),
        _container(
            "ring-sync",
            spec.container_image_proxy,
            ["/usr/local/bin/container-scripts/ring-sync.sh"],
        ),
    ]


def storage_stateful_set(instance: SwiftStorage, labels: Dict[str, str]) -> client.V1StatefulSet:
    return client.V1StatefulSet(
        api_version="apps/v1",
        kind="StatefulSet",
        metadata=_metadata(instance, instance.name, labels),
        spec=client.V1StatefulSetSpec(
            service_name=instance.name,
            replicas=instance.spec.replicas,
            selector=client.V1LabelSelector(match_labels=dict(labels)),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=dict(labels)),
                spec=client.V1PodSpec(
                    service_account_name=SERVICE_ACCOUNT,
                    security_context=client.V1PodSecurityContext(
                        fs_group=RUN_AS_USER,
                        fs_group_change_policy="OnRootMismatch",
                        run_as_non_root=True,
                        sysctls=[client.V1Sysctl(name="net.ipv4.ip_unprivileged_port_start",
                                                 value=str(RSYNC_PORT))],
                        seccomp_profile=client.V1SeccompProfile(type="RuntimeDefault"),
                    ),
                    volumes=storage_volumes(instance),
                    init_containers=storage_init_containers(instance),
                    containers=storage_containers(instance),
                ),
            ),
            volume_claim_templates=[client.V1PersistentVolumeClaim(
                api_version="v1",
                kind="PersistentVolumeClaim",
                metadata=client.V1ObjectMeta(name=CLAIM_NAME),
                spec=client.V1PersistentVolumeClaimSpec(
                    storage_class_name=instance.spec.storage_class,
                    access_modes=["ReadWriteOnce"],
                    resources=client.V1VolumeResourceRequirements(
                        requests={"storage": instance.spec.storage_request}),
                ),
            )],
        ),
    )
