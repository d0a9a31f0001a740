"""
Resource Generator Test Suite
Shape of the children generated for one SwiftStorage
"""

import unittest

from kubernetes import client

from fake_platform import make_instance

from swift_operator import resources
from swift_operator.swift import get_labels_storage


class TestResourceGenerators(unittest.TestCase):
    """Child resource generation"""

    def setUp(self):
        self.instance = make_instance(replicas=3)
        self.serializer = client.ApiClient()

    def dump(self, obj):
        return self.serializer.sanitize_for_serialization(obj)

    # --- Ownership ---
    def test_every_child_is_owned_and_labelled(self):
        children = resources.storage_config_maps(self.instance, get_labels_storage()) + [
            resources.device_config_map(self.instance, ""),
            resources.storage_service(self.instance),
            resources.storage_network_policy(self.instance),
            resources.storage_stateful_set(self.instance, get_labels_storage()),
        ]
        for child in children:
            owners = self.dump(child)["metadata"]["ownerReferences"]
            self.assertEqual(len(owners), 1)
            self.assertEqual(owners[0]["kind"], "SwiftStorage")
            self.assertEqual(owners[0]["uid"], "uid-alpha")
            self.assertTrue(owners[0]["controller"])
            self.assertEqual(self.dump(child)["metadata"]["labels"], {"component": "swift-storage"})

    # --- Config Bundle ---
    def test_config_bundle_names(self):
        names = [cm.metadata.name for cm in resources.storage_config_maps(self.instance, get_labels_storage())]
        self.assertEqual(names, ["alpha-config-data", "alpha-scripts"])

    def test_device_config_map(self):
        cm = resources.device_config_map(self.instance, "alpha-0.alpha,d1,10\n")
        self.assertEqual(cm.metadata.name, "swift-storage-config-data")
        self.assertEqual(cm.data, {"devices.csv": "alpha-0.alpha,d1,10\n"})

    # --- Network ---
    def test_service_is_headless_without_memcached(self):
        svc = self.dump(resources.storage_service(self.instance))
        self.assertEqual(svc["metadata"]["name"], "alpha")
        self.assertEqual(svc["spec"]["clusterIP"], "None")
        ports = {p["name"]: p["port"] for p in svc["spec"]["ports"]}
        self.assertEqual(ports, {"account": 6202, "container": 6201, "object": 6200, "rsync": 873})
        self.assertNotIn(11211, ports.values())

    def test_service_endpoints(self):
        self.assertEqual(resources.service_endpoints(self.instance)["object"], "alpha.openstack.svc:6200")

    def test_network_policy_rules(self):
        np = self.dump(resources.storage_network_policy(self.instance))
        self.assertEqual(np["metadata"]["name"], "np-alpha")
        self.assertEqual(np["spec"]["podSelector"]["matchLabels"], {"component": "swift-storage"})
        storage_rule, proxy_rule = np["spec"]["ingress"]
        self.assertEqual(sorted(p["port"] for p in storage_rule["ports"]), [873, 6200, 6201, 6202])
        self.assertEqual(storage_rule["from"][0]["podSelector"]["matchLabels"], {"component": "swift-storage"})
        self.assertEqual(sorted(p["port"] for p in proxy_rule["ports"]), [6200, 6201, 6202])
        self.assertEqual(proxy_rule["from"][0]["podSelector"]["matchLabels"], {"component": "swift-proxy"})

    # --- Workload ---
    def test_stateful_set_containers(self):
        sts = resources.storage_stateful_set(self.instance, get_labels_storage())
        containers = sts.spec.template.spec.containers
        self.assertEqual([c.name for c in containers], [
            "account-server", "account-replicator", "account-auditor", "account-reaper",
            "container-server", "container-replicator", "container-auditor", "container-updater",
            "object-server", "object-replicator", "object-auditor", "object-updater",
            "object-expirer", "rsync", "memcached", "ring-sync",
        ])
        by_name = {c.name: c for c in containers}
        self.assertEqual(by_name["container-auditor"].command[0], "/usr/bin/swift-container-auditor")
        self.assertEqual(by_name["object-updater"].command[0], "/usr/bin/swift-object-updater")
        self.assertEqual(by_name["account-server"].ports[0].container_port, 6202)
        self.assertEqual(by_name["object-server"].image, "registry/object:1")
        self.assertEqual(by_name["memcached"].image, "registry/memcached:1")
        self.assertIsNone(by_name["memcached"].volume_mounts)

    def test_stateful_set_storage(self):
        sts = self.dump(resources.storage_stateful_set(self.instance, get_labels_storage()))
        self.assertEqual(sts["spec"]["replicas"], 3)
        self.assertEqual(sts["spec"]["serviceName"], "alpha")
        template = sts["spec"]["volumeClaimTemplates"][0]
        self.assertEqual(template["metadata"]["name"], "swift")
        self.assertEqual(template["spec"]["storageClassName"], "local-storage")
        self.assertEqual(template["spec"]["resources"]["requests"], {"storage": "10Gi"})
        pod = sts["spec"]["template"]["spec"]
        self.assertEqual(pod["securityContext"]["sysctls"][0]["value"], "873")
        self.assertEqual(pod["initContainers"][0]["name"], "swift-init")

    def test_generation_is_deterministic(self):
        first = self.dump(resources.storage_stateful_set(self.instance, get_labels_storage()))
        second = self.dump(resources.storage_stateful_set(make_instance(replicas=3), get_labels_storage()))
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
